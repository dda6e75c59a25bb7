"""Pick the best worker for a task with a chain of routing strategies."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from taskcue.domains import DomainConfig
from taskcue.models import Task

logger = logging.getLogger(__name__)


@dataclass
class Member:
    """A worker as the router sees it."""

    worker_id: str
    role_id: str | None = None
    domain_id: str | None = None
    skills: list[str] = field(default_factory=list)
    availability: int = 100  # 0-100, 0 = cannot take work


class RoutingStrategy(Protocol):
    name: str

    def route(self, task: Task, members: list[Member], config: DomainConfig) -> Member | None: ...


class KeywordStrategy:
    """Match payload keywords against the domain's routing rules."""

    name = "keyword"

    def route(self, task: Task, members: list[Member], config: DomainConfig) -> Member | None:
        content = task.content.lower()
        rules = sorted(config.routing_rules, key=lambda r: r.priority, reverse=True)

        for rule in rules:
            if not any(keyword.lower() in content for keyword in rule.keywords):
                continue
            eligible = [
                m for m in members
                if m.role_id in rule.target_roles and m.availability > 0
            ]
            if eligible:
                # max() keeps the first of equals
                return max(eligible, key=lambda m: m.availability)

        return None


class SkillMatchingStrategy:
    """Score members by how many of their skills the payload mentions."""

    name = "skill-matching"

    def route(self, task: Task, members: list[Member], config: DomainConfig) -> Member | None:
        content = task.content.lower()

        scored = []
        for member in members:
            if member.availability <= 0:
                continue
            score = sum(1 for skill in member.skills if skill.lower() in content)
            role = config.get_role(member.role_id) if member.role_id else None
            if role is not None:
                score += sum(1 for skill in role.skills if skill.lower() in content)
            if score > 0:
                scored.append((score, member))

        if not scored:
            return None
        scored.sort(key=lambda s: (s[0], s[1].availability), reverse=True)
        return scored[0][1]


class RoundRobinStrategy:
    """Rotate through available members, one position per call, per domain."""

    name = "round-robin"

    def __init__(self) -> None:
        self._last_index: dict[str, int] = {}

    def route(self, task: Task, members: list[Member], config: DomainConfig) -> Member | None:
        available = [m for m in members if m.availability > 0]
        if not available:
            return None

        next_index = (self._last_index.get(config.domain_id, -1) + 1) % len(available)
        self._last_index[config.domain_id] = next_index
        return available[next_index]

    def reset(self, domain_id: str | None = None) -> None:
        if domain_id is None:
            self._last_index.clear()
        else:
            self._last_index.pop(domain_id, None)


class TaskRouter:
    """
    Runs strategies in order; the first one to pick a member wins.

    When every strategy passes, falls back to an available member holding
    the domain's default role, then to any available member.

    Example:
        router = TaskRouter(DEVELOPMENT)
        member = router.find_best_member(task, members)
    """

    def __init__(
        self,
        config: DomainConfig,
        strategies: list[RoutingStrategy] | None = None,
    ) -> None:
        self._config = config
        self._strategies: list[RoutingStrategy] = (
            list(strategies) if strategies is not None
            else [KeywordStrategy(), SkillMatchingStrategy()]
        )

    @property
    def domain_config(self) -> DomainConfig:
        return self._config

    @domain_config.setter
    def domain_config(self, config: DomainConfig) -> None:
        self._config = config

    @property
    def strategies(self) -> list[RoutingStrategy]:
        return list(self._strategies)

    def add_strategy(self, strategy: RoutingStrategy) -> None:
        self._strategies.append(strategy)
        logger.debug("Added routing strategy: %s", strategy.name)

    def remove_strategy(self, name: str) -> bool:
        for i, strategy in enumerate(self._strategies):
            if strategy.name == name:
                del self._strategies[i]
                return True
        return False

    def set_strategies(self, strategies: list[RoutingStrategy]) -> None:
        self._strategies = list(strategies)

    def find_best_member(self, task: Task, candidates: list[Member]) -> Member | None:
        members = [m for m in candidates if m.domain_id == self._config.domain_id]
        if not members:
            logger.debug("No members found for domain %s", self._config.domain_id)
            return None

        for strategy in self._strategies:
            member = strategy.route(task, members, self._config)
            if member is not None:
                logger.debug("Strategy %s picked %s for %s", strategy.name, member.worker_id, task.id)
                return member

        for member in members:
            if member.role_id == self._config.default_role and member.availability > 0:
                logger.debug("Fallback to default role: %s", member.worker_id)
                return member

        for member in members:
            if member.availability > 0:
                logger.debug("Fallback to any available: %s", member.worker_id)
                return member

        return None

    def find_member_by_role(self, role_id: str, candidates: list[Member]) -> Member | None:
        members = self.members_by_role(role_id, candidates)
        return members[0] if members else None

    def members_by_role(self, role_id: str, candidates: list[Member]) -> list[Member]:
        return [
            m for m in candidates
            if m.role_id == role_id
            and m.domain_id == self._config.domain_id
            and m.availability > 0
        ]

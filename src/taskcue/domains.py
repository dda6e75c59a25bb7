"""Domain configuration: roles, routing rules and the default role."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Role:
    """A role workers can hold within a domain."""

    id: str
    name: str
    skills: tuple[str, ...] = ()
    can_lead: bool = False


@dataclass(frozen=True)
class RoutingRule:
    """Send payloads containing any keyword to one of ``target_roles``."""

    keywords: tuple[str, ...]
    target_roles: tuple[str, ...]
    priority: int = 0


@dataclass(frozen=True)
class DomainConfig:
    """Read-only description of one domain. Build with ``DomainConfig.builder``."""

    domain_id: str
    name: str
    description: str = ""
    roles: tuple[Role, ...] = ()
    routing_rules: tuple[RoutingRule, ...] = ()
    default_role: str = ""
    pipeline: tuple[str, ...] | None = None

    @staticmethod
    def builder(domain_id: str) -> DomainConfigBuilder:
        return DomainConfigBuilder(domain_id)

    def get_role(self, role_id: str) -> Role | None:
        for role in self.roles:
            if role.id == role_id:
                return role
        return None

    def lead_role(self) -> Role | None:
        """First role that can lead."""
        for role in self.roles:
            if role.can_lead:
                return role
        return None

    def has_role(self, role_id: str) -> bool:
        return self.get_role(role_id) is not None

    def rules_for_role(self, role_id: str) -> list[RoutingRule]:
        return [rule for rule in self.routing_rules if role_id in rule.target_roles]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DomainConfig:
        """Build from the plain-dict form used in YAML config files."""
        builder = cls.builder(data["id"])
        builder.with_name(data.get("name", ""))
        builder.with_description(data.get("description", ""))
        for role in data.get("roles", []):
            builder.add_role(Role(
                id=role["id"],
                name=role.get("name", role["id"]),
                skills=tuple(role.get("skills", ())),
                can_lead=bool(role.get("can_lead", False)),
            ))
        for rule in data.get("routing_rules", []):
            builder.add_routing_rule(RoutingRule(
                keywords=tuple(rule.get("keywords", ())),
                target_roles=tuple(rule.get("target_roles", ())),
                priority=int(rule.get("priority", 0)),
            ))
        if data.get("default_role"):
            builder.with_default_role(data["default_role"])
        if data.get("pipeline"):
            builder.with_pipeline(data["pipeline"])
        return builder.build()


@dataclass
class DomainConfigBuilder:
    """
    Fluent builder for DomainConfig.

    Example:
        config = (
            DomainConfig.builder("support")
            .with_name("Support Desk")
            .add_role(Role("agent", "Agent", skills=("billing",)))
            .build()
        )
    """

    domain_id: str
    name: str = ""
    description: str = ""
    roles: list[Role] = field(default_factory=list)
    routing_rules: list[RoutingRule] = field(default_factory=list)
    default_role: str = ""
    pipeline: list[str] = field(default_factory=list)

    def with_name(self, name: str) -> DomainConfigBuilder:
        self.name = name
        return self

    def with_description(self, description: str) -> DomainConfigBuilder:
        self.description = description
        return self

    def add_role(self, role: Role) -> DomainConfigBuilder:
        self.roles.append(role)
        return self

    def add_roles(self, roles: list[Role]) -> DomainConfigBuilder:
        self.roles.extend(roles)
        return self

    def add_routing_rule(self, rule: RoutingRule) -> DomainConfigBuilder:
        self.routing_rules.append(rule)
        return self

    def add_routing_rules(self, rules: list[RoutingRule]) -> DomainConfigBuilder:
        self.routing_rules.extend(rules)
        return self

    def with_default_role(self, role_id: str) -> DomainConfigBuilder:
        self.default_role = role_id
        return self

    def with_pipeline(self, steps: list[str]) -> DomainConfigBuilder:
        self.pipeline = list(steps)
        return self

    def build(self) -> DomainConfig:
        """
        Raises:
            ValueError: If the name is empty or there are no roles.
        """
        if not self.name:
            raise ValueError("Domain name is required")
        if not self.roles:
            raise ValueError("At least one role is required")

        return DomainConfig(
            domain_id=self.domain_id,
            name=self.name,
            description=self.description,
            roles=tuple(self.roles),
            routing_rules=tuple(self.routing_rules),
            default_role=self.default_role or self.roles[0].id,
            pipeline=tuple(self.pipeline) if self.pipeline else None,
        )


class DomainRegistry:
    """Domains by id. Create one and pass it where it is needed."""

    def __init__(self, domains: list[DomainConfig] | None = None) -> None:
        self._domains: dict[str, DomainConfig] = {}
        for domain in domains or []:
            self.register(domain)

    def register(self, config: DomainConfig) -> None:
        if config.domain_id in self._domains:
            logger.warning("Domain %s already registered, overwriting", config.domain_id)
        self._domains[config.domain_id] = config
        logger.debug("Registered domain: %s (%s)", config.name, config.domain_id)

    def unregister(self, domain_id: str) -> bool:
        return self._domains.pop(domain_id, None) is not None

    def get(self, domain_id: str) -> DomainConfig | None:
        return self._domains.get(domain_id)

    def all(self) -> list[DomainConfig]:
        return list(self._domains.values())

    def roles(self, domain_id: str) -> list[Role]:
        domain = self._domains.get(domain_id)
        return list(domain.roles) if domain else []

    def has_role(self, domain_id: str, role_id: str) -> bool:
        domain = self._domains.get(domain_id)
        return domain is not None and domain.has_role(role_id)

    def has_domain(self, domain_id: str) -> bool:
        return domain_id in self._domains

    def list_domains(self) -> list[str]:
        return list(self._domains)

    def __len__(self) -> int:
        return len(self._domains)


# --- Presets ---

DEVELOPMENT = (
    DomainConfig.builder("development")
    .with_name("Development Team")
    .with_description("Software development team")
    .add_roles([
        Role("lead", "Tech Lead",
             ("planning", "coordination", "review", "architecture", "decision"), can_lead=True),
        Role("developer", "Developer",
             ("code", "typescript", "python", "programming", "implement")),
        Role("reviewer", "Code Reviewer",
             ("review", "quality", "best-practices", "refactor", "code-review")),
        Role("tester", "QA Tester",
             ("testing", "qa", "automation", "test", "debug")),
        Role("architect", "Software Architect",
             ("design", "architecture", "system", "pattern", "structure"), can_lead=True),
        Role("analyst", "Business Analyst",
             ("analysis", "research", "documentation", "specs", "requirements")),
    ])
    .add_routing_rules([
        RoutingRule(("code", "implement", "develop", "build", "create"), ("developer",), 10),
        RoutingRule(("test", "qa", "quality", "bug", "debug"), ("tester",), 10),
        RoutingRule(("review", "pr", "pull request", "code review", "refactor"), ("reviewer", "lead"), 10),
        RoutingRule(("design", "architecture", "system", "structure", "pattern"), ("architect", "lead"), 10),
        RoutingRule(("analyze", "research", "document", "spec", "requirement"), ("analyst",), 10),
        RoutingRule(("plan", "coordinate", "decide", "priority", "lead"), ("lead",), 5),
    ])
    .with_default_role("developer")
    .with_pipeline(["analyst", "architect", "developer", "reviewer", "tester", "lead"])
    .build()
)

PRESETS: dict[str, DomainConfig] = {DEVELOPMENT.domain_id: DEVELOPMENT}

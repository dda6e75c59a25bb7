"""Routing strategy and router tests."""

import pytest

from taskcue.coordinator import Coordinator
from taskcue.domains import DEVELOPMENT, DomainConfig, Role, RoutingRule
from taskcue.models import Task
from taskcue.routing import (
    KeywordStrategy,
    Member,
    RoundRobinStrategy,
    SkillMatchingStrategy,
    TaskRouter,
)
from taskcue.transport import MemoryTransport


def dev_member(worker_id, role_id, availability=100, skills=()):
    return Member(
        worker_id=worker_id,
        role_id=role_id,
        domain_id="development",
        skills=list(skills),
        availability=availability,
    )


TEAM = [
    dev_member("ana", "analyst"),
    dev_member("dev", "developer"),
    dev_member("qa", "tester"),
    dev_member("rev", "reviewer"),
]


class TestKeywordStrategy:
    """Tests for keyword rule matching."""

    def test_matches_rule_keyword(self):
        strategy = KeywordStrategy()
        assert strategy.route(Task(content="Implement the login form"), TEAM, DEVELOPMENT).worker_id == "dev"
        assert strategy.route(Task(content="There is a BUG in checkout"), TEAM, DEVELOPMENT).worker_id == "qa"

    def test_prefers_highest_availability(self):
        members = [dev_member("busy", "developer", 20), dev_member("free", "developer", 80)]
        member = KeywordStrategy().route(Task(content="build it"), members, DEVELOPMENT)
        assert member.worker_id == "free"

    def test_first_wins_on_equal_availability(self):
        members = [dev_member("one", "developer"), dev_member("two", "developer")]
        member = KeywordStrategy().route(Task(content="build it"), members, DEVELOPMENT)
        assert member.worker_id == "one"

    def test_unavailable_members_skipped(self):
        members = [dev_member("dev", "developer", 0)]
        assert KeywordStrategy().route(Task(content="build it"), members, DEVELOPMENT) is None

    def test_higher_priority_rule_first(self):
        config = (
            DomainConfig.builder("d")
            .with_name("D")
            .add_roles([Role("a", "A"), Role("b", "B")])
            .add_routing_rule(RoutingRule(("deploy",), ("a",), priority=1))
            .add_routing_rule(RoutingRule(("deploy",), ("b",), priority=9))
            .build()
        )
        members = [Member("wa", "a", "d"), Member("wb", "b", "d")]
        assert KeywordStrategy().route(Task(content="deploy now"), members, config).worker_id == "wb"

    def test_no_keyword_no_match(self):
        assert KeywordStrategy().route(Task(content="make coffee"), TEAM, DEVELOPMENT) is None


class TestSkillMatchingStrategy:
    """Tests for skill scoring."""

    def test_role_skills_count(self):
        member = SkillMatchingStrategy().route(Task(content="write python scripts"), TEAM, DEVELOPMENT)
        assert member.worker_id == "dev"

    def test_personal_skills_add_to_score(self):
        members = [
            dev_member("plain", "developer"),
            dev_member("rusty", "developer", skills=["rust"]),
        ]
        member = SkillMatchingStrategy().route(Task(content="python and rust bindings"), members, DEVELOPMENT)
        assert member.worker_id == "rusty"

    def test_zero_score_excluded(self):
        assert SkillMatchingStrategy().route(Task(content="make coffee"), TEAM, DEVELOPMENT) is None


class TestRoundRobinStrategy:
    """Tests for round-robin rotation."""

    def test_rotates_and_wraps(self):
        strategy = RoundRobinStrategy()
        members = TEAM[:3]
        picks = [strategy.route(Task(content="x"), members, DEVELOPMENT).worker_id for _ in range(4)]
        assert picks == ["ana", "dev", "qa", "ana"]

    def test_skips_unavailable(self):
        strategy = RoundRobinStrategy()
        members = [dev_member("a", "developer"), dev_member("b", "developer", 0), dev_member("c", "developer")]
        picks = [strategy.route(Task(content="x"), members, DEVELOPMENT).worker_id for _ in range(3)]
        assert picks == ["a", "c", "a"]

    def test_reset(self):
        strategy = RoundRobinStrategy()
        strategy.route(Task(content="x"), TEAM, DEVELOPMENT)
        strategy.reset("development")
        assert strategy.route(Task(content="x"), TEAM, DEVELOPMENT).worker_id == "ana"

    def test_nobody_available(self):
        assert RoundRobinStrategy().route(Task(content="x"), [dev_member("a", "developer", 0)], DEVELOPMENT) is None


class TestTaskRouter:
    """Tests for the strategy chain and fallbacks."""

    def test_default_strategies(self):
        router = TaskRouter(DEVELOPMENT)
        assert [s.name for s in router.strategies] == ["keyword", "skill-matching"]

    def test_keyword_before_skills(self):
        router = TaskRouter(DEVELOPMENT)
        assert router.find_best_member(Task(content="review this pull request"), TEAM).worker_id == "rev"

    def test_falls_back_to_default_role(self):
        router = TaskRouter(DEVELOPMENT)
        assert router.find_best_member(Task(content="make coffee"), TEAM).worker_id == "dev"

    def test_falls_back_to_anyone_available(self):
        router = TaskRouter(DEVELOPMENT, strategies=[])
        members = [dev_member("ana", "analyst", 0), dev_member("qa", "tester")]
        assert router.find_best_member(Task(content="make coffee"), members).worker_id == "qa"

    def test_other_domains_ignored(self):
        router = TaskRouter(DEVELOPMENT)
        outsider = Member("x", "developer", "marketing")
        assert router.find_best_member(Task(content="implement it"), [outsider]) is None

    def test_nobody_available(self):
        router = TaskRouter(DEVELOPMENT)
        members = [dev_member("dev", "developer", 0)]
        assert router.find_best_member(Task(content="implement it"), members) is None

    def test_manage_strategies(self):
        router = TaskRouter(DEVELOPMENT)

        assert router.remove_strategy("keyword")
        assert not router.remove_strategy("keyword")
        router.add_strategy(RoundRobinStrategy())
        assert [s.name for s in router.strategies] == ["skill-matching", "round-robin"]

        router.set_strategies([RoundRobinStrategy()])
        assert [s.name for s in router.strategies] == ["round-robin"]

    def test_round_robin_through_router(self):
        router = TaskRouter(DEVELOPMENT, strategies=[RoundRobinStrategy()])
        picks = [router.find_best_member(Task(content="x"), TEAM).worker_id for _ in range(len(TEAM) + 1)]
        assert picks == ["ana", "dev", "qa", "rev", "ana"]

    def test_members_by_role(self):
        router = TaskRouter(DEVELOPMENT)
        members = TEAM + [dev_member("dev2", "developer"), dev_member("dev3", "developer", 0)]

        assert [m.worker_id for m in router.members_by_role("developer", members)] == ["dev", "dev2"]
        assert router.find_member_by_role("tester", members).worker_id == "qa"
        assert router.find_member_by_role("architect", members) is None

    def test_swap_domain_config(self):
        other = DomainConfig.builder("ops").with_name("Ops").add_role(Role("oncall", "On call")).build()
        router = TaskRouter(DEVELOPMENT)
        router.domain_config = other

        member = router.find_best_member(Task(content="x"), [Member("pager", "oncall", "ops")])
        assert member.worker_id == "pager"


class TestCoordinatorRouting:
    """The coordinator consults its router when dispatching."""

    @pytest.fixture
    async def coordinator(self):
        transport = MemoryTransport()
        await transport.connect()
        coordinator = Coordinator(transport, router=TaskRouter(DEVELOPMENT))
        await coordinator.start()
        for worker_id, role in [("w-dev", "developer"), ("w-qa", "tester")]:
            coordinator.register_worker(worker_id, role_id=role, domain_id="development")
        yield coordinator
        await coordinator.stop()
        await transport.disconnect()

    async def test_dispatch_uses_router(self, coordinator):
        assert await coordinator.dispatch(Task(content="debug the flaky test")) == "w-qa"
        assert await coordinator.dispatch(Task(content="implement feature")) == "w-dev"

    async def test_busy_members_not_picked(self, coordinator):
        await coordinator.dispatch(Task(content="debug the flaky test"))
        # Only the developer is idle now
        assert await coordinator.dispatch(Task(content="debug another test")) == "w-dev"

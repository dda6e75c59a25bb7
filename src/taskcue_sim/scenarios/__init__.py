"""Built-in scenarios for the taskcue simulator.

Scenarios define workload patterns: which handlers the workers run and
which tasks (with which dependencies) get queued.
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskcue.handlers import HandlerTable
    from taskcue.queue import TaskQueue
    from taskcue_sim.display import SimulationState
    from taskcue_sim.runner import SimConfig


@dataclass
class ScenarioInfo:
    """Metadata about a scenario."""
    name: str
    description: str


class Scenario(ABC):
    """Base class for simulation scenarios.

    A scenario defines:
    - Handlers (what the workers do with each kind of payload)
    - Initial workload (what to queue, and in which order)
    """

    @property
    @abstractmethod
    def info(self) -> ScenarioInfo:
        ...

    @abstractmethod
    def handlers(self, config: "SimConfig", state: "SimulationState") -> "HandlerTable":
        """Build the handler table every worker gets."""
        ...

    @abstractmethod
    async def submit_workload(self, queue: "TaskQueue", config: "SimConfig", state: "SimulationState") -> None:
        """Queue the initial workload."""
        ...


async def simulate_work(config: "SimConfig", scale: float = 1.0) -> float:
    """Sleep for the configured latency (with jitter), maybe fail.

    Returns:
        The latency slept, in seconds.

    Raises:
        RuntimeError: With probability ``config.error_rate``.
    """
    latency = config.latency_ms / 1000.0 * scale
    if latency > 0:
        jitter = config.latency_jitter
        latency *= random.uniform(1 - jitter, 1 + jitter)
        await asyncio.sleep(latency)

    if random.random() < config.error_rate:
        raise RuntimeError("Simulated error")
    return latency


# Import built-in scenarios
from taskcue_sim.scenarios.single_queue import SingleQueueScenario  # noqa: E402
from taskcue_sim.scenarios.fanout import FanoutScenario  # noqa: E402
from taskcue_sim.scenarios.pipeline import PipelineScenario  # noqa: E402

# Registry of built-in scenarios
SCENARIOS: dict[str, type[Scenario]] = {
    "single_queue": SingleQueueScenario,
    "pipeline": PipelineScenario,
    "fanout": FanoutScenario,
}


def get_scenario(name: str) -> Scenario:
    """Get a scenario instance by name."""
    if name not in SCENARIOS:
        available = ", ".join(SCENARIOS.keys())
        raise ValueError(f"Unknown scenario: {name}. Available: {available}")
    return SCENARIOS[name]()


def list_scenarios() -> list[ScenarioInfo]:
    """List all available scenarios."""
    return [cls().info for cls in SCENARIOS.values()]

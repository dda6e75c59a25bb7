"""Single queue scenario - the default workload pattern.

Simple throughput test: independent tasks, all at the same priority.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from taskcue.handlers import HandlerTable, prefixed, strip_prefix
from taskcue.models import Task
from taskcue_sim.scenarios import Scenario, ScenarioInfo, simulate_work

if TYPE_CHECKING:
    from taskcue.queue import TaskQueue
    from taskcue_sim.display import SimulationState
    from taskcue_sim.runner import SimConfig


class SingleQueueScenario(Scenario):
    """Independent tasks, no dependencies.

    Every worker can run every task; throughput scales with the worker
    count until latency dominates.
    """

    @property
    def info(self) -> ScenarioInfo:
        return ScenarioInfo(
            name="single_queue",
            description="Independent tasks, no dependencies (default)",
        )

    def handlers(self, config: SimConfig, state: SimulationState) -> HandlerTable:
        table = HandlerTable()

        @table.handler(prefixed("WORK:"))
        async def work_handler(task: Task):
            state.add_event("started", task.id, task.destination, strip_prefix(task.content, "WORK:"))
            latency = await simulate_work(config)
            return {"latency_ms": int(latency * 1000)}

        return table

    async def submit_workload(self, queue: TaskQueue, config: SimConfig, state: SimulationState) -> None:
        for i in range(config.count):
            task_id = await queue.enqueue(Task(id=f"work-{i:04d}", content=f"WORK: item_{i:04d}"))
            state.submitted += 1
            state.add_event("queued", task_id, None, f"item_{i:04d}")

"""Pipeline scenario - extract → transform → load per item.

A linear dependency chain: each stage is queued up front and stays
pending until the previous stage of the same item completes.
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


class PipelineScenario(Scenario):
    """Extract → Transform → Load pipeline.

    - Extract: fast (10% of the configured latency)
    - Transform: full latency, may fail
    - Load: 30% of the configured latency

    Later stages get higher priority so items already in flight finish
    before new ones start. A failed transform leaves its load pending.
    """

    @property
    def info(self) -> ScenarioInfo:
        return ScenarioInfo(
            name="pipeline",
            description="Extract → Transform → Load chain",
        )

    def handlers(self, config: SimConfig, state: SimulationState) -> HandlerTable:
        table = HandlerTable()

        @table.handler(prefixed("EXTRACT:"))
        async def extract_handler(task: Task):
            item_id = strip_prefix(task.content, "EXTRACT:")
            state.add_event("started", task.id, task.destination, "extract")
            await simulate_work(config.without_errors(), scale=0.1)
            return {"item_id": item_id, "stage": "extract"}

        @table.handler(prefixed("TRANSFORM:"))
        async def transform_handler(task: Task):
            item_id = strip_prefix(task.content, "TRANSFORM:")
            state.add_event("started", task.id, task.destination, "transform")
            await simulate_work(config)
            return {"item_id": item_id, "stage": "transform"}

        @table.handler(prefixed("LOAD:"))
        async def load_handler(task: Task):
            item_id = strip_prefix(task.content, "LOAD:")
            state.add_event("started", task.id, task.destination, "load")
            await simulate_work(config.without_errors(), scale=0.3)
            return {"item_id": item_id, "stage": "load"}

        return table

    async def submit_workload(self, queue: TaskQueue, config: SimConfig, state: SimulationState) -> None:
        """Queue all three stages for every item.

        Total work: count × 3 tasks.
        """
        for i in range(config.count):
            item_id = f"item_{i:04d}"
            extract = await queue.enqueue(Task(id=f"extract-{i:04d}", content=f"EXTRACT: {item_id}"))
            transform = await queue.enqueue(
                Task(id=f"transform-{i:04d}", content=f"TRANSFORM: {item_id}", priority=1),
                dependencies=[extract],
            )
            await queue.enqueue(
                Task(id=f"load-{i:04d}", content=f"LOAD: {item_id}", priority=2),
                dependencies=[transform],
            )
            state.submitted += 3
            state.add_event("queued", extract, None, item_id)

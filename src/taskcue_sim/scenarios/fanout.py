"""Fanout scenario - split → process in parallel → aggregate.

One split task unblocks N process tasks that run in parallel on
different workers; an aggregate task waits for all of them.
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


class FanoutScenario(Scenario):
    """Split → process in parallel → aggregate.

    ``count`` is the number of process tasks; they are grouped into
    batches of FANOUT_SIZE, each with its own split and aggregate.
    """

    FANOUT_SIZE = 5  # Process tasks per split

    @property
    def info(self) -> ScenarioInfo:
        return ScenarioInfo(
            name="fanout",
            description="Split → process in parallel → aggregate",
        )

    def handlers(self, config: SimConfig, state: SimulationState) -> HandlerTable:
        table = HandlerTable()

        @table.handler(prefixed("SPLIT:"))
        async def split_handler(task: Task):
            state.add_event("started", task.id, task.destination, "split")
            await simulate_work(config.without_errors(), scale=0.2)
            return {"batch": strip_prefix(task.content, "SPLIT:")}

        @table.handler(prefixed("PROCESS:"))
        async def process_handler(task: Task):
            state.add_event("started", task.id, task.destination, "process")
            latency = await simulate_work(config)
            return {"item": strip_prefix(task.content, "PROCESS:"), "latency_ms": int(latency * 1000)}

        @table.handler(prefixed("AGGREGATE:"))
        async def aggregate_handler(task: Task):
            state.add_event("started", task.id, task.destination, "aggregate")
            await simulate_work(config.without_errors(), scale=0.5)
            return {"batch": strip_prefix(task.content, "AGGREGATE:")}

        return table

    async def submit_workload(self, queue: TaskQueue, config: SimConfig, state: SimulationState) -> None:
        batches = max(1, -(-config.count // self.FANOUT_SIZE))
        remaining = config.count

        for b in range(batches):
            batch_id = f"batch_{b:03d}"
            size = min(self.FANOUT_SIZE, remaining)
            remaining -= size

            split = await queue.enqueue(Task(id=f"split-{b:03d}", content=f"SPLIT: {batch_id}"))
            children = []
            for i in range(size):
                children.append(await queue.enqueue(
                    Task(id=f"process-{b:03d}-{i}", content=f"PROCESS: {batch_id}/{i}", priority=1),
                    dependencies=[split],
                ))
            await queue.enqueue(
                Task(id=f"aggregate-{b:03d}", content=f"AGGREGATE: {batch_id}", priority=2),
                dependencies=children,
            )
            state.submitted += size + 2
            state.add_event("queued", split, None, f"{batch_id} ({size} items)")

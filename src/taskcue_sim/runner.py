"""Simulation runner for the taskcue simulator.

Handles the simulation itself, decoupled from display. It updates a
SimulationState object that any display can render.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from taskcue.coordinator import Coordinator
from taskcue.db import SqliteStore
from taskcue.models import Result, TaskStatus
from taskcue.queue import TaskQueue
from taskcue.retry import ExponentialBackoff
from taskcue.state import StateStore
from taskcue.store import MemoryStore, Store
from taskcue.transport import MemoryTransport
from taskcue.worker import WorkerAgent
from taskcue_sim.display import WorkerRow
from taskcue_sim.scenarios import get_scenario

if TYPE_CHECKING:
    from taskcue_sim.display import SimulationState

logger = logging.getLogger(__name__)


@dataclass
class SimConfig:
    """Configuration for a simulation run."""

    count: int = 100
    latency_ms: int = 100
    latency_jitter: float = 0.2  # ±20% variance
    error_rate: float = 0.0
    workers: int = 5
    scenario: str = "single_queue"
    db_path: str = ":memory:"
    duration: float | None = None
    stall_timeout: float | None = None
    max_retries: int = 3
    retry_delay: float = 0.1  # Base backoff, seconds

    def without_errors(self) -> SimConfig:
        return replace(self, error_rate=0.0)


class SimulationRunner:
    """Runs simulations and updates state for display.

    Usage:
        config = SimConfig(count=100, latency_ms=50)
        state = SimulationState()
        runner = SimulationRunner(config, state)

        # In your event loop:
        await runner.run()
    """

    def __init__(self, config: SimConfig, state: SimulationState):
        self.config = config
        self.state = state

        self.store: Store | None = None
        self.transport: MemoryTransport | None = None
        self.queue: TaskQueue | None = None
        self.coordinator: Coordinator | None = None
        self.workers: list[WorkerAgent] = []
        self._running = False

    async def run(self) -> None:
        """Run the simulation to completion."""
        self._running = True
        self.state.start_time = time.time()
        self.state.target_count = self.config.count
        self.state.latency_ms = self.config.latency_ms
        self.state.latency_jitter = self.config.latency_jitter
        self.state.error_rate = self.config.error_rate
        self.state.scenario_name = self.config.scenario

        scenario = get_scenario(self.config.scenario)

        if self.config.db_path == ":memory:":
            self.store = MemoryStore()
        else:
            self.store = await SqliteStore.open(self.config.db_path)
        self.transport = MemoryTransport()
        await self.transport.connect()

        retry = ExponentialBackoff(
            max_retries=self.config.max_retries,
            base_delay=self.config.retry_delay,
            max_delay=max(self.config.retry_delay * 10, 1.0),
        )
        self.queue = TaskQueue(self.store, retry=retry)
        self.coordinator = Coordinator(self.transport, queue=self.queue, state=StateStore(self.store))
        self.coordinator.on_result(self._on_result)
        await self.coordinator.start()

        handlers = scenario.handlers(self.config, self.state)
        for i in range(self.config.workers):
            worker_id = f"worker-{i + 1}"
            self.coordinator.register_worker(worker_id)
            worker = WorkerAgent(
                self.transport,
                worker_id,
                handlers,
                coordinator_id=self.coordinator.id,
            )
            await worker.start()
            self.workers.append(worker)

        await scenario.submit_workload(self.queue, self.config, self.state)
        await self._monitor()
        self._running = False

    async def _on_result(self, result: Result) -> None:
        status = await self.queue.get_task_status(result.task_id)
        if result.success:
            event = "completed"
        elif status == TaskStatus.RETRYING:
            event = "retrying"
        else:
            event = "failed"
        self.state.add_event(event, result.task_id, result.origin, "" if result.success else result.content)

    async def _monitor(self) -> None:
        """Dispatch and track until nothing more can run or duration exceeded."""
        while self._running:
            await self.coordinator.process_task_queue()
            await self._update_state()

            busy = self.coordinator.stats()["active_workers"]
            if not busy and not self.state.ready and not self.state.retrying and not self.state.running:
                break

            if self.config.duration and self._elapsed >= self.config.duration:
                break

            await asyncio.sleep(0.02)

        await self._update_state()

    async def _update_state(self) -> None:
        if self.queue is None or self.coordinator is None:
            return

        self.state.elapsed = self._elapsed

        counts = {status: 0 for status in TaskStatus}
        for task in await self.queue.list_tasks(limit=1_000_000):
            counts[task.status] += 1

        self.state.pending = counts[TaskStatus.PENDING]
        self.state.ready = counts[TaskStatus.READY]
        self.state.running = counts[TaskStatus.IN_PROGRESS]
        self.state.completed = counts[TaskStatus.COMPLETED]
        self.state.failed = counts[TaskStatus.FAILED]
        self.state.retrying = counts[TaskStatus.RETRYING]

        current = {w.id: w.current_task.id if w.current_task else None for w in self.workers}
        self.state.workers = {
            info.id: WorkerRow.from_info(info, current.get(info.id))
            for info in self.coordinator.workers
        }

    async def debug_blocked(self) -> list[dict[str, Any]]:
        """Pending tasks that can never run because a dependency failed."""
        if self.queue is None:
            return []
        return [item for item in await self.queue.blocked_tasks() if item["failed"]]

    @property
    def _elapsed(self) -> float:
        return time.time() - self.state.start_time

    def stop(self) -> None:
        """Request simulation stop."""
        self._running = False

    async def cleanup(self) -> None:
        """Release workers, transport and store. Call after interrupt or completion."""
        for worker in self.workers:
            await worker.stop()
        self.workers = []
        if self.coordinator is not None:
            await self.coordinator.stop()
            self.coordinator = None
        if self.transport is not None:
            await self.transport.disconnect()
            self.transport = None
        if self.store is not None:
            await self.store.close()
            self.store = None
        self._running = False

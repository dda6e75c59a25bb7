"""Coordinator: tracks workers, dispatches tasks and collects results."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from dataclasses import replace
from typing import Any, Callable

from taskcue.agent import start_agent, stop_agent
from taskcue.config import CoordinatorConfig
from taskcue.errors import (
    DependencyCycleError,
    NoWorkerAvailableError,
    ResultTimeoutError,
    SchedulingError,
    UnknownWorkerError,
)
from taskcue.models import (
    BROADCAST_DESTINATION,
    Message,
    MessageType,
    Result,
    Task,
    TaskStatus,
    WorkerInfo,
    WorkerStatus,
    new_id,
)
from taskcue.queue import TaskQueue
from taskcue.routing import Member, TaskRouter
from taskcue.state import StateStore
from taskcue.transport import Transport

logger = logging.getLogger(__name__)


class Coordinator:
    """
    Hands tasks to workers and correlates the results that come back.

    The coordinator decides WHO runs a task. Workers decide HOW.

    Workers are known only by id: register them here and start a
    WorkerAgent with the same id on the same transport. A worker is busy
    from assignment until its Result arrives; tasks assigned to a busy
    worker wait in a FIFO buffer and go to the next idle worker.

    Example:
        coordinator = Coordinator(transport, queue=TaskQueue(store))
        await coordinator.start()
        coordinator.register_worker("worker-1")

        @coordinator.on_result
        def log_result(result):
            print(result.task_id, result.success)

        task_id = await coordinator.create_task("CALC: 6 * 7", priority=5)
        await coordinator.process_task_queue()
        result = await coordinator.wait_for_result(task_id)
    """

    def __init__(
        self,
        transport: Transport,
        *,
        queue: TaskQueue | None = None,
        router: TaskRouter | None = None,
        config: CoordinatorConfig | None = None,
        state: StateStore | None = None,
        id: str | None = None,
    ) -> None:
        self.transport = transport
        self.queue = queue
        self.router = router
        self.config = config or CoordinatorConfig()
        self.id = id or self.config.coordinator_id
        if state is None:
            interval = self.config.heartbeat_interval
            state = StateStore(heartbeat_ttl=interval * 3 if interval > 0 else None)
        self.state = state

        self._workers: dict[str, WorkerInfo] = {}    # Registration order
        self._dirty: set[str] = set()                # Registry changes not yet saved
        self._fresh: set[str] = set()                # Registered since the last save
        self._pending: deque[Task] = deque()         # Waiting for an idle worker
        self._results: dict[str, Result] = {}
        self._waiters: dict[str, list[asyncio.Future]] = {}
        self._queue_owned: set[str] = set()          # Dispatched from self.queue

        # Callbacks
        self._on_result_callback: Callable | None = None
        self._on_wave_callback: Callable | None = None

        self._running = False
        self._monitor_task: asyncio.Task | None = None

    # --- Event Callbacks ---

    def on_result(self, func):
        """
        Decorator to register the result callback.

        Called with each Result after worker state and the queue have been
        updated.

        Example:
            @coordinator.on_result
            def on_result(result):
                logging.info("%s done: %s", result.task_id, result.success)
        """
        self._on_result_callback = func
        return func

    def on_wave(self, func):
        """
        Decorator to register the wave callback.

        Called with the list of task ids at the start of each wave of
        ``execute_tasks_in_parallel``.
        """
        self._on_wave_callback = func
        return func

    async def _emit(self, callback: Callable | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            if inspect.iscoroutinefunction(callback):
                await callback(*args)
            else:
                callback(*args)
        except Exception:
            # Callback errors must not break result intake
            logger.exception("Coordinator callback %r failed", callback)

    # --- Lifecycle ---

    async def start(self, *, monitor_heartbeats: bool = False) -> None:
        """
        Restore the saved worker registry and subscribe to the inbox.

        Args:
            monitor_heartbeats: Every heartbeat interval, mark workers
                OFFLINE whose heartbeat key has expired.
        """
        if self._running:
            return
        await self.restore_workers()
        await self.save_state()
        await start_agent(self, self.transport)
        self._running = True
        if monitor_heartbeats and self.config.heartbeat_interval > 0:
            self._monitor_task = asyncio.create_task(self._monitor_heartbeats())
        logger.info("Coordinator %s ready", self.id)

    async def stop(self) -> None:
        """Unsubscribe and cancel everyone still waiting for a result."""
        self._running = False

        if self._monitor_task is not None:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

        for futures in self._waiters.values():
            for future in futures:
                if not future.done():
                    future.cancel()
        self._waiters.clear()

        await stop_agent(self, self.transport)
        await self.save_state()
        logger.info("Coordinator %s stopped, %d tasks still buffered", self.id, len(self._pending))

    async def _monitor_heartbeats(self) -> None:
        interval = self.config.heartbeat_interval
        while True:
            await asyncio.sleep(interval)
            await self.expire_workers()

    # --- Persistence ---

    async def restore_workers(self) -> list[str]:
        """
        Load saved workers that are not registered in this process yet.

        A restored worker without a live heartbeat comes back OFFLINE.
        One saved as BUSY comes back IDLE, since its task did not survive
        the restart.

        Returns:
            Ids of the restored workers.
        """
        restored = []
        for info in await self.state.load_workers():
            if info.id in self._workers:
                continue
            if not await self.state.is_alive(info.id):
                info.status = WorkerStatus.OFFLINE
            elif info.status == WorkerStatus.BUSY:
                info.status = WorkerStatus.IDLE
            self._workers[info.id] = info
            restored.append(info.id)
        if restored:
            logger.info("Restored %d workers from state: %s", len(restored), restored)
        return restored

    async def save_state(self) -> None:
        """Write registry changes since the last save to the state store."""
        while self._dirty:
            worker_id = self._dirty.pop()
            worker = self._workers.get(worker_id)
            if worker is None:
                continue
            await self.state.save_worker(worker)
            if worker_id in self._fresh:
                self._fresh.discard(worker_id)
                await self.state.update_heartbeat(worker_id, worker.last_seen)

    # --- Worker Registry ---

    def register_worker(
        self,
        worker_id: str,
        *,
        role_id: str | None = None,
        domain_id: str | None = None,
        skills: list[str] | tuple[str, ...] = (),
    ) -> WorkerInfo:
        """Register (or revive) a worker as IDLE with a clean record."""
        info = WorkerInfo(
            id=worker_id,
            role_id=role_id,
            domain_id=domain_id,
            skills=list(skills),
        )
        self._workers[worker_id] = info
        self._dirty.add(worker_id)
        self._fresh.add(worker_id)
        logger.info("Worker registered: %s", worker_id)
        return info

    def deregister_worker(self, worker_id: str) -> bool:
        """Mark a worker OFFLINE. Returns False for unknown ids."""
        worker = self._workers.get(worker_id)
        if worker is None:
            logger.warning("Cannot deregister unknown worker %s", worker_id)
            return False
        worker.status = WorkerStatus.OFFLINE
        self._dirty.add(worker_id)
        logger.info("Worker deregistered: %s", worker_id)
        return True

    def get_worker(self, worker_id: str) -> WorkerInfo | None:
        return self._workers.get(worker_id)

    @property
    def workers(self) -> list[WorkerInfo]:
        return list(self._workers.values())

    def available_workers(self) -> list[str]:
        """Ids of IDLE workers in registration order."""
        return [w.id for w in self._workers.values() if w.status == WorkerStatus.IDLE]

    def workers_by_performance(self) -> list[str]:
        """IDLE workers, best success rate first (registration order on ties)."""
        idle = [w for w in self._workers.values() if w.status == WorkerStatus.IDLE]
        idle.sort(key=lambda w: w.success_rate, reverse=True)
        return [w.id for w in idle]

    async def expire_workers(self) -> list[str]:
        """Mark workers whose heartbeat key has expired OFFLINE."""
        await self.save_state()
        watched = [w.id for w in self._workers.values() if w.status != WorkerStatus.OFFLINE]
        expired = await self.state.inactive_workers(watched)
        now = time.time()
        for worker_id in expired:
            worker = self._workers[worker_id]
            worker.status = WorkerStatus.OFFLINE
            self._dirty.add(worker_id)
            logger.warning(
                "Worker %s silent for %.1fs, marking offline", worker_id, now - worker.last_seen
            )
        await self.save_state()
        return expired

    def _members(self) -> list[Member]:
        return [
            Member(
                worker_id=w.id,
                role_id=w.role_id,
                domain_id=w.domain_id,
                skills=list(w.skills),
                availability=w.availability,
            )
            for w in self._workers.values()
            if w.status != WorkerStatus.OFFLINE
        ]

    def _pick_worker(self, task: Task) -> str | None:
        available = self.available_workers()
        if not available:
            return None
        if self.router is not None:
            member = self.router.find_best_member(task, self._members())
            if member is not None:
                return member.worker_id
        return available[0]

    # --- Dispatch ---

    async def assign_task(self, task: Task, worker_id: str) -> None:
        """
        Send ``task`` to ``worker_id``, or buffer it if that worker is busy.

        Raises:
            UnknownWorkerError: If ``worker_id`` was never registered.
        """
        worker = self._workers.get(worker_id)
        if worker is None:
            raise UnknownWorkerError(worker_id)

        if not task.id:
            task.id = new_id("task")

        if worker.status != WorkerStatus.IDLE:
            self._pending.append(task)
            logger.debug("Task %s buffered, worker %s is %s", task.id, worker_id, worker.status.value)
            return

        message = replace(task, origin=self.id, destination=worker_id)

        # Mark busy before awaiting so concurrent assigners see it
        worker.status = WorkerStatus.BUSY
        worker.task_count += 1
        try:
            await self.transport.send(message)
        except Exception:
            worker.status = WorkerStatus.IDLE
            worker.task_count -= 1
            raise

        self._dirty.add(worker_id)
        logger.info("Task %s assigned to %s", task.id, worker_id)

    async def dispatch(self, task: Task) -> str | None:
        """
        Assign ``task`` to the best idle worker.

        Uses the router when one is configured, else the first idle worker.
        Buffers the task and returns None when nobody is idle.
        """
        worker_id = self._pick_worker(task)
        if worker_id is None:
            if not task.id:
                task.id = new_id("task")
            self._pending.append(task)
            logger.debug("No idle worker, task %s buffered", task.id)
            return None
        await self.assign_task(task, worker_id)
        return worker_id

    async def create_task(
        self,
        content: str,
        priority: int = 0,
        dependencies: list[str] | None = None,
    ) -> str:
        """
        Create a task and queue it, or dispatch it directly without a queue.

        Returns:
            The task id.
        """
        task = Task(
            id=new_id("task"),
            origin=self.id,
            content=content,
            priority=priority,
            dependencies=list(dependencies or []),
        )
        if self.queue is not None:
            return await self.queue.enqueue(task)
        await self.dispatch(task)
        return task.id

    async def process_task_queue(self) -> int:
        """
        Move ready tasks from the queue to idle workers.

        Returns:
            Number of tasks dispatched.
        """
        if self.queue is None:
            logger.debug("No task queue configured")
            return 0

        await self._process_pending()
        ready = await self.queue.get_ready_tasks()
        to_process = min(len(ready), len(self.available_workers()))

        dispatched = 0
        for _ in range(to_process):
            task = await self.queue.dequeue()
            if task is None:
                break
            self._queue_owned.add(task.id)
            worker_id = self._pick_worker(task)
            if worker_id is None:
                # Workers were taken while dequeuing; the task is IN_PROGRESS now
                self._pending.append(task)
                logger.debug("No idle worker, dequeued task %s buffered", task.id)
                break
            await self.assign_task(task, worker_id)
            dispatched += 1

        await self.save_state()
        if dispatched:
            logger.info("%d tasks dispatched from queue", dispatched)
        return dispatched

    async def drain_queue(self, poll_interval: float = 0.05) -> None:
        """
        Keep dispatching from the queue until no more progress is possible.

        Returns once nothing is running, buffered, ready or waiting to be
        retried. Tasks blocked on failed dependencies are left PENDING.
        Wrap in ``asyncio.wait_for`` to bound the wait.
        """
        if self.queue is None:
            return
        while True:
            await self.process_task_queue()
            busy = any(w.status == WorkerStatus.BUSY for w in self._workers.values())
            if not busy and not self._pending:
                waiting = [
                    t for t in await self.queue.list_tasks(limit=100_000)
                    if t.status in (TaskStatus.READY, TaskStatus.RETRYING, TaskStatus.IN_PROGRESS)
                ]
                if not waiting:
                    return
                if not self.available_workers():
                    raise NoWorkerAvailableError(waiting[0].id)
            await asyncio.sleep(poll_interval)

    async def broadcast_to_workers(self, content: str) -> None:
        message = Message(
            id=new_id("broadcast"),
            origin=self.id,
            destination=BROADCAST_DESTINATION,
            content=content,
            type=MessageType.BROADCAST,
        )
        await self.transport.broadcast(message)

    async def _process_pending(self) -> None:
        while self._pending:
            available = self.available_workers()
            if not available:
                break
            task = self._pending.popleft()
            await self.assign_task(task, available[0])

    # --- Parallel Execution ---

    async def execute_tasks_in_parallel(self, tasks: list[Task]) -> dict[str, Result]:
        """
        Run tasks in dependency-ordered waves.

        A task joins a wave once every id in its ``dependencies`` has a
        result (failed results count). Each wave runs concurrently and is
        awaited in full before the next one is computed.

        Returns:
            Results keyed by task id.

        Raises:
            DependencyCycleError: If remaining tasks can never become eligible.
            NoWorkerAvailableError: If no worker was idle when a wave started.
            ResultTimeoutError: If a wave member's result never arrived.

        Every error raised carries the results collected so far in ``results``.
        """
        by_id: dict[str, Task] = {}
        for task in tasks:
            if not task.id:
                task.id = new_id("task")
            by_id[task.id] = task

        results: dict[str, Result] = {}
        remaining = list(by_id)

        while remaining:
            wave = [
                by_id[task_id] for task_id in remaining
                if all(dep in results for dep in by_id[task_id].dependencies)
            ]
            if not wave:
                raise DependencyCycleError(remaining, results=results)

            wave_ids = [task.id for task in wave]
            await self._emit(self._on_wave_callback, wave_ids)

            candidates = self.workers_by_performance()
            outcomes = await asyncio.gather(
                *(self._run_wave_member(task, candidates, i) for i, task in enumerate(wave)),
                return_exceptions=True,
            )

            first_error: BaseException | None = None
            for task, outcome in zip(wave, outcomes):
                if isinstance(outcome, BaseException):
                    first_error = first_error or outcome
                else:
                    results[task.id] = outcome

            if first_error is not None:
                if isinstance(first_error, (SchedulingError, ResultTimeoutError)):
                    first_error.results = dict(results)
                raise first_error

            remaining = [task_id for task_id in remaining if task_id not in results]
            logger.info("Wave finished: %d tasks", len(wave))

        return results

    async def _run_wave_member(self, task: Task, candidates: list[str], index: int) -> Result:
        if not candidates:
            raise NoWorkerAvailableError(task.id)
        # More members than idle workers: the extras get buffered
        worker_id = candidates[index % len(candidates)]
        self._results.pop(task.id, None)
        await self.assign_task(task, worker_id)
        return await self.wait_for_result(task.id)

    # --- Results ---

    async def wait_for_result(self, task_id: str, timeout: float | None = None) -> Result:
        """
        Wait for the Result of ``task_id``.

        Args:
            task_id: Task to wait for.
            timeout: Seconds to wait. Defaults to ``config.result_timeout``.

        Raises:
            ResultTimeoutError: If no result arrives in time.
        """
        existing = self._results.get(task_id)
        if existing is not None:
            return existing

        if timeout is None:
            timeout = self.config.result_timeout

        future = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(task_id, []).append(future)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise ResultTimeoutError(task_id, timeout) from None
        finally:
            self._discard_waiter(task_id, future)

    def _discard_waiter(self, task_id: str, future: asyncio.Future) -> None:
        futures = self._waiters.get(task_id)
        if not futures:
            return
        if future in futures:
            futures.remove(future)
        if not futures:
            del self._waiters[task_id]

    def waiter_count(self, task_id: str | None = None) -> int:
        if task_id is not None:
            return len(self._waiters.get(task_id, []))
        return sum(len(f) for f in self._waiters.values())

    def results(self) -> list[Result]:
        return list(self._results.values())

    def get_result(self, task_id: str) -> Result | None:
        return self._results.get(task_id)

    def pending_tasks(self) -> list[Task]:
        """Tasks buffered until a worker frees up, oldest first."""
        return list(self._pending)

    def stats(self) -> dict[str, int]:
        statuses = [w.status for w in self._workers.values()]
        return {
            "workers": len(self._workers),
            "active_workers": statuses.count(WorkerStatus.BUSY),
            "idle_workers": statuses.count(WorkerStatus.IDLE),
            "offline_workers": statuses.count(WorkerStatus.OFFLINE),
            "pending_tasks": len(self._pending),
            "completed_tasks": sum(1 for r in self._results.values() if r.success),
            "failed_tasks": sum(1 for r in self._results.values() if not r.success),
            "waiters": self.waiter_count(),
        }

    # --- Messages ---

    async def handle_message(self, message: Message) -> None:
        if message.type == MessageType.RESULT:
            await self._handle_result(message)
        elif message.type == MessageType.STATUS:
            await self._update_worker_status(message.origin, message.content)
        else:
            logger.debug("Coordinator ignoring %s message %s", message.type.value, message.id)

    async def _handle_result(self, result: Result) -> None:
        self._results[result.task_id] = result

        worker = self._workers.get(result.origin)
        if worker is not None:
            if worker.status != WorkerStatus.OFFLINE:
                worker.status = WorkerStatus.IDLE
            worker.last_seen = time.time()
            n = worker.task_count
            if n > 0:
                worker.success_rate = (worker.success_rate * (n - 1) + (1 if result.success else 0)) / n
            self._dirty.add(worker.id)
            await self.state.update_heartbeat(worker.id, worker.last_seen)
        else:
            logger.warning("Result for %s from unknown worker %s", result.task_id, result.origin)

        logger.info("Result for %s: %s", result.task_id, "OK" if result.success else "FAILED")

        if self.queue is not None and result.task_id in self._queue_owned:
            self._queue_owned.discard(result.task_id)
            if result.success:
                await self.queue.mark_complete(result.task_id, result)
            else:
                await self.queue.mark_failed(result.task_id, result.content or "task failed")

        for future in self._waiters.pop(result.task_id, []):
            if not future.done():
                future.set_result(result)

        await self._emit(self._on_result_callback, result)
        await self._process_pending()
        await self.save_state()

    async def _update_worker_status(self, worker_id: str, content: str) -> None:
        worker = self._workers.get(worker_id)
        if worker is None:
            logger.debug("Status from unknown worker %s ignored", worker_id)
            return

        worker.last_seen = time.time()
        try:
            status = WorkerStatus(content)
        except ValueError:
            status = None  # Plain heartbeat
        # Only register_worker brings an OFFLINE worker back
        if status is not None and worker.status != WorkerStatus.OFFLINE:
            worker.status = status
            self._dirty.add(worker_id)

        if status != WorkerStatus.OFFLINE:
            await self.state.update_heartbeat(worker_id, worker.last_seen)
        await self.save_state()

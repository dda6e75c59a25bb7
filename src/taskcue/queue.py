"""Priority task queue with dependency tracking and lazy retry promotion."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import replace
from typing import Any

from taskcue.errors import InvalidTaskError
from taskcue.models import QueuedTask, Result, Task, TaskStatus, new_id
from taskcue.retry import ExponentialBackoff, RetryStrategy
from taskcue.store import MemoryStore, Store

logger = logging.getLogger(__name__)

ACTIVE_KEY = "taskqueue:active"
ALL_KEY = "taskqueue:all"
TASK_PREFIX = "task:"
DEPENDENTS_PREFIX = "dependents:"
RESULT_PREFIX = "result:"

DEFAULT_RESULT_TTL = 3600.0


class TaskQueue:
    """
    Holds tasks until they are ready, hands them out highest priority first.

    A task enqueued with dependencies stays PENDING until every dependency
    has been passed to ``mark_complete``. Equal priorities come out in
    enqueue order. Failed tasks come back after a backoff delay until the
    retry policy gives up.

    All methods serialize on one lock, so concurrent callers never see a
    half-applied operation and two dequeues never return the same task.

    Example:
        queue = TaskQueue(MemoryStore())
        a = await queue.enqueue(Task(content="fetch", priority=5))
        b = await queue.enqueue(Task(content="parse"), dependencies=[a])

        task = await queue.dequeue()          # fetch
        await queue.mark_complete(task.id, result)
        await queue.dequeue()                 # parse is now ready
    """

    def __init__(
        self,
        store: Store | None = None,
        *,
        retry: RetryStrategy | None = None,
        result_ttl: float | None = DEFAULT_RESULT_TTL,
    ) -> None:
        self.store: Store = store if store is not None else MemoryStore()
        self.retry: RetryStrategy = retry or ExponentialBackoff()
        self.result_ttl = result_ttl
        self._lock = asyncio.Lock()

    # --- Storage helpers ---

    async def _load(self, task_id: str) -> QueuedTask | None:
        raw = await self.store.get(f"{TASK_PREFIX}{task_id}")
        if raw is None:
            return None
        return QueuedTask.from_dict(json.loads(raw))

    async def _save(self, task: QueuedTask) -> None:
        await self.store.set(f"{TASK_PREFIX}{task.id}", json.dumps(task.to_dict()))

    # --- Operations ---

    async def enqueue(
        self,
        task: Task,
        dependencies: list[str] | None = None,
        *,
        max_retries: int | None = None,
    ) -> str:
        """
        Add a task to the queue.

        Args:
            task: Task to store. An id is generated if it has none.
            dependencies: Task ids that must complete first. Defaults to
                ``task.dependencies``.
            max_retries: Retry budget for this task. Defaults to the
                retry policy's ``max_retries``.

        Returns:
            The task id.

        Raises:
            InvalidTaskError: If the payload is not text or the task
                depends on itself.
        """
        if not isinstance(task.content, str):
            raise InvalidTaskError(f"Task payload must be a string, got {type(task.content).__name__}")

        task_id = task.id or new_id("task")
        deps = list(dict.fromkeys(task.dependencies if dependencies is None else dependencies))
        if task_id in deps:
            raise InvalidTaskError(f"Task {task_id} cannot depend on itself")

        async with self._lock:
            unresolved = []
            for dep in deps:
                existing = await self._load(dep)
                if existing is None or existing.status != TaskStatus.COMPLETED:
                    unresolved.append(dep)

            queued = QueuedTask(
                id=task_id,
                origin=task.origin,
                destination=task.destination,
                content=task.content,
                timestamp=task.timestamp,
                priority=task.priority or 0,
                deadline=task.deadline,
                dependencies=unresolved,
                status=TaskStatus.PENDING if unresolved else TaskStatus.READY,
                max_retries=self.retry.policy.max_retries if max_retries is None else max_retries,
            )

            await self._save(queued)
            for dep in unresolved:
                await self.store.sadd(f"{DEPENDENTS_PREFIX}{dep}", task_id)
            await self.store.sadd(ALL_KEY, task_id)
            # Negative score: higher priority sorts first
            await self.store.zadd(ACTIVE_KEY, task_id, -queued.priority)

        logger.debug("Task %s enqueued (status: %s)", task_id, queued.status.value)
        return task_id

    async def dequeue(self) -> QueuedTask | None:
        """Take the highest-priority ready task and mark it IN_PROGRESS."""
        async with self._lock:
            ready = await self._ready_tasks()
            if not ready:
                return None

            task = ready[0]
            task.status = TaskStatus.IN_PROGRESS
            task.started_at = time.time()
            await self._save(task)

        logger.debug("Task %s dequeued", task.id)
        return task

    async def peek(self) -> QueuedTask | None:
        """Return the task ``dequeue`` would take, without taking it."""
        async with self._lock:
            ready = await self._ready_tasks()
            return ready[0] if ready else None

    async def mark_complete(self, task_id: str, result: Result) -> None:
        """
        Record a successful result and unblock direct dependents.

        Dependents only drop this id from their own dependency set; a chain
        A -> B -> C unblocks one link per completion.
        """
        async with self._lock:
            task = await self._load(task_id)
            if task is None:
                logger.warning("mark_complete for unknown task %s ignored", task_id)
                return
            if task.status.terminal:
                logger.warning("mark_complete for %s task %s ignored", task.status.value, task_id)
                return

            task.status = TaskStatus.COMPLETED
            task.completed_at = time.time()
            task.error = None
            await self._save(task)
            await self.store.zrem(ACTIVE_KEY, task_id)
            await self.store.set(
                f"{RESULT_PREFIX}{task_id}",
                json.dumps(result.to_dict()),
                ttl=self.result_ttl,
            )
            await self._resolve_dependents(task_id)

        logger.debug("Task %s completed", task_id)

    async def mark_failed(self, task_id: str, error: BaseException | str) -> None:
        """Count a failed attempt; schedule a retry or fail for good."""
        if isinstance(error, str):
            error = RuntimeError(error)

        async with self._lock:
            task = await self._load(task_id)
            if task is None:
                logger.warning("mark_failed for unknown task %s ignored", task_id)
                return
            if task.status.terminal:
                logger.warning("mark_failed for %s task %s ignored", task.status.value, task_id)
                return

            task.retry_count += 1
            task.error = str(error)

            if task.retry_count < task.max_retries and self.retry.should_retry(task.retry_count, error):
                if task.dependencies:
                    # Unresolved dependencies still gate it
                    task.status = TaskStatus.PENDING
                    await self._save(task)
                    logger.info("Task %s failed while waiting on %s; stays pending", task_id, task.dependencies)
                    return
                delay = self.retry.get_delay(task.retry_count)
                task.status = TaskStatus.RETRYING
                task.scheduled_at = time.time() + delay
                logger.info(
                    "Task %s will retry in %.2fs (attempt %d/%d)",
                    task_id, delay, task.retry_count, task.max_retries,
                )
            else:
                task.status = TaskStatus.FAILED
                task.completed_at = time.time()
                await self.store.zrem(ACTIVE_KEY, task_id)
                logger.warning("Task %s failed after %d attempts: %s", task_id, task.retry_count, error)

            await self._save(task)

    async def get_ready_tasks(self) -> list[QueuedTask]:
        """All ready tasks in dequeue order. Promotes due retries."""
        async with self._lock:
            return await self._ready_tasks()

    async def _ready_tasks(self) -> list[QueuedTask]:
        now = time.time()
        ready = []
        for task_id in await self.store.zrange(ACTIVE_KEY):
            task = await self._load(task_id)
            if task is None:
                continue
            if task.status == TaskStatus.READY:
                ready.append(task)
            elif task.status == TaskStatus.RETRYING and task.scheduled_at is not None:
                if task.dependencies:
                    task.status = TaskStatus.PENDING
                    await self._save(task)
                elif task.scheduled_at <= now:
                    task.status = TaskStatus.READY
                    await self._save(task)
                    ready.append(task)
        return ready

    async def _resolve_dependents(self, completed_id: str) -> None:
        key = f"{DEPENDENTS_PREFIX}{completed_id}"
        for dependent_id in await self.store.smembers(key):
            dependent = await self._load(dependent_id)
            if dependent is None or completed_id not in dependent.dependencies:
                continue
            dependent.dependencies = [d for d in dependent.dependencies if d != completed_id]
            if not dependent.dependencies and dependent.status == TaskStatus.PENDING:
                dependent.status = TaskStatus.READY
                logger.debug("Task %s is now ready (all dependencies resolved)", dependent_id)
            await self._save(dependent)
        await self.store.delete(key)

    # --- Inspection ---

    async def size(self) -> int:
        """Number of tasks still in the active ordering (not completed or failed)."""
        return await self.store.zcard(ACTIVE_KEY)

    async def clear(self) -> None:
        """Forget every task, result and dependency record."""
        async with self._lock:
            keys: list[str] = []
            for task_id in await self.store.smembers(ALL_KEY):
                keys += [
                    f"{TASK_PREFIX}{task_id}",
                    f"{DEPENDENTS_PREFIX}{task_id}",
                    f"{RESULT_PREFIX}{task_id}",
                ]
            await self.store.delete(*keys, ACTIVE_KEY, ALL_KEY)
        logger.debug("Queue cleared")

    async def get_task(self, task_id: str) -> QueuedTask | None:
        return await self._load(task_id)

    async def get_task_status(self, task_id: str) -> TaskStatus | None:
        task = await self._load(task_id)
        return task.status if task else None

    async def get_result(self, task_id: str) -> Result | None:
        """Stored result for a completed task, if not yet expired."""
        raw = await self.store.get(f"{RESULT_PREFIX}{task_id}")
        if raw is None:
            return None
        return Result.from_dict(json.loads(raw))

    async def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        limit: int = 100,
    ) -> list[QueuedTask]:
        """List tracked tasks, oldest first, optionally filtered by status."""
        tasks = []
        async with self._lock:
            for task_id in await self.store.smembers(ALL_KEY):
                task = await self._load(task_id)
                if task is None:
                    continue
                if status is not None and task.status != status:
                    continue
                tasks.append(task)
        tasks.sort(key=lambda t: t.timestamp)
        return tasks[:limit]

    async def blocked_tasks(self) -> list[dict[str, Any]]:
        """
        Get diagnostic info about pending tasks.

        Returns a list of dicts with:
        - task: The QueuedTask
        - waiting_on: Dependency ids that have not completed
        - failed: Subset of waiting_on that failed for good (never unblocks)
        """
        blocked = []
        for task in await self.list_tasks(status=TaskStatus.PENDING, limit=10_000):
            failed = []
            for dep in task.dependencies:
                if await self.get_task_status(dep) == TaskStatus.FAILED:
                    failed.append(dep)
            blocked.append({"task": replace(task), "waiting_on": list(task.dependencies), "failed": failed})
        return blocked

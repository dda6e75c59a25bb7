"""Worker agent: runs one task at a time and reports the result."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time

from taskcue.agent import start_agent, stop_agent
from taskcue.handlers import HandlerTable, default_handlers
from taskcue.models import (
    Message,
    MessageType,
    Result,
    Task,
    WorkerStatus,
    new_id,
)
from taskcue.retry import NoRetry, RetryStrategy, is_fatal, with_retry
from taskcue.transport import Transport

logger = logging.getLogger(__name__)

HEARTBEAT = "heartbeat"


class WorkerAgent:
    """
    Executes tasks sent to it and answers each with a Result.

    The Result goes back to the task's origin (normally the coordinator).
    Handler errors never escape: they become a failed Result whose content
    starts with ``FATAL:`` for errors retrying cannot fix, ``Error:``
    otherwise.

    Example:
        worker = WorkerAgent(transport, "worker-1", coordinator_id="coordinator")
        await worker.start()
        ...
        await worker.stop()
    """

    def __init__(
        self,
        transport: Transport,
        id: str | None = None,
        handlers: HandlerTable | None = None,
        *,
        retry: RetryStrategy | None = None,
        coordinator_id: str | None = None,
        heartbeat_interval: float | None = None,
    ) -> None:
        self.transport = transport
        self.id = id or new_id("worker")
        self.handlers = handlers if handlers is not None else default_handlers()
        self.retry: RetryStrategy = retry or NoRetry()
        self.coordinator_id = coordinator_id
        self.heartbeat_interval = heartbeat_interval

        self.status = WorkerStatus.OFFLINE
        self.current_task: Task | None = None
        self.completed = 0
        self.failed = 0

        self._lock = asyncio.Lock()
        self._heartbeat_task: asyncio.Task | None = None

    # --- Lifecycle ---

    async def start(self) -> None:
        self.status = WorkerStatus.IDLE
        await start_agent(self, self.transport)
        if self.coordinator_id and self.heartbeat_interval:
            self._heartbeat_task = asyncio.create_task(self._heartbeat())
        logger.info("Worker %s ready with %d handlers", self.id, len(self.handlers))

    async def stop(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None

        if self.current_task is not None:
            logger.warning("Worker %s stopping with task in progress: %s", self.id, self.current_task.id)

        await stop_agent(self, self.transport)
        self.status = WorkerStatus.OFFLINE
        await self.report_status(WorkerStatus.OFFLINE)

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            await self.report_status(HEARTBEAT)

    async def report_status(self, status: WorkerStatus | str) -> None:
        """Send a STATUS message to the coordinator, if there is one."""
        if not self.coordinator_id:
            return
        content = status.value if isinstance(status, WorkerStatus) else status
        await self.transport.send(Message(
            id=new_id("status"),
            origin=self.id,
            destination=self.coordinator_id,
            content=content,
            type=MessageType.STATUS,
        ))

    # --- Messages ---

    async def handle_message(self, message: Message) -> None:
        if message.type == MessageType.TASK:
            await self.execute(message)
        elif message.type == MessageType.BROADCAST:
            logger.info("Worker %s received broadcast: %s", self.id, message.content)

    def can_execute(self, task: Task) -> bool:
        return self.handlers.find(task) is not None

    async def execute(self, task: Task) -> Result:
        """Run ``task`` with the first matching handler and send back the Result."""
        async with self._lock:
            self.status = WorkerStatus.BUSY
            self.current_task = task
            start_time = time.time()

            try:
                handler = self.handlers.find(task)
                if handler is None:
                    raise LookupError(f"No handler for task: {task.content}")

                async def attempt():
                    if inspect.iscoroutinefunction(handler):
                        return await handler(task)
                    return handler(task)

                def on_retry(attempt_no: int, error: BaseException, delay: float) -> None:
                    logger.info("Worker %s retrying %s in %.2fs: %s", self.id, task.id, delay, error)

                data = await with_retry(attempt, self.retry, on_retry)
                result = Result(
                    id=new_id("result"),
                    origin=self.id,
                    destination=task.origin,
                    content="Task completed",
                    task_id=task.id,
                    success=True,
                    data=data,
                )
                self.completed += 1
                logger.debug("Worker %s completed %s in %.3fs", self.id, task.id, time.time() - start_time)

            except Exception as e:
                prefix = "FATAL" if is_fatal(e) else "Error"
                result = Result(
                    id=new_id("result"),
                    origin=self.id,
                    destination=task.origin,
                    content=f"{prefix}: {e}",
                    task_id=task.id,
                    success=False,
                )
                self.failed += 1
                logger.warning("Worker %s failed %s: %s", self.id, task.id, e)

            finally:
                self.current_task = None
                self.status = WorkerStatus.IDLE

            await self.transport.send(result)
            return result

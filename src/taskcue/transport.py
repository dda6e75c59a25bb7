"""Message transport between coordinator and workers."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Protocol, Union

from taskcue.models import Message

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Message], Union[Awaitable[Any], Any]]


class Transport(Protocol):
    """Point-to-point and broadcast delivery of messages by agent id."""

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def send(self, message: Message) -> None: ...

    async def broadcast(self, message: Message) -> None: ...

    async def receive(self, agent_id: str) -> list[Message]: ...

    def subscribe(self, agent_id: str, callback: MessageCallback) -> None: ...

    async def unsubscribe(self, agent_id: str) -> None: ...


class _Subscription:
    def __init__(self, callback: MessageCallback) -> None:
        self.callback = callback
        self.queue: asyncio.Queue[Message] = asyncio.Queue()
        self.pump: asyncio.Task | None = None
        self.in_flight = 0


class MemoryTransport:
    """
    In-process transport.

    Each subscriber gets its own FIFO and a pump task that awaits the
    callback one message at a time, so a subscriber sees its messages in
    send order and never handles two concurrently. Messages for ids with
    no subscriber wait in an inbox until ``receive`` drains it.

    Example:
        transport = MemoryTransport()
        await transport.connect()
        transport.subscribe("worker-1", worker.handle_message)
        await transport.send(Task(destination="worker-1", content="CALC: 1+1"))
        await transport.flush()
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, _Subscription] = {}
        self._inboxes: dict[str, list[Message]] = {}
        self.connected = False
        self.sent_count = 0

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        for agent_id in list(self._subscriptions):
            await self.unsubscribe(agent_id)
        self.connected = False

    async def send(self, message: Message) -> None:
        self.sent_count += 1
        subscription = self._subscriptions.get(message.destination)
        if subscription is None:
            self._inboxes.setdefault(message.destination, []).append(message)
            return
        subscription.in_flight += 1
        subscription.queue.put_nowait(message)

    async def broadcast(self, message: Message) -> None:
        self.sent_count += 1
        for subscription in list(self._subscriptions.values()):
            subscription.in_flight += 1
            subscription.queue.put_nowait(message)

    async def receive(self, agent_id: str) -> list[Message]:
        """Drain messages that arrived while ``agent_id`` had no subscriber."""
        return self._inboxes.pop(agent_id, [])

    def subscribe(self, agent_id: str, callback: MessageCallback) -> None:
        if agent_id in self._subscriptions:
            raise ValueError(f"Agent {agent_id} is already subscribed")
        subscription = _Subscription(callback)
        subscription.pump = asyncio.get_running_loop().create_task(
            self._pump(agent_id, subscription)
        )
        self._subscriptions[agent_id] = subscription
        logger.debug("Subscribed %s", agent_id)

    async def unsubscribe(self, agent_id: str) -> None:
        subscription = self._subscriptions.pop(agent_id, None)
        if subscription is None:
            return

        if subscription.pump is not None:
            subscription.pump.cancel()
            try:
                await subscription.pump
            except asyncio.CancelledError:
                pass

        # Undelivered messages go back to the inbox
        leftover = []
        while not subscription.queue.empty():
            leftover.append(subscription.queue.get_nowait())
        if leftover:
            self._inboxes.setdefault(agent_id, []).extend(leftover)
        logger.debug("Unsubscribed %s (%d undelivered)", agent_id, len(leftover))

    def is_subscribed(self, agent_id: str) -> bool:
        return agent_id in self._subscriptions

    async def flush(self) -> None:
        """Wait until every subscriber has handled everything queued so far.

        Handling a message may queue more; this waits for those too.
        """
        while True:
            pending = [s.queue for s in self._subscriptions.values() if s.in_flight]
            if not pending:
                return
            await asyncio.gather(*(q.join() for q in pending))

    async def _pump(self, agent_id: str, subscription: _Subscription) -> None:
        while True:
            message = await subscription.queue.get()
            try:
                outcome = subscription.callback(message)
                if inspect.isawaitable(outcome):
                    await outcome
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Subscriber %s failed on message %s", agent_id, message.id)
            finally:
                subscription.in_flight -= 1
                subscription.queue.task_done()

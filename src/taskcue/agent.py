"""Agent lifecycle shared by the coordinator and workers."""

from __future__ import annotations

import logging
from typing import Protocol

from taskcue.models import Message
from taskcue.transport import Transport

logger = logging.getLogger(__name__)


class Agent(Protocol):
    """Anything with an id that can be started, stopped and sent messages."""

    id: str

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def handle_message(self, message: Message) -> None: ...


async def start_agent(agent: Agent, transport: Transport) -> None:
    """
    Subscribe ``agent`` to its inbox and replay what it missed.

    Messages sent to the agent before it subscribed are handled first, in
    the order they were sent.
    """
    transport.subscribe(agent.id, agent.handle_message)
    missed = await transport.receive(agent.id)
    if missed:
        logger.debug("%s replaying %d missed messages", agent.id, len(missed))
    for message in missed:
        await agent.handle_message(message)
    logger.debug("%s started", agent.id)


async def stop_agent(agent: Agent, transport: Transport) -> None:
    await transport.unsubscribe(agent.id)
    logger.debug("%s stopped", agent.id)

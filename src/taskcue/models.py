"""Core data models for taskcue."""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any

BROADCAST_DESTINATION = "all"


def new_id(prefix: str) -> str:
    """Generate a short unique id like ``task-3f2a9c0d1b7e``."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class MessageType(str, Enum):
    """Kinds of message exchanged between coordinator and workers."""

    TASK = "task"
    RESULT = "result"
    BROADCAST = "broadcast"
    STATUS = "status"


class TaskStatus(str, Enum):
    """Possible states for a queued task."""

    PENDING = "pending"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class WorkerStatus(str, Enum):
    """Possible states for a registered worker."""

    IDLE = "idle"
    BUSY = "busy"
    OFFLINE = "offline"
    ERROR = "error"


@dataclass
class Message:
    """Envelope for everything that travels over a transport."""

    id: str = ""
    origin: str = ""
    destination: str = ""
    content: str = ""
    timestamp: float = field(default_factory=time.time)
    type: MessageType = MessageType.STATUS

    def __post_init__(self) -> None:
        self.type = MessageType(self.type)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class Task(Message):
    """A request to perform work."""

    type: MessageType = MessageType.TASK
    priority: int = 0  # Higher runs first
    deadline: float | None = None
    dependencies: list[str] = field(default_factory=list)


@dataclass
class QueuedTask(Task):
    """A task plus the fields the queue manages.

    ``dependencies`` holds the ids that are still unresolved; it shrinks as
    dependencies complete and never grows back.
    """

    status: TaskStatus = TaskStatus.PENDING
    retry_count: int = 0
    max_retries: int = 3
    scheduled_at: float | None = None
    started_at: float | None = None
    completed_at: float | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        self.status = TaskStatus(self.status)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status"] = self.status.value
        return data

    @property
    def is_ready(self) -> bool:
        return self.status == TaskStatus.READY and not self.dependencies


@dataclass
class Result(Message):
    """Outcome of one task, sent by the worker that ran it."""

    type: MessageType = MessageType.RESULT
    task_id: str = ""
    success: bool = False
    data: Any = None


@dataclass
class WorkerInfo:
    """Coordinator-side bookkeeping for one worker."""

    id: str
    status: WorkerStatus = WorkerStatus.IDLE
    last_seen: float = field(default_factory=time.time)
    task_count: int = 0
    success_rate: float = 1.0
    role_id: str | None = None
    domain_id: str | None = None
    skills: list[str] = field(default_factory=list)

    @property
    def availability(self) -> int:
        """Routing availability on a 0-100 scale."""
        return 100 if self.status == WorkerStatus.IDLE else 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkerInfo:
        names = {f.name for f in fields(cls)}
        info = cls(**{k: v for k, v in data.items() if k in names})
        info.status = WorkerStatus(info.status)
        return info


_MESSAGE_CLASSES: dict[MessageType, type[Message]] = {
    MessageType.TASK: Task,
    MessageType.RESULT: Result,
}


def message_from_dict(data: dict[str, Any]) -> Message:
    """Rebuild a message of the right class from its dict form."""
    kind = MessageType(data.get("type", MessageType.STATUS))
    return _MESSAGE_CLASSES.get(kind, Message).from_dict(data)

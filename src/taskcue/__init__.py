"""taskcue - A coordinator for a pool of task-executing workers."""

from taskcue.coordinator import Coordinator
from taskcue.db import SqliteStore
from taskcue.domains import DEVELOPMENT, DomainConfig, DomainRegistry, Role, RoutingRule
from taskcue.errors import (
    DependencyCycleError,
    FatalTaskError,
    InvalidTaskError,
    NoWorkerAvailableError,
    ResultTimeoutError,
    SchedulingError,
    TaskcueError,
    UnknownWorkerError,
)
from taskcue.handlers import HandlerTable, default_handlers, prefixed
from taskcue.models import (
    Message,
    MessageType,
    QueuedTask,
    Result,
    Task,
    TaskStatus,
    WorkerInfo,
    WorkerStatus,
)
from taskcue.queue import TaskQueue
from taskcue.retry import ExponentialBackoff, FixedDelay, NoRetry, RetryPolicy
from taskcue.routing import Member, TaskRouter
from taskcue.store import MemoryStore
from taskcue.transport import MemoryTransport
from taskcue.worker import WorkerAgent

__version__ = "0.1.0"
__all__ = [
    "Coordinator",
    "WorkerAgent",
    "TaskQueue",
    "MemoryStore",
    "SqliteStore",
    "MemoryTransport",
    "TaskRouter",
    "Member",
    "DomainConfig",
    "DomainRegistry",
    "Role",
    "RoutingRule",
    "DEVELOPMENT",
    "HandlerTable",
    "default_handlers",
    "prefixed",
    "Message",
    "MessageType",
    "Task",
    "QueuedTask",
    "Result",
    "TaskStatus",
    "WorkerInfo",
    "WorkerStatus",
    "RetryPolicy",
    "ExponentialBackoff",
    "FixedDelay",
    "NoRetry",
    "TaskcueError",
    "InvalidTaskError",
    "FatalTaskError",
    "SchedulingError",
    "UnknownWorkerError",
    "NoWorkerAvailableError",
    "DependencyCycleError",
    "ResultTimeoutError",
]

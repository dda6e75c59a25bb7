"""Error hierarchy for taskcue."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from taskcue.models import Result


class TaskcueError(Exception):
    """Base error for everything taskcue raises on purpose."""


class InvalidTaskError(TaskcueError, ValueError):
    """Malformed task given to the queue."""


# --- Task errors ---


class FatalTaskError(TaskcueError):
    """Task error that must never be retried."""

    fatal = True


class AuthorizationError(FatalTaskError):
    """The handler was not allowed to perform the task."""


class InvalidInputError(FatalTaskError):
    """The task payload cannot be processed as given."""


class NotFoundError(FatalTaskError):
    """Something the task refers to does not exist."""


# --- Scheduling errors ---


class SchedulingError(TaskcueError):
    """Raised to the caller of a scheduling operation.

    ``results`` holds whatever results were collected before the failure so
    nothing finished is lost with the exception.
    """

    def __init__(self, message: str, *, results: dict[str, Result] | None = None) -> None:
        super().__init__(message)
        self.results: dict[str, Result] = dict(results or {})


class UnknownWorkerError(SchedulingError, KeyError):
    """Assignment to a worker id that was never registered."""

    def __init__(self, worker_id: str) -> None:
        super().__init__(f"Unknown worker: {worker_id}")
        self.worker_id = worker_id

    def __str__(self) -> str:
        return f"Unknown worker: {self.worker_id}"


class NoWorkerAvailableError(SchedulingError):
    """No idle worker could take a task."""

    def __init__(self, task_id: str, **kwargs: Any) -> None:
        super().__init__(f"No worker available for task {task_id}", **kwargs)
        self.task_id = task_id


class DependencyCycleError(SchedulingError):
    """Remaining tasks can never become eligible."""

    def __init__(self, unresolved: list[str], **kwargs: Any) -> None:
        super().__init__(
            f"Circular or unsatisfiable dependencies among: {', '.join(sorted(unresolved))}",
            **kwargs,
        )
        self.unresolved = list(unresolved)


class ResultTimeoutError(TaskcueError, TimeoutError):
    """No result arrived for a task within the wait timeout.

    The task itself may still complete later.
    """

    def __init__(
        self,
        task_id: str,
        timeout: float,
        *,
        results: dict[str, Result] | None = None,
    ) -> None:
        super().__init__(f"Timed out after {timeout}s waiting for task {task_id}")
        self.task_id = task_id
        self.timeout = timeout
        self.results: dict[str, Result] = dict(results or {})

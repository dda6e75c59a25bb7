"""Basic import, model and serialization tests."""

import taskcue
from taskcue.models import (
    Message,
    MessageType,
    QueuedTask,
    Result,
    Task,
    TaskStatus,
    WorkerInfo,
    WorkerStatus,
    message_from_dict,
    new_id,
)


def test_import():
    """Verify taskcue exposes its main classes."""
    assert hasattr(taskcue, "Coordinator")
    assert hasattr(taskcue, "TaskQueue")
    assert hasattr(taskcue, "WorkerAgent")
    assert taskcue.__version__


def test_new_id_prefix():
    """Generated ids carry their prefix and are unique."""
    a, b = new_id("task"), new_id("task")
    assert a.startswith("task-")
    assert a != b


def test_task_defaults():
    """Tasks default to priority 0, no dependencies, TASK type."""
    task = Task(content="hello")
    assert task.type == MessageType.TASK
    assert task.priority == 0
    assert task.dependencies == []
    assert task.timestamp > 0


def test_enum_values_round_trip():
    """Enums are str-valued and accept their values."""
    assert TaskStatus("ready") is TaskStatus.READY
    assert WorkerStatus("busy") is WorkerStatus.BUSY
    assert MessageType.RESULT == "result"


def test_terminal_statuses():
    """Only COMPLETED and FAILED are terminal."""
    assert TaskStatus.COMPLETED.terminal
    assert TaskStatus.FAILED.terminal
    assert not TaskStatus.RETRYING.terminal
    assert not TaskStatus.PENDING.terminal


def test_queued_task_dict_form():
    """QueuedTask survives to_dict/from_dict with enum fields restored."""
    task = QueuedTask(id="t1", content="x", priority=3, dependencies=["a"], status=TaskStatus.PENDING)
    data = task.to_dict()
    assert data["status"] == "pending"
    assert data["type"] == "task"

    restored = QueuedTask.from_dict(data)
    assert restored.status is TaskStatus.PENDING
    assert restored.type is MessageType.TASK
    assert restored.dependencies == ["a"]
    assert restored.priority == 3


def test_from_dict_ignores_unknown_keys():
    """Extra keys in stored data are dropped."""
    task = Task.from_dict({"id": "t1", "content": "x", "surprise": True})
    assert task.id == "t1"


def test_message_from_dict_picks_class():
    """message_from_dict rebuilds the right message subclass."""
    result = Result(id="r1", task_id="t1", success=True, data={"n": 1})
    rebuilt = message_from_dict(result.to_dict())
    assert isinstance(rebuilt, Result)
    assert rebuilt.data == {"n": 1}

    status = message_from_dict(Message(content="idle").to_dict())
    assert type(status) is Message
    assert status.type is MessageType.STATUS


def test_queued_task_is_ready():
    """is_ready needs READY status and no remaining dependencies."""
    assert QueuedTask(status=TaskStatus.READY).is_ready
    assert not QueuedTask(status=TaskStatus.PENDING, dependencies=["a"]).is_ready


def test_worker_info_availability():
    """Only idle workers are available for routing."""
    info = WorkerInfo(id="w1")
    assert info.availability == 100
    info.status = WorkerStatus.BUSY
    assert info.availability == 0
    assert info.to_dict()["status"] == "busy"

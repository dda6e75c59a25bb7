"""Task queue tests: ordering, dependencies, retries and inspection."""

import asyncio

import pytest

from taskcue.errors import InvalidTaskError
from taskcue.models import Result, Task, TaskStatus
from taskcue.queue import TaskQueue
from taskcue.retry import ExponentialBackoff, FixedDelay
from taskcue.store import MemoryStore


def ok(task_id, data=None):
    return Result(task_id=task_id, success=True, data=data)


@pytest.fixture
def queue():
    return TaskQueue(MemoryStore(), retry=FixedDelay(delay=0.0, max_retries=3))


class TestEnqueue:
    """Tests for enqueue."""

    async def test_generates_id_and_is_ready(self, queue):
        """A task without dependencies is READY immediately."""
        task_id = await queue.enqueue(Task(content="CALC: 1+1"))

        assert task_id.startswith("task-")
        task = await queue.get_task(task_id)
        assert task.status == TaskStatus.READY
        assert task.priority == 0
        assert task.max_retries == 3
        assert await queue.size() == 1

    async def test_keeps_given_id(self, queue):
        assert await queue.enqueue(Task(id="mine", content="x")) == "mine"

    async def test_dependencies_make_it_pending(self, queue):
        """A task with unresolved dependencies waits."""
        a = await queue.enqueue(Task(content="a"))
        b = await queue.enqueue(Task(content="b"), dependencies=[a, a])

        task = await queue.get_task(b)
        assert task.status == TaskStatus.PENDING
        assert task.dependencies == [a]

    async def test_task_dependencies_used_by_default(self, queue):
        """Without an explicit list, task.dependencies is used."""
        a = await queue.enqueue(Task(content="a"))
        b = await queue.enqueue(Task(content="b", dependencies=[a]))
        assert await queue.get_task_status(b) == TaskStatus.PENDING

    async def test_completed_dependency_already_resolved(self, queue):
        """Depending on a task that already completed does not block."""
        a = await queue.enqueue(Task(content="a"))
        await queue.dequeue()
        await queue.mark_complete(a, ok(a))

        b = await queue.enqueue(Task(content="b"), dependencies=[a])
        task = await queue.get_task(b)
        assert task.status == TaskStatus.READY
        assert task.dependencies == []

    async def test_rejects_self_dependency(self, queue):
        with pytest.raises(InvalidTaskError):
            await queue.enqueue(Task(id="loop", content="x"), dependencies=["loop"])
        assert await queue.size() == 0

    async def test_rejects_non_text_payload(self, queue):
        with pytest.raises(InvalidTaskError):
            await queue.enqueue(Task(content={"not": "text"}))

    async def test_per_task_retry_budget(self, queue):
        task_id = await queue.enqueue(Task(content="x"), max_retries=7)
        assert (await queue.get_task(task_id)).max_retries == 7


class TestOrdering:
    """Tests for dequeue order."""

    async def test_highest_priority_first(self, queue):
        await queue.enqueue(Task(id="low", content="x", priority=1))
        await queue.enqueue(Task(id="high", content="x", priority=5))
        await queue.enqueue(Task(id="mid", content="x", priority=3))

        order = [(await queue.dequeue()).id for _ in range(3)]
        assert order == ["high", "mid", "low"]
        assert await queue.dequeue() is None

    async def test_equal_priority_is_fifo(self, queue):
        for name in ["a", "b", "c", "d"]:
            await queue.enqueue(Task(id=name, content="x", priority=2))

        order = [(await queue.dequeue()).id for _ in range(4)]
        assert order == ["a", "b", "c", "d"]

    async def test_dequeue_marks_in_progress(self, queue):
        await queue.enqueue(Task(id="a", content="x"))
        task = await queue.dequeue()

        assert task.status == TaskStatus.IN_PROGRESS
        assert task.started_at is not None
        assert await queue.get_task_status("a") == TaskStatus.IN_PROGRESS
        assert await queue.get_ready_tasks() == []

    async def test_peek_does_not_take(self, queue):
        await queue.enqueue(Task(id="a", content="x"))

        assert (await queue.peek()).id == "a"
        assert (await queue.peek()).id == "a"
        assert await queue.get_task_status("a") == TaskStatus.READY

    async def test_concurrent_dequeues_never_share(self, queue):
        """Two dequeues racing for one task: exactly one wins."""
        await queue.enqueue(Task(id="only", content="x"))

        first, second = await asyncio.gather(queue.dequeue(), queue.dequeue())

        taken = [t for t in (first, second) if t is not None]
        assert [t.id for t in taken] == ["only"]

    async def test_pending_tasks_not_dequeued(self, queue):
        a = await queue.enqueue(Task(id="a", content="x", priority=0))
        await queue.enqueue(Task(id="b", content="x", priority=10), dependencies=[a])

        assert (await queue.dequeue()).id == "a"
        assert await queue.dequeue() is None


class TestDependencies:
    """Tests for dependency resolution on completion."""

    async def test_completion_unblocks_dependent(self, queue):
        a = await queue.enqueue(Task(id="a", content="x"))
        await queue.enqueue(Task(id="b", content="x"), dependencies=[a])

        await queue.dequeue()
        await queue.mark_complete("a", ok("a", 1))

        assert await queue.get_task_status("a") == TaskStatus.COMPLETED
        assert await queue.get_task_status("b") == TaskStatus.READY
        assert (await queue.dequeue()).id == "b"

    async def test_waits_for_all_dependencies(self, queue):
        await queue.enqueue(Task(id="a", content="x"))
        await queue.enqueue(Task(id="b", content="x"))
        await queue.enqueue(Task(id="c", content="x"), dependencies=["a", "b"])

        await queue.mark_complete("a", ok("a"))
        task = await queue.get_task("c")
        assert task.status == TaskStatus.PENDING
        assert task.dependencies == ["b"]

        await queue.mark_complete("b", ok("b"))
        assert await queue.get_task_status("c") == TaskStatus.READY

    async def test_chain_unblocks_one_link_at_a_time(self, queue):
        """A -> B -> C: completing A readies B only."""
        await queue.enqueue(Task(id="a", content="x"))
        await queue.enqueue(Task(id="b", content="x"), dependencies=["a"])
        await queue.enqueue(Task(id="c", content="x"), dependencies=["b"])

        await queue.mark_complete("a", ok("a"))

        assert await queue.get_task_status("b") == TaskStatus.READY
        assert await queue.get_task_status("c") == TaskStatus.PENDING

    async def test_dependency_on_unknown_id_waits(self, queue):
        """A dependency that is not queued yet still blocks until completed."""
        await queue.enqueue(Task(id="b", content="x"), dependencies=["later"])
        await queue.enqueue(Task(id="later", content="x"))

        await queue.mark_complete("later", ok("later"))
        assert await queue.get_task_status("b") == TaskStatus.READY

    async def test_failed_dependency_blocks_forever(self, queue):
        """Dependents of a failed task stay pending and show up as blocked."""
        await queue.enqueue(Task(id="a", content="x"), max_retries=0)
        await queue.enqueue(Task(id="b", content="x"), dependencies=["a"])

        await queue.dequeue()
        await queue.mark_failed("a", "boom")

        assert await queue.get_task_status("a") == TaskStatus.FAILED
        assert await queue.get_task_status("b") == TaskStatus.PENDING

        blocked = await queue.blocked_tasks()
        assert len(blocked) == 1
        assert blocked[0]["task"].id == "b"
        assert blocked[0]["waiting_on"] == ["a"]
        assert blocked[0]["failed"] == ["a"]


class TestCompletion:
    """Tests for mark_complete bookkeeping."""

    async def test_result_stored(self, queue):
        await queue.enqueue(Task(id="a", content="x"))
        await queue.mark_complete("a", ok("a", {"answer": 42}))

        result = await queue.get_result("a")
        assert result.success
        assert result.data == {"answer": 42}
        task = await queue.get_task("a")
        assert task.completed_at is not None
        assert await queue.size() == 0

    async def test_double_completion_is_noop(self, queue):
        await queue.enqueue(Task(id="a", content="x"))
        await queue.mark_complete("a", ok("a", "first"))
        await queue.mark_complete("a", ok("a", "second"))

        assert (await queue.get_result("a")).data == "first"

    async def test_unknown_ids_ignored(self, queue):
        await queue.mark_complete("ghost", ok("ghost"))
        await queue.mark_failed("ghost", "boom")
        assert await queue.get_task("ghost") is None

    async def test_result_expires(self):
        queue = TaskQueue(MemoryStore(), result_ttl=0.0)
        await queue.enqueue(Task(id="a", content="x"))
        await queue.mark_complete("a", ok("a"))

        assert await queue.get_result("a") is None
        assert await queue.get_task_status("a") == TaskStatus.COMPLETED


class TestRetries:
    """Tests for mark_failed and retry promotion."""

    async def test_failure_schedules_retry(self, queue):
        await queue.enqueue(Task(id="a", content="x"))
        await queue.dequeue()
        await queue.mark_failed("a", RuntimeError("flaky"))

        task = await queue.get_task("a")
        assert task.status == TaskStatus.RETRYING
        assert task.retry_count == 1
        assert task.error == "flaky"
        assert task.scheduled_at is not None

    async def test_due_retry_promoted_to_ready(self, queue):
        await queue.enqueue(Task(id="a", content="x"))
        await queue.dequeue()
        await queue.mark_failed("a", "flaky")

        ready = await queue.get_ready_tasks()
        assert [t.id for t in ready] == ["a"]
        assert await queue.get_task_status("a") == TaskStatus.READY

    async def test_retry_waits_for_delay(self):
        queue = TaskQueue(MemoryStore(), retry=FixedDelay(delay=60.0))
        await queue.enqueue(Task(id="a", content="x"))
        await queue.dequeue()
        await queue.mark_failed("a", "flaky")

        assert await queue.get_ready_tasks() == []
        assert await queue.dequeue() is None
        assert await queue.size() == 1

    async def test_retry_keeps_priority(self, queue):
        """A promoted retry goes back at its original priority."""
        await queue.enqueue(Task(id="urgent", content="x", priority=5))
        await queue.enqueue(Task(id="normal", content="x", priority=0))

        assert (await queue.dequeue()).id == "urgent"
        await queue.mark_failed("urgent", "flaky")

        ready = await queue.get_ready_tasks()
        assert [t.id for t in ready] == ["urgent", "normal"]

    async def test_budget_exhausted_fails(self, queue):
        """With max_retries=3 the third failure is final."""
        await queue.enqueue(Task(id="a", content="x"))

        for _ in range(2):
            await queue.dequeue()
            await queue.mark_failed("a", "flaky")
            assert await queue.get_task_status("a") == TaskStatus.RETRYING

        await queue.dequeue()
        await queue.mark_failed("a", "flaky")

        task = await queue.get_task("a")
        assert task.status == TaskStatus.FAILED
        assert task.retry_count == 3
        assert await queue.size() == 0

    async def test_fatal_error_fails_immediately(self):
        queue = TaskQueue(MemoryStore(), retry=ExponentialBackoff(base_delay=0.0))
        await queue.enqueue(Task(id="a", content="x"))
        await queue.dequeue()
        await queue.mark_failed("a", "FATAL: INVALID expression")

        task = await queue.get_task("a")
        assert task.status == TaskStatus.FAILED
        assert task.retry_count == 1

    async def test_failed_pending_task_waits_for_dependencies(self, queue):
        """A failure on a task with open dependencies never makes it ready."""
        await queue.enqueue(Task(id="a", content="x"))
        await queue.enqueue(Task(id="b", content="y"), dependencies=["a"])
        await queue.mark_failed("b", "flaky")

        task = await queue.get_task("b")
        assert task.status == TaskStatus.PENDING
        assert task.retry_count == 1
        assert [t.id for t in await queue.get_ready_tasks()] == ["a"]

        await queue.dequeue()
        assert await queue.dequeue() is None

        await queue.mark_complete("a", ok("a"))
        assert (await queue.dequeue()).id == "b"

    async def test_failing_terminal_task_is_noop(self, queue):
        await queue.enqueue(Task(id="a", content="x"))
        await queue.mark_complete("a", ok("a"))
        await queue.mark_failed("a", "late failure")

        task = await queue.get_task("a")
        assert task.status == TaskStatus.COMPLETED
        assert task.retry_count == 0


class TestInspection:
    """Tests for size, clear and listing."""

    async def test_list_tasks_filters(self, queue):
        await queue.enqueue(Task(id="a", content="x", timestamp=1.0))
        await queue.enqueue(Task(id="b", content="x", timestamp=2.0), dependencies=["a"])

        assert [t.id for t in await queue.list_tasks()] == ["a", "b"]
        pending = await queue.list_tasks(status=TaskStatus.PENDING)
        assert [t.id for t in pending] == ["b"]
        assert len(await queue.list_tasks(limit=1)) == 1

    async def test_clear(self, queue):
        await queue.enqueue(Task(id="a", content="x"))
        await queue.enqueue(Task(id="b", content="x"), dependencies=["a"])
        await queue.mark_complete("a", ok("a"))

        await queue.clear()

        assert await queue.size() == 0
        assert await queue.list_tasks() == []
        assert await queue.get_result("a") is None
        assert await queue.dequeue() is None

"""Worker agent and built-in handler tests."""

import asyncio

import pytest

from taskcue.errors import InvalidInputError, NotFoundError
from taskcue.handlers import (
    HandlerTable,
    analyze_file,
    calculate,
    default_handlers,
    echo,
    prefixed,
    run_shell,
    strip_prefix,
)
from taskcue.models import Message, MessageType, Task, WorkerStatus
from taskcue.retry import FixedDelay
from taskcue.transport import MemoryTransport
from taskcue.worker import HEARTBEAT, WorkerAgent


class TestHandlerTable:
    """Tests for HandlerTable matching."""

    def test_first_match_wins(self):
        table = HandlerTable()
        table.register(prefixed("A:"), lambda t: "first")
        table.register(prefixed("A:"), lambda t: "second")

        handler = table.find(Task(content="A: go"))
        assert handler(None) == "first"
        assert len(table) == 2

    def test_decorator_registers(self):
        table = HandlerTable()

        @table.handler(prefixed("UPPER:"))
        def upper(task):
            return strip_prefix(task.content, "UPPER:").upper()

        assert table.find(Task(content="UPPER: hi")) is upper
        assert table.find(Task(content="LOWER: hi")) is None

    def test_default_table_order(self):
        """Built-ins match by prefix; anything else falls through to echo."""
        table = default_handlers()
        assert table.find(Task(content="CALC: 1")) is calculate
        assert table.find(Task(content="SHELL: ls")) is run_shell
        assert table.find(Task(content="ANALYZE: x")) is analyze_file
        assert table.find(Task(content="write a poem")) is echo

    def test_strip_prefix(self):
        assert strip_prefix("CALC:  1 + 1 ", "CALC:") == "1 + 1"
        assert strip_prefix(" other ", "CALC:") == "other"


class TestBuiltinHandlers:
    """Tests for the CALC, SHELL, ANALYZE and echo handlers."""

    @pytest.mark.parametrize("expression,expected", [
        ("2 * (3 + 4)", 14),
        ("10 / 4", 2.5),
        ("-2 ** 2", -4),
        ("7 // 2 + 7 % 2", 4),
    ])
    def test_calculate(self, expression, expected):
        assert calculate(Task(content=f"CALC: {expression}"))["result"] == expected

    @pytest.mark.parametrize("expression", [
        "__import__('os')",
        "x + 1",
        "1 +",
        "1 / 0",
        "9 ** 9 ** 9 ** 9",
        "2 ** 1001",
        "10 ** 60 * 10 ** 60",
        "10.0 ** 400",
        "(-8) ** 0.5",
    ])
    def test_calculate_rejects(self, expression):
        with pytest.raises(InvalidInputError, match="INVALID"):
            calculate(Task(content=f"CALC: {expression}"))

    def test_calculate_allows_bounded_powers(self):
        assert calculate(Task(content="CALC: 2 ** 10"))["result"] == 1024
        assert calculate(Task(content="CALC: 10 ** 100"))["result"] == 10 ** 100
        assert calculate(Task(content="CALC: 2 ** -2"))["result"] == 0.25

    async def test_analyze_counts_lines(self, tmp_path):
        path = tmp_path / "notes.txt"
        path.write_text("one\ntwo\nthree\n")

        data = await analyze_file(Task(content=f"ANALYZE: {path}"))

        assert data == {"filepath": str(path), "lines": 3}

    async def test_analyze_missing_file(self, tmp_path):
        with pytest.raises(NotFoundError, match="NOT_FOUND"):
            await analyze_file(Task(content=f"ANALYZE: {tmp_path / 'nope.txt'}"))

    async def test_shell_output(self):
        data = await run_shell(Task(content="SHELL: echo hello"))
        assert data["stdout"].strip() == "hello"

    async def test_shell_nonzero_exit(self):
        with pytest.raises(RuntimeError, match="exited with 3"):
            await run_shell(Task(content="SHELL: exit 3"))

    def test_echo(self):
        data = echo(Task(content="anything"))
        assert data["received"] == "anything"
        assert "processed_at" in data


@pytest.fixture
async def transport():
    t = MemoryTransport()
    await t.connect()
    yield t
    await t.disconnect()


async def collect(transport, agent_id="coord"):
    """Subscribe a list that records every message sent to ``agent_id``."""
    inbox = []
    transport.subscribe(agent_id, inbox.append)
    return inbox


def results_in(inbox):
    return [m for m in inbox if m.type == MessageType.RESULT]


class TestWorkerAgent:
    """Tests for WorkerAgent execution and reporting."""

    async def test_executes_and_replies_to_origin(self, transport):
        inbox = await collect(transport)
        worker = WorkerAgent(transport, "w1", coordinator_id="coord")
        await worker.start()

        await transport.send(Task(id="t1", origin="coord", destination="w1", content="CALC: 6 * 7"))
        await transport.flush()

        [result] = results_in(inbox)
        assert result.task_id == "t1"
        assert result.success
        assert result.origin == "w1"
        assert result.data["result"] == 42
        assert worker.completed == 1
        assert worker.status == WorkerStatus.IDLE
        await worker.stop()

    async def test_fatal_failure_marked(self, transport):
        inbox = await collect(transport)
        worker = WorkerAgent(transport, "w1")
        await worker.start()

        result = await worker.execute(Task(id="t1", origin="coord", content="CALC: x + 1"))
        await transport.flush()

        assert not result.success
        assert result.content.startswith("FATAL:")
        assert results_in(inbox) == [result]
        assert worker.failed == 1

    async def test_transient_failure_marked(self, transport):
        table = HandlerTable()

        @table.handler(lambda t: True)
        def broken(task):
            raise ConnectionError("connection reset")

        await collect(transport)
        worker = WorkerAgent(transport, "w1", table)
        result = await worker.execute(Task(id="t1", origin="coord", content="go"))

        assert not result.success
        assert result.content == "Error: connection reset"

    async def test_no_handler_fails(self, transport):
        await collect(transport)
        worker = WorkerAgent(transport, "w1", HandlerTable())

        assert not worker.can_execute(Task(content="anything"))
        result = await worker.execute(Task(id="t1", origin="coord", content="anything"))

        assert not result.success
        assert "No handler" in result.content

    async def test_execution_retry(self, transport):
        """Execution-level retry re-runs the handler before reporting."""
        attempts = []
        table = HandlerTable()

        @table.handler(lambda t: True)
        async def flaky(task):
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("try again")
            return "done"

        await collect(transport)
        worker = WorkerAgent(transport, "w1", table, retry=FixedDelay(delay=0.0, max_retries=2))
        result = await worker.execute(Task(id="t1", origin="coord", content="go"))

        assert result.success
        assert result.data == "done"
        assert len(attempts) == 2

    async def test_broadcast_produces_no_result(self, transport):
        inbox = await collect(transport)
        worker = WorkerAgent(transport, "w1", coordinator_id="coord")
        await worker.start()

        await transport.broadcast(Message(origin="coord", destination="all", content="hello",
                                          type=MessageType.BROADCAST))
        await transport.flush()

        assert results_in(inbox) == []
        await worker.stop()

    async def test_heartbeats_and_offline_report(self, transport):
        inbox = await collect(transport)
        worker = WorkerAgent(transport, "w1", coordinator_id="coord", heartbeat_interval=0.01)
        await worker.start()

        await asyncio.sleep(0.05)
        await worker.stop()
        await transport.flush()

        contents = [m.content for m in inbox if m.type == MessageType.STATUS]
        assert HEARTBEAT in contents
        assert contents[-1] == WorkerStatus.OFFLINE.value
        assert worker.status == WorkerStatus.OFFLINE

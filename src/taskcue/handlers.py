"""Task handlers: (predicate, handler) pairs, first match wins."""

from __future__ import annotations

import ast
import asyncio
import operator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Union

from taskcue.errors import InvalidInputError, NotFoundError
from taskcue.models import Task

Predicate = Callable[[Task], bool]
Handler = Callable[[Task], Union[Awaitable[Any], Any]]


class HandlerTable:
    """
    Ordered list of (predicate, handler) pairs.

    Handlers may be sync or async and receive the Task; whatever they
    return becomes ``Result.data``. Raise to fail the task.

    Example:
        handlers = HandlerTable()

        @handlers.handler(prefixed("UPPER:"))
        def upper(task):
            return strip_prefix(task.content, "UPPER:").upper()
    """

    def __init__(self) -> None:
        self._entries: list[tuple[Predicate, Handler]] = []

    def register(self, predicate: Predicate, handler: Handler) -> None:
        self._entries.append((predicate, handler))

    def handler(self, predicate: Predicate):
        """Decorator form of ``register``."""
        def decorator(func):
            self.register(predicate, func)
            return func
        return decorator

    def find(self, task: Task) -> Handler | None:
        for predicate, handler in self._entries:
            if predicate(task):
                return handler
        return None

    def __len__(self) -> int:
        return len(self._entries)


def prefixed(prefix: str) -> Predicate:
    """Predicate matching payloads that start with ``prefix``."""
    return lambda task: task.content.startswith(prefix)


def strip_prefix(content: str, prefix: str) -> str:
    return content[len(prefix):].strip() if content.startswith(prefix) else content.strip()


# --- Built-in handlers ---

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

MAX_EXPONENT = 1000
MAX_MAGNITUDE = 10 ** 100


def _check(value: Any) -> float:
    if isinstance(value, complex):
        raise InvalidInputError("INVALID expression: complex result")
    if isinstance(value, int) and abs(value) > MAX_MAGNITUDE:
        raise InvalidInputError("INVALID expression: result exceeds 1e100")
    return value


def _evaluate(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant) and type(node.value) in (int, float):
        return _check(node.value)
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left = _evaluate(node.left)
        right = _evaluate(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise InvalidInputError(f"INVALID expression: exponent {right} exceeds {MAX_EXPONENT}")
        return _check(_BINARY_OPS[type(node.op)](left, right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand))
    raise InvalidInputError(f"INVALID expression element: {type(node).__name__}")


def calculate(task: Task) -> dict[str, Any]:
    """``CALC: 2 * (3 + 4)`` -> arithmetic only, no names or calls."""
    expression = strip_prefix(task.content, "CALC:")
    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError as e:
        raise InvalidInputError(f"INVALID expression {expression!r}: {e.msg}") from e
    try:
        result = _evaluate(tree)
    except ZeroDivisionError as e:
        raise InvalidInputError(f"INVALID expression {expression!r}: division by zero") from e
    except OverflowError as e:
        raise InvalidInputError(f"INVALID expression {expression!r}: result too large") from e
    return {"expression": expression, "result": result}


async def run_shell(task: Task) -> dict[str, Any]:
    """``SHELL: ls -la`` -> stdout/stderr. Non-zero exit fails the task."""
    command = strip_prefix(task.content, "SHELL:")
    proc = await asyncio.create_subprocess_shell(
        command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        raise RuntimeError(
            f"Command exited with {proc.returncode}: {stderr.decode(errors='replace').strip()}"
        )
    return {
        "stdout": stdout.decode(errors="replace"),
        "stderr": stderr.decode(errors="replace"),
    }


def _count_lines(path: Path) -> int:
    with path.open("rb") as f:
        return sum(1 for _ in f)


async def analyze_file(task: Task) -> dict[str, Any]:
    """``ANALYZE: path/to/file`` -> line count."""
    filepath = strip_prefix(task.content, "ANALYZE:")
    path = Path(filepath)
    if not path.is_file():
        raise NotFoundError(f"NOT_FOUND: {filepath}")
    lines = await asyncio.to_thread(_count_lines, path)
    return {"filepath": filepath, "lines": lines}


def echo(task: Task) -> dict[str, Any]:
    """Fallback: acknowledge the payload."""
    return {
        "received": task.content,
        "processed_at": datetime.now(timezone.utc).isoformat(),
        "note": "generic processing",
    }


def default_handlers() -> HandlerTable:
    """SHELL, CALC and ANALYZE handlers, with ``echo`` as the catch-all."""
    table = HandlerTable()
    table.register(prefixed("SHELL:"), run_shell)
    table.register(prefixed("CALC:"), calculate)
    table.register(prefixed("ANALYZE:"), analyze_file)
    table.register(lambda task: True, echo)  # Always last
    return table

#!/usr/bin/env python3
"""
taskcue: queue tasks, run workers, and simulate workloads.

Usage:
    taskcue submit "CALC: 6 * 7" --priority 5
    taskcue submit "ANALYZE: README.md" --depends-on task-1a2b3c4d5e6f
    taskcue status
    taskcue run --workers 4
    taskcue batch tasks.json
    taskcue sim --scenario pipeline --count 20 --error-rate 0.1
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from taskcue.config import TaskcueConfig, load_config
from taskcue.coordinator import Coordinator
from taskcue.db import SqliteStore
from taskcue.errors import (
    DependencyCycleError,
    InvalidTaskError,
    NoWorkerAvailableError,
    ResultTimeoutError,
)
from taskcue.handlers import default_handlers
from taskcue.models import Result, Task, TaskStatus
from taskcue.queue import TaskQueue
from taskcue.retry import ExponentialBackoff
from taskcue.routing import TaskRouter
from taskcue.transport import MemoryTransport
from taskcue.worker import WorkerAgent
from taskcue_sim.display import (
    SimulationState,
    SimulatorDisplay,
    print_final_summary,
    task_detail,
    tasks_table,
)
from taskcue_sim.runner import SimConfig, SimulationRunner

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_NO_WORKER = 3
EXIT_UNSATISFIABLE = 4
EXIT_TASK_FAILURES = 5
EXIT_INTERRUPTED = 130

DEFAULT_DB = "taskcue.db"

console = Console()


def configure_logging(verbose: bool = False) -> None:
    """Configure logging for the CLI."""
    taskcue_logger = logging.getLogger("taskcue")
    if verbose:
        taskcue_logger.setLevel(logging.DEBUG)
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        taskcue_logger.addHandler(handler)
    else:
        # Silence library logs - the CLI handles its own display
        taskcue_logger.setLevel(logging.CRITICAL)


def resolve_db(args: argparse.Namespace, config: TaskcueConfig | None = None) -> str:
    if args.db:
        return args.db
    if config is not None and config.store.path != ":memory:":
        return config.store.path
    return DEFAULT_DB


def _error(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {message}")


# --- submit / status ---


async def cmd_submit(args: argparse.Namespace) -> int:
    store = await SqliteStore.open(resolve_db(args))
    try:
        queue = TaskQueue(store)
        task = Task(id=args.id or "", content=args.payload, priority=args.priority)
        try:
            task_id = await queue.enqueue(task, dependencies=args.depends_on or [])
        except InvalidTaskError as e:
            _error(str(e))
            return EXIT_ERROR
        print(task_id)
        return EXIT_OK
    finally:
        await store.close()


async def cmd_status(args: argparse.Namespace) -> int:
    store = await SqliteStore.open(resolve_db(args))
    try:
        queue = TaskQueue(store)
        if args.task_id:
            task = await queue.get_task(args.task_id)
            if task is None:
                _error(f"Unknown task: {args.task_id}")
                return EXIT_ERROR
            console.print(task_detail(task, await queue.get_result(task.id)))
            return EXIT_OK

        status = TaskStatus(args.state) if args.state else None
        tasks = await queue.list_tasks(status=status, limit=args.limit)
        if not tasks:
            console.print("[dim]No tasks.[/dim]")
        else:
            console.print(tasks_table(tasks))
        return EXIT_OK
    finally:
        await store.close()


# --- run / batch ---


async def start_workers(
    transport: MemoryTransport,
    coordinator: Coordinator,
    config: TaskcueConfig,
    count: int | None,
) -> list[WorkerAgent]:
    """Register and start workers: ``count`` generic ones, else those in the config file."""
    specs: list[tuple[str, str | None, str | None, list[str]]] = []
    if count is None and config.workers:
        for spec in config.workers:
            for worker_id in spec.worker_ids():
                specs.append((worker_id, spec.role, spec.domain, list(spec.skills)))
    else:
        specs = [(f"worker-{i + 1}", None, None, []) for i in range(2 if count is None else count)]

    workers = []
    handlers = default_handlers()
    for worker_id, role, domain, skills in specs:
        coordinator.register_worker(worker_id, role_id=role, domain_id=domain, skills=skills)
        worker = WorkerAgent(
            transport,
            worker_id,
            handlers,
            coordinator_id=coordinator.id,
            heartbeat_interval=config.coordinator.heartbeat_interval,
        )
        await worker.start()
        workers.append(worker)
    return workers


def build_router(config: TaskcueConfig) -> TaskRouter | None:
    if not config.routing_domain:
        return None
    domain = config.domain_registry().get(config.routing_domain)
    if domain is None:
        raise ValueError(f"Unknown routing domain: {config.routing_domain}")
    return TaskRouter(domain)


async def cmd_run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    store = await SqliteStore.open(resolve_db(args, config))
    transport = MemoryTransport()
    await transport.connect()

    queue = TaskQueue(
        store,
        retry=ExponentialBackoff(config.retry.to_policy()),
        result_ttl=config.coordinator.result_ttl,
    )
    coordinator = Coordinator(
        transport,
        queue=queue,
        router=build_router(config),
        config=config.coordinator,
    )
    await coordinator.start(monitor_heartbeats=True)
    workers = await start_workers(transport, coordinator, config, args.workers)

    try:
        try:
            await asyncio.wait_for(coordinator.drain_queue(), args.timeout)
        finally:
            for worker in workers:
                await worker.stop()
            await coordinator.stop()
            await transport.disconnect()

        counts = {status: 0 for status in TaskStatus}
        for task in await queue.list_tasks(limit=1_000_000):
            counts[task.status] += 1
        blocked = await queue.blocked_tasks()
    except asyncio.TimeoutError:
        _error(f"Queue not drained after {args.timeout}s")
        return EXIT_ERROR
    except NoWorkerAvailableError as e:
        _error(str(e))
        return EXIT_NO_WORKER
    finally:
        await store.close()

    table = Table(title="Run Results", show_header=False, border_style="green")
    table.add_column("Metric", style="dim")
    table.add_column("Value", style="bold")
    table.add_row("Completed", f"[green]{counts[TaskStatus.COMPLETED]}[/green]")
    table.add_row("Failed", f"[red]{counts[TaskStatus.FAILED]}[/red]")
    table.add_row("Blocked", f"[yellow]{len(blocked)}[/yellow]")
    console.print(table)

    if counts[TaskStatus.FAILED]:
        return EXIT_TASK_FAILURES
    if blocked:
        return EXIT_UNSATISFIABLE
    return EXIT_OK


def load_batch(path: Path) -> list[Task]:
    """
    Read a JSON list of tasks.

    Each entry is either a payload string or an object with ``content``
    and optional ``id``, ``priority`` and ``dependencies``.

    Raises:
        ValueError: If the file is not a list of tasks.
    """
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError("Batch file must contain a JSON list")

    tasks = []
    for i, item in enumerate(raw):
        if isinstance(item, str):
            item = {"content": item}
        if not isinstance(item, dict) or not isinstance(item.get("content"), str):
            raise ValueError(f"Entry {i} has no string 'content'")
        tasks.append(Task(
            id=str(item.get("id") or f"task-{i}"),
            content=item["content"],
            priority=int(item.get("priority", 0)),
            dependencies=[str(d) for d in item.get("dependencies", [])],
        ))
    return tasks


def _results_table(tasks: list[Task], results: dict[str, Result]) -> Table:
    table = Table(title="Batch Results", border_style="blue")
    table.add_column("Task", style="bold")
    table.add_column("Worker")
    table.add_column("Outcome")
    table.add_column("Data", overflow="ellipsis", max_width=50)

    for task in tasks:
        result = results.get(task.id)
        if result is None:
            table.add_row(task.id, "", "[dim]not run[/dim]", "")
        elif result.success:
            table.add_row(task.id, result.origin, "[green]ok[/green]", json.dumps(result.data, default=str))
        else:
            table.add_row(task.id, result.origin, "[red]failed[/red]", result.content)
    return table


async def cmd_batch(args: argparse.Namespace) -> int:
    try:
        tasks = load_batch(Path(args.file))
    except (OSError, ValueError) as e:
        _error(f"Cannot read batch file: {e}")
        return EXIT_USAGE

    config = load_config(args.config)
    transport = MemoryTransport()
    await transport.connect()
    coordinator = Coordinator(transport, router=build_router(config), config=config.coordinator)
    await coordinator.start()
    workers = await start_workers(transport, coordinator, config, args.workers)

    @coordinator.on_wave
    def show_wave(task_ids):
        console.print(f"[dim]wave:[/dim] {', '.join(task_ids)}")

    results: dict[str, Result] = {}
    try:
        results = await coordinator.execute_tasks_in_parallel(tasks)
    except DependencyCycleError as e:
        results = e.results
        _error(str(e))
        return EXIT_UNSATISFIABLE
    except NoWorkerAvailableError as e:
        results = e.results
        _error(str(e))
        return EXIT_NO_WORKER
    except ResultTimeoutError as e:
        results = e.results
        _error(str(e))
        return EXIT_ERROR
    finally:
        console.print(_results_table(tasks, results))
        for worker in workers:
            await worker.stop()
        await coordinator.stop()
        await transport.disconnect()

    if any(not r.success for r in results.values()):
        return EXIT_TASK_FAILURES
    return EXIT_OK


# --- sim ---


async def run_sim(config: SimConfig, verbose: bool = False) -> int:
    """Run a simulation with the live display (or plain logs when verbose)."""
    state = SimulationState()
    runner = SimulationRunner(config, state)

    if verbose:
        try:
            await runner.run()
        finally:
            await runner.cleanup()
        print_final_summary(state, console)
        return EXIT_TASK_FAILURES if state.failed else EXIT_OK

    display = SimulatorDisplay(state, console)
    stall_counter = 0
    last_completed = 0
    stall_timeout_ticks = int(config.stall_timeout * 10) if config.stall_timeout else None

    async def update_loop():
        """Refresh the display and detect stalls."""
        nonlocal stall_counter, last_completed
        while True:
            # Stall: nothing completing, nothing running, work still queued
            if state.completed == last_completed and state.queued > 0 and state.running == 0:
                stall_counter += 1
                if stall_counter > 20:
                    state.blocked_info = await runner.debug_blocked()
                if stall_timeout_ticks and stall_counter >= stall_timeout_ticks:
                    state.add_event("timeout", "system", None, f"Stalled for {config.stall_timeout}s")
                    runner.stop()
                    return
            else:
                stall_counter = 0
                state.blocked_info = []
            last_completed = state.completed

            display.refresh()
            await asyncio.sleep(0.1)

    with display:
        update_task = asyncio.create_task(update_loop())
        try:
            await runner.run()
        finally:
            update_task.cancel()
            try:
                await update_task
            except asyncio.CancelledError:
                pass
            await runner.cleanup()
            display.refresh()

    print_final_summary(state, console)
    return EXIT_TASK_FAILURES if state.failed else EXIT_OK


async def cmd_sim(args: argparse.Namespace) -> int:
    config = SimConfig(
        count=args.count,
        latency_ms=args.latency,
        latency_jitter=args.jitter,
        error_rate=args.error_rate,
        workers=args.workers,
        scenario=args.scenario,
        duration=args.duration,
        stall_timeout=args.timeout,
    )
    return await run_sim(config, verbose=args.verbose)


# --- entry point ---


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskcue",
        description="taskcue - coordinate a pool of task-executing workers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  taskcue submit "CALC: 2 ** 10" --priority 5
  taskcue submit "ANALYZE: setup.cfg" --depends-on task-1
  taskcue status
  taskcue run --workers 4 --timeout 30
  taskcue batch tasks.json
  taskcue sim --scenario fanout --count 20
  taskcue sim --list-scenarios
        """,
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Print library logs to stderr",
    )
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help=f"SQLite queue file (default: store.path from config, else {DEFAULT_DB})",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    submit = sub.add_parser("submit", help="Queue a task")
    submit.add_argument("payload", help="Task payload, e.g. 'CALC: 1 + 1'")
    submit.add_argument("--id", default=None, help="Task id (default: generated)")
    submit.add_argument("--priority", "-p", type=int, default=0, help="Higher runs first (default: 0)")
    submit.add_argument(
        "--depends-on", "-d",
        nargs="+",
        default=None,
        metavar="ID",
        help="Task ids that must complete first",
    )

    status = sub.add_parser("status", help="Show queued tasks, or one task")
    status.add_argument("task_id", nargs="?", default=None)
    status.add_argument("--state", choices=[s.value for s in TaskStatus], default=None)
    status.add_argument("--limit", type=int, default=100)

    run = sub.add_parser("run", help="Run workers until the queue is drained")
    run.add_argument("--workers", "-w", type=int, default=None, help="Generic workers (default: from config, else 2)")
    run.add_argument("--config", "-c", type=str, default=None, help="YAML config file")
    run.add_argument("--timeout", "-t", type=float, default=None, help="Give up after N seconds")

    batch = sub.add_parser("batch", help="Run a JSON task list in dependency waves")
    batch.add_argument("file", help="JSON list of tasks")
    batch.add_argument("--workers", "-w", type=int, default=None, help="Generic workers (default: from config, else 2)")
    batch.add_argument("--config", "-c", type=str, default=None, help="YAML config file")

    sim = sub.add_parser("sim", help="Simulate a workload with a live display")
    sim.add_argument("--scenario", type=str, default="single_queue", help="Scenario to run (default: single_queue)")
    sim.add_argument("--list-scenarios", action="store_true", help="List available scenarios and exit")
    sim.add_argument("--count", "-n", type=int, default=50, help="Number of work items (default: 50)")
    sim.add_argument("--latency", "-l", type=int, default=100, help="Base handler latency in ms (default: 100)")
    sim.add_argument("--jitter", "-j", type=float, default=0.2, help="Latency variance as fraction (default: 0.2)")
    sim.add_argument("--error-rate", "-e", type=float, default=0.0, help="Fraction of attempts that fail (default: 0.0)")
    sim.add_argument("--workers", "-w", type=int, default=5, help="Number of workers (default: 5)")
    sim.add_argument("--duration", type=float, default=None, help="Maximum duration in seconds")
    sim.add_argument("--timeout", type=float, default=None, help="Auto-stop if stalled for N seconds")

    return parser


COMMANDS = {
    "submit": cmd_submit,
    "status": cmd_status,
    "run": cmd_run,
    "batch": cmd_batch,
    "sim": cmd_sim,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "sim":
        if args.list_scenarios:
            from taskcue_sim.scenarios import list_scenarios
            print("\nAvailable scenarios:\n")
            for info in list_scenarios():
                print(f"  {info.name:<15} {info.description}")
            print()
            return EXIT_OK
        from taskcue_sim.scenarios import SCENARIOS
        if args.scenario not in SCENARIOS:
            parser.error(f"Unknown scenario: {args.scenario}. Available: {', '.join(SCENARIOS)}")

    configure_logging(verbose=args.verbose)

    async def run_main() -> int:
        """Run the command; SIGINT/SIGTERM cancel it."""
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except (NotImplementedError, RuntimeError):
                pass  # Not supported on this platform or thread

        main_task = asyncio.create_task(COMMANDS[args.command](args))
        stop_task = asyncio.create_task(stop_event.wait())

        done, pending = await asyncio.wait(
            [main_task, stop_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if main_task in done:
            return main_task.result()
        print("\nInterrupted.")
        return EXIT_INTERRUPTED

    try:
        return asyncio.run(run_main())
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return EXIT_INTERRUPTED
    except Exception as e:
        _error(str(e))
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())

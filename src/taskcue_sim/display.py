"""Rich-based display for the taskcue simulator and CLI.

Decoupled from the simulation logic: it only renders data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from taskcue.models import QueuedTask, Result, TaskStatus, WorkerInfo, WorkerStatus


@dataclass
class WorkerRow:
    """One worker as shown in the workers panel."""

    id: str
    status: str = WorkerStatus.IDLE.value
    role: str | None = None
    task_count: int = 0
    success_rate: float = 1.0
    current_task: str | None = None

    @classmethod
    def from_info(cls, info: WorkerInfo, current_task: str | None = None) -> WorkerRow:
        return cls(
            id=info.id,
            status=info.status.value,
            role=info.role_id,
            task_count=info.task_count,
            success_rate=info.success_rate,
            current_task=current_task,
        )


@dataclass
class EventRecord:
    """A recent event for display."""

    timestamp: datetime
    event_type: str
    task_id: str
    worker_id: str | None = None
    details: str = ""


@dataclass
class SimulationState:
    """Current state of the simulation for display.

    The runner updates this; the display renders it.
    """

    # Queue stats
    submitted: int = 0
    pending: int = 0
    ready: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    retrying: int = 0

    # Timing
    start_time: float = 0.0
    elapsed: float = 0.0

    workers: dict[str, WorkerRow] = field(default_factory=dict)

    # Recent events (most recent first)
    events: list[EventRecord] = field(default_factory=list)
    max_events: int = 10

    # Config display
    target_count: int = 0
    latency_ms: int = 0
    latency_jitter: float = 0.2
    error_rate: float = 0.0
    scenario_name: str = "single_queue"

    # Pending tasks whose dependencies failed
    blocked_info: list[dict] = field(default_factory=list)

    @property
    def queued(self) -> int:
        return self.pending + self.ready + self.retrying

    @property
    def throughput(self) -> float:
        """Tasks completed per second."""
        if self.elapsed > 0:
            return self.completed / self.elapsed
        return 0.0

    @property
    def progress(self) -> float:
        """Fraction finished (0.0 to 1.0)."""
        if self.submitted > 0:
            return (self.completed + self.failed) / self.submitted
        return 0.0

    def add_event(
        self,
        event_type: str,
        task_id: str,
        worker_id: str | None = None,
        details: str = "",
    ) -> None:
        self.events.insert(0, EventRecord(
            timestamp=datetime.now(),
            event_type=event_type,
            task_id=task_id,
            worker_id=worker_id,
            details=details,
        ))
        if len(self.events) > self.max_events:
            self.events = self.events[:self.max_events]


_STATUS_STYLES = {
    TaskStatus.PENDING: "dim",
    TaskStatus.READY: "cyan",
    TaskStatus.IN_PROGRESS: "yellow",
    TaskStatus.COMPLETED: "green",
    TaskStatus.FAILED: "red",
    TaskStatus.RETRYING: "magenta",
}

_EVENT_STYLES = {
    "queued": "dim",
    "started": "yellow",
    "completed": "green",
    "retrying": "magenta",
    "failed": "red",
    "timeout": "bold red",
}


class SimulatorDisplay:
    """Live TUI: queue stats, workers, recent events and config footer."""

    def __init__(self, state: SimulationState, console: Console | None = None):
        self.state = state
        self.console = console or Console()
        self._live: Live | None = None

    def __enter__(self) -> SimulatorDisplay:
        self._live = Live(
            self._build_layout(),
            console=self.console,
            refresh_per_second=10,
            screen=False,
        )
        self._live.__enter__()
        return self

    def __exit__(self, *args) -> None:
        if self._live:
            self._live.__exit__(*args)
            self._live = None

    def refresh(self) -> None:
        if self._live:
            self._live.update(self._build_layout())

    def _build_layout(self) -> Panel:
        s = self.state

        sections = [
            (Layout(name="queue", size=4), self._build_queue_section()),
            (Layout(name="workers", size=3 + max(len(s.workers), 1)), self._build_workers_section()),
        ]
        if s.blocked_info and s.running == 0:
            sections.append(
                (Layout(name="blocked", size=2 + min(len(s.blocked_info), 4)), self._build_blocked_section())
            )
        sections.append((Layout(name="events", size=7), self._build_events_section()))
        sections.append((Layout(name="config", size=3), self._build_config_section()))

        layout = Layout()
        layout.split_column(*(part for part, _ in sections))
        for part, content in sections:
            part.update(content)

        return Panel(
            layout,
            title=f"[bold cyan]taskcue sim[/bold cyan] [dim]{s.scenario_name}[/dim]",
            border_style="cyan",
        )

    def _build_queue_section(self) -> Panel:
        s = self.state
        counts = {
            TaskStatus.PENDING: s.pending,
            TaskStatus.READY: s.ready,
            TaskStatus.RETRYING: s.retrying,
            TaskStatus.IN_PROGRESS: s.running,
            TaskStatus.COMPLETED: s.completed,
            TaskStatus.FAILED: s.failed,
        }

        by_status = Table.grid(expand=True, padding=(0, 2))
        cells = []
        for status, count in counts.items():
            style = _STATUS_STYLES[status]
            by_status.add_column(justify="left")
            cells.append(f"[dim]{status.value}[/dim] [bold {style}]{count:,}[/bold {style}]")
        by_status.add_row(*cells)

        totals = Table.grid(expand=True, padding=(0, 2))
        totals.add_column(justify="left")
        totals.add_column(justify="left")
        totals.add_column(justify="right")
        totals.add_row(
            f"{self._progress_bar(s.progress, 20)} {s.progress * 100:.0f}% of {s.submitted:,}",
            f"[dim]rate[/dim] [bold]{s.throughput:.1f} tasks/s[/bold]",
            f"[dim]{s.elapsed:.1f}s[/dim]",
        )

        content = Table.grid(expand=True)
        content.add_row(by_status)
        content.add_row(totals)
        return Panel(content, title="[bold]Task Queue[/bold]", border_style="blue")

    def _build_workers_section(self) -> Panel:
        s = self.state

        table = Table(box=None, expand=True, padding=(0, 1), show_header=False)
        table.add_column("Worker", width=14)
        table.add_column("Status", width=9)
        table.add_column("Role", width=12)
        table.add_column("Tasks", width=7, justify="right")
        table.add_column("Success", width=14)
        table.add_column("Current", ratio=1)

        status_styles = {"idle": "green", "busy": "yellow", "offline": "dim", "error": "red"}
        for row in s.workers.values():
            style = status_styles.get(row.status, "white")
            table.add_row(
                f"[bold]{row.id}[/bold]",
                f"[{style}]{row.status}[/{style}]",
                row.role or "[dim]-[/dim]",
                str(row.task_count),
                f"{self._progress_bar(row.success_rate, 8)} {row.success_rate * 100:.0f}%",
                f"[dim]{row.current_task or ''}[/dim]",
            )

        if not s.workers:
            table.add_row("[dim]No workers registered[/dim]", "", "", "", "", "")

        return Panel(table, title="[bold]Workers[/bold]", border_style="blue")

    def _build_blocked_section(self) -> Panel:
        s = self.state

        table = Table(box=None, expand=True, padding=(0, 1), show_header=False)
        table.add_column("Task", width=20)
        table.add_column("Waiting on", ratio=1)

        for item in s.blocked_info[:4]:
            task = item["task"]
            failed = set(item.get("failed", []))
            waiting = ", ".join(
                f"[red]{dep}[/red]" if dep in failed else dep for dep in item.get("waiting_on", [])
            )
            table.add_row(f"[bold]{task.id}[/bold]", waiting)

        if len(s.blocked_info) > 4:
            table.add_row("", f"[dim]... and {len(s.blocked_info) - 4} more[/dim]")

        return Panel(table, title="[bold yellow]⚠ Blocked Tasks[/bold yellow]", border_style="yellow")

    def _build_events_section(self) -> Panel:
        events = self.state.events[:5]

        table = Table(box=None, expand=True, padding=(0, 1), show_header=False)
        table.add_column("At", width=10, style="dim")
        table.add_column("What", width=12)
        table.add_column("Task", width=20)
        table.add_column("By", width=12)
        table.add_column("Note")

        for event in events:
            style = _EVENT_STYLES.get(event.event_type, "white")
            table.add_row(
                event.timestamp.strftime("%H:%M:%S"),
                f"[{style}]{event.event_type}[/{style}]",
                event.task_id[:20],
                event.worker_id or "[dim]-[/dim]",
                event.details[:30],
            )
        if not events:
            table.add_row("", "[dim]waiting[/dim]", "", "", "")

        return Panel(table, title="[bold]Activity[/bold]", border_style="blue")

    def _build_config_section(self) -> Panel:
        s = self.state
        jitter = f" ±{s.latency_jitter * 100:.0f}%" if s.latency_jitter > 0 else ""
        error_style = "bold red" if s.error_rate > 0 else "bold"

        text = Text.assemble(
            ("workers ", "dim"), (str(len(s.workers)), "bold"),
            ("  latency ", "dim"), (f"{s.latency_ms}ms{jitter}", "bold"),
            ("  error rate ", "dim"), (f"{s.error_rate:.0%}", error_style),
            ("  items ", "dim"), (f"{s.target_count:,}", "bold"),
            ("    Ctrl+C stops the run", "dim"),
        )
        return Panel(text, title="[bold]Settings[/bold]", border_style="dim")

    @staticmethod
    def _progress_bar(pct: float, width: int = 10) -> str:
        """Mini bar; green when high since it shows success rate."""
        pct = min(1.0, max(0.0, pct))
        filled = int(pct * width)
        empty = width - filled

        if pct >= 0.9:
            color = "green"
        elif pct >= 0.6:
            color = "yellow"
        else:
            color = "red"

        return f"[{color}]{'█' * filled}{'░' * empty}[/{color}]"


# --- One-shot output for the CLI ---


def tasks_table(tasks: list[QueuedTask], title: str = "Tasks") -> Table:
    table = Table(title=title, border_style="blue")
    table.add_column("ID", style="bold")
    table.add_column("Status")
    table.add_column("Priority", justify="right")
    table.add_column("Retries", justify="right")
    table.add_column("Waiting on")
    table.add_column("Payload", overflow="ellipsis", max_width=40)

    for task in tasks:
        style = _STATUS_STYLES.get(task.status, "white")
        table.add_row(
            task.id,
            f"[{style}]{task.status.value}[/{style}]",
            str(task.priority),
            f"{task.retry_count}/{task.max_retries}",
            ", ".join(task.dependencies),
            task.content,
        )
    return table


def task_detail(task: QueuedTask, result: Result | None = None) -> Panel:
    table = Table.grid(padding=(0, 2))
    table.add_column(style="dim")
    table.add_column()

    style = _STATUS_STYLES.get(task.status, "white")
    table.add_row("Status", f"[{style}]{task.status.value}[/{style}]")
    table.add_row("Payload", task.content)
    table.add_row("Priority", str(task.priority))
    table.add_row("Retries", f"{task.retry_count}/{task.max_retries}")
    if task.dependencies:
        table.add_row("Waiting on", ", ".join(task.dependencies))
    for label, ts in (("Started", task.started_at), ("Completed", task.completed_at)):
        if ts is not None:
            table.add_row(label, datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S"))
    if task.error:
        table.add_row("Error", f"[red]{task.error}[/red]")
    if result is not None:
        table.add_row("Result", repr(result.data))

    return Panel(table, title=f"[bold]{task.id}[/bold]", border_style="blue")


def print_final_summary(state: SimulationState, console: Console | None = None) -> None:
    """Print final summary after a run."""
    console = console or Console()
    console.print()

    table = Table(title="Run Results", show_header=False, border_style="green")
    table.add_column("Metric", style="dim")
    table.add_column("Value", style="bold")

    table.add_row("Submitted", str(state.submitted))
    table.add_row("Completed", f"[green]{state.completed}[/green]")
    table.add_row("Failed", f"[red]{state.failed}[/red]" if state.failed else "0")
    if state.pending:
        table.add_row("Still pending", f"[yellow]{state.pending}[/yellow]")
    table.add_row("Duration", f"{state.elapsed:.2f}s")
    table.add_row("Throughput", f"{state.throughput:.2f}/s")

    console.print(table)

# ui.py
# Per-host progress rendering: fixed-row ANSI bars, a rich live panel, and a recorder for tests

from __future__ import annotations
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Set, Tuple

from rich.console import Console, Group
from rich.control import Control, ControlType
from rich.live import Live
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TaskID, TaskProgressColumn, TextColumn
from rich.text import Text

BAR_WIDTH = 50
ACTION = "Scanning ports..."


def render_bar(host: str, completed: int, total: int, width: int = BAR_WIDTH, action: str = ACTION) -> str:
    """
    "[host] [====>    ] NN% action". A host with nothing to scan (total == 0)
    renders as complete.
    """
    progress = 1.0 if total <= 0 else min(completed, total) / total
    pos = int(width * progress)
    bar = "".join("=" if i < pos else ">" if i == pos else " " for i in range(width))
    return f"[{host}] [{bar}] {int(progress * 100)}% {action}"


class ProgressReporter:
    """
    Sink for "completed of total ports scanned on host". Every implementation
    serializes output through self.lock; nothing else should write progress
    to the terminal.
    """

    def __init__(self):
        self.lock = threading.RLock()
        self._rows: Dict[str, int] = {}
        self._next_row = 1

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def allocate_row(self, host: str) -> int:
        """Stable 1-based display row for host, assigned in call order."""
        with self.lock:
            row = self._rows.get(host)
            if row is None:
                row = self._rows[host] = self._next_row
                self._next_row += 1
            return row

    def update(self, host: str, completed: int, total: int, row: int) -> None:
        raise NotImplementedError

    def message(self, text: str) -> None:
        raise NotImplementedError

    @contextmanager
    def tail(self) -> Iterator[Optional[Console]]:
        """Hold the output guard while writing an ordinary line below the bars."""
        with self.lock:
            yield None


class TerminalProgress(ProgressReporter):
    """
    One bar per host redrawn in place on its own terminal row. Status lines
    flow below the bars. Bars whose row falls off the bottom of the screen,
    and every bar when the console is not a terminal, are printed once as a
    plain line when they finish.
    """

    def __init__(self, console: Optional[Console] = None, width: int = BAR_WIDTH, clear: bool = True):
        super().__init__()
        self.console = console or Console(highlight=False)
        self.width = width
        self.clear = clear
        self.fixed_rows = self.console.is_terminal

    def start(self) -> None:
        if self.fixed_rows and self.clear:
            with self.lock:
                self.console.control(Control.clear(), Control.home())

    def update(self, host: str, completed: int, total: int, row: int) -> None:
        done = completed >= total
        line = render_bar(host, completed, total, self.width)
        with self.lock:
            if self.fixed_rows and row < self.console.height:
                self.console.control(Control.move_to(0, row - 1), Control((ControlType.ERASE_IN_LINE, 2)))
                self.console.print(line, end="\n" if done else "", markup=False, highlight=False, soft_wrap=True)
            elif done:
                # Rows below the visible screen only show their final line
                with self.tail() as console:
                    console.print(line, markup=False, highlight=False, soft_wrap=True)

    def message(self, text: str) -> None:
        with self.tail() as console:
            console.print(text, markup=False, highlight=False, soft_wrap=True)

    @contextmanager
    def tail(self) -> Iterator[Console]:
        with self.lock:
            if self.fixed_rows:
                self.console.control(Control.move_to(0, self._next_row - 1))
            yield self.console
            # Rows below the cursor are reserved for lines already written
            self._next_row += 1


class LiveProgress(ProgressReporter):
    """Rich live panel: run totals plus one progress bar per host."""

    def __init__(self, console: Optional[Console] = None, refresh_per_second: int = 12):
        super().__init__()
        self.console = console or Console()
        self.refresh_per_second = refresh_per_second
        self.hosts_done = 0
        self._done: Dict[str, int] = {}
        self._finished: Set[str] = set()
        self._tasks: Dict[str, TaskID] = {}
        self._progress = Progress(
            TextColumn("[bold cyan]{task.fields[host]}"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("{task.description}"),
            console=self.console,
        )
        self._live: Optional[Live] = None

    def start(self) -> None:
        self._live = Live(self._render(), console=self.console, refresh_per_second=self.refresh_per_second)
        self._live.start()

    def stop(self) -> None:
        if self._live:
            self._live.update(self._render(), refresh=True)
            self._live.stop()
            self._live = None

    def update(self, host: str, completed: int, total: int, row: int) -> None:
        with self.lock:
            task = self._tasks.get(host)
            if task is None:
                task = self._tasks[host] = self._progress.add_task(ACTION, host=host, total=total or 1)
            finished = completed >= total
            self._progress.update(task, completed=completed if total else 1, total=total or 1)
            self._done[host] = completed
            if finished and host not in self._finished:
                self._finished.add(host)
                self.hosts_done += 1
                self._progress.update(task, description="Done")
            self._refresh()

    def message(self, text: str) -> None:
        with self.tail() as console:
            console.print(text, markup=False, highlight=False)

    @contextmanager
    def tail(self) -> Iterator[Console]:
        with self.lock:
            yield self.console

    def _refresh(self) -> None:
        if self._live:
            self._live.update(self._render())

    def _render(self):
        stats = Panel(
            Text(
                f"Hosts: {self.hosts_done}/{len(self._rows)} | "
                f"Ports tested: {sum(self._done.values())}",
                style="white",
            ),
            title="Progress",
        )
        return Group(Panel(Text("Subnet port sweep", style="bold cyan")), stats, self._progress)


class RecordingProgress(ProgressReporter):
    """Keeps every call for later assertions; renders nothing."""

    def __init__(self):
        super().__init__()
        self.updates: List[Tuple[str, int, int, int]] = []
        self.messages: List[str] = []

    def update(self, host: str, completed: int, total: int, row: int) -> None:
        with self.lock:
            self.updates.append((host, completed, total, row))

    def message(self, text: str) -> None:
        with self.lock:
            self.messages.append(text)

    def updates_for(self, host: str) -> List[Tuple[int, int, int]]:
        with self.lock:
            return [(c, t, r) for h, c, t, r in self.updates if h == host]


class GuardedRichHandler(RichHandler):
    """RichHandler that writes through a reporter's guard so log lines never split a bar."""

    def __init__(self, progress: ProgressReporter, **kwargs):
        kwargs.setdefault("show_path", False)
        super().__init__(console=getattr(progress, "console", None), **kwargs)
        self.progress = progress

    def emit(self, record: logging.LogRecord) -> None:
        with self.progress.tail():
            super().emit(record)

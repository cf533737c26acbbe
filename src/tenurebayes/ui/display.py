import contextlib
import logging
import time
from threading import Lock
from typing import Any, Dict, Iterable, Optional

import pandas as pd
from rich import box
from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table
from rich.text import Text

from ..utils.logger import init_logger
from .logger import LogCaptureHandler


class ModellingDisplay:
    """Rich display for fitting, checking and post-stratifying ownership models."""

    def __init__(self, logger: logging.Logger | None = None, max_logs: int = 5):
        self.layout = Layout()
        self.layout.split_column(
            Layout(name="logs", size=8),
            Layout(name="header", size=3),
            Layout(name="body"),
            Layout(name="checks", size=3),
            Layout(name="footer", size=3),
        )

        self.logs = []
        self.max_logs = max_logs
        self.layout["logs"].update(
            Panel("", title="Logger output", border_style="dim white")
        )
        self.logger = logger or init_logger()
        self.package_name = "TenureBayes"
        self.header_panel = Panel(
            Text(self.package_name, style="bold blue"),
            box=box.ROUNDED,
            border_style="blue",
        )
        self.layout["header"].update(self.header_panel)

        self.check_results = Text("")
        self.layout["checks"].update(
            Panel(
                self.check_results,
                title="Checker Results",
                border_style="cyan",
                box=box.ROUNDED,
            )
        )
        self.layout["footer"].update(
            Panel(
                Text("Press Ctrl+C to cancel", style="dim"),
                box=box.ROUNDED,
                border_style="dim",
            )
        )

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            TextColumn("[green]{task.fields[info]}"),
            BarColumn(bar_width=None),
            "[progress.percentage]{task.percentage:>3.1f}%",
            TimeElapsedColumn(),
            TimeRemainingColumn(),
        )

        self.stats_table = Table(box=box.SIMPLE)
        self.body_layout = Layout()
        self.body_layout.split_row(
            Layout(self.progress, name="progress", ratio=2),
            Layout(self.stats_table, name="stats", ratio=1),
        )
        self.layout["body"].update(self.body_layout)

        self.stats: Dict[str, Any] = {
            "Observations": 0,
            "Strata": 0,
            "Statistical Models": "",
            "Chains": 0,
            "Samples": 0,
            "Num divergents": 0,
            "Checks passed": 0,
            "Checks failed": 0,
            "Errors encountered": 0,
        }

        self.start_time = time.time()
        self.live = None
        self._task_ids = {}
        # log records and Live refreshes come from other threads
        self._lock = Lock()

    def update_logs(self, log_entry: str) -> None:
        """Callback for LogCaptureHandler."""
        with self._lock:
            self.logs.append(log_entry)
            self.logs = self.logs[-self.max_logs :]
            self.layout["logs"].update(
                Panel(
                    "\n".join(self.logs), title="Logger output", border_style="dim white"
                )
            )

    @contextlib.contextmanager
    def capture_logs(self, logger_names: Iterable[str | None] | None = None):
        """Route the named loggers into the logs panel while the display is up."""
        if logger_names is None:
            logger_names = ["jax", "numpyro", "arviz", None]

        existing_handlers = []
        for name in logger_names:
            logger = logging.getLogger(name)
            for handler in list(logger.handlers):
                existing_handlers.append((logger, handler))
                logger.removeHandler(handler)

        handlers = []
        for name in logger_names:
            logger = logging.getLogger(name)
            handler = LogCaptureHandler(self.update_logs)
            logger.addHandler(handler)
            handlers.append((logger, handler))

        try:
            yield
        finally:
            for logger, handler in handlers:
                logger.removeHandler(handler)
            for logger, handler in existing_handlers:
                logger.addHandler(handler)

    def start(self) -> None:
        self.live = Live(self.layout, refresh_per_second=4)
        self.live.start()
        self._update_stats_table()

    def stop(self) -> None:
        if self.live:
            self.live.stop()

    @property
    def is_live(self) -> bool:
        if not self.live:
            return False
        return self.live.is_started

    def update_header(self, text: str) -> None:
        self.header_panel = Panel(
            Text(self.package_name + " - " + text, style="bold blue"),
            box=box.ROUNDED,
            border_style="blue",
        )
        self.layout["header"].update(self.header_panel)

    def update_stat(self, key: str, value: Any) -> None:
        with self._lock:
            self.stats[key] = value
            self._update_stats_table()

    def update_stats(self, stats: Dict[str, Any]) -> None:
        with self._lock:
            self.stats.update(stats)
            self._update_stats_table()

    def _update_stats_table(self) -> None:
        if not self.live:
            return
        self.stats_table = Table(box=box.SIMPLE)
        self.stats_table.add_column("Statistic", style="cyan")
        self.stats_table.add_column("Value", style="green")
        for key, value in self.stats.items():
            self.stats_table.add_row(key, str(value))
        self.body_layout["stats"].update(self.stats_table)

    def add_task(
        self,
        description: str,
        chain: Optional[int] = None,
        total: Optional[int] = None,
    ) -> int:
        info = f"Chain {chain}" if chain is not None else ""
        task_id = self.progress.add_task(description, total=total, info=info)
        self._task_ids[description] = task_id
        return task_id

    def update_task(self, description: str, advance: int = 1, **kwargs) -> None:
        if description in self._task_ids:
            self.progress.update(self._task_ids[description], advance=advance, **kwargs)

    def add_check(self, check_name: str, result: str) -> None:
        """Add a check result to the checker panel."""
        if result == "pass":
            symbol = Text(".", style="bold green")
            self.stats["Checks passed"] = self.stats.get("Checks passed", 0) + 1
        elif result == "fail":
            symbol = Text("F", style="bold red")
            self.stats["Checks failed"] = self.stats.get("Checks failed", 0) + 1
        elif result == "error":
            symbol = Text("E", style="bold yellow")
            self.stats["Checks errored"] = self.stats.get("Checks errored", 0) + 1
        elif result == "NA":
            symbol = Text("-", style="dim")
        else:
            symbol = Text("?", style="bold magenta")

        with self._lock:
            self._update_stats_table()
            self.check_results.append(symbol)
            self.layout["checks"].update(
                Panel(
                    self.check_results,
                    title="Checker Results",
                    border_style="cyan",
                    box=box.ROUNDED,
                )
            )


def print_table(df: pd.DataFrame, title: str = "", console: Console | None = None) -> None:
    """Render a DataFrame as a rich table."""
    console = console or Console()
    table = Table(title=title, box=box.SIMPLE_HEAVY)
    for column in df.columns:
        table.add_column(str(column), style="cyan" if column == df.columns[0] else None)
    for row in df.itertuples(index=False):
        table.add_row(
            *(f"{v:.3f}" if isinstance(v, float) else str(v) for v in row)
        )
    console.print(table)

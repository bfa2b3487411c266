"""
gemfury-to-npm Console Output

Secret masking plus the reporters that turn migration events into terminal
output (rich) or log records.
"""

import re
from typing import Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from gemfury_to_npm.events import (
    ModuleDone,
    ModuleStarted,
    ProgressUpdate,
    RunFinished,
    RunStarted,
    VersionSkipped,
    WarningRaised,
)


# Patterns that indicate a secret value
SECRET_PATTERNS = [
    "token", "password", "secret", "apikey", "api_key", "auth", "bearer",
]

# Regex patterns for common secret formats
SECRET_REGEXES = [
    r'(?<=fury\.io/)[A-Za-z0-9_\-]{6,}(?=/)',  # Gemfury key in npm.fury.io/<key>/<user>
    r'npm_[A-Za-z0-9]{36}',  # npm granular/automation tokens
    r'(?<=_authToken=)[^\s"\']+',  # .npmrc auth tokens
]


def mask_secrets(text: str, mask: str = "********") -> str:
    """Mask secrets in a string.

    Args:
        text: The text that may contain secrets
        mask: The string to replace secrets with

    Returns:
        Text with secrets masked
    """
    if not text:
        return text

    result = text

    # Mask known secret patterns in key=value format
    for pattern in SECRET_PATTERNS:
        regex = rf'({pattern}["\']?\s*[=:]\s*["\']?)([^"\'\s]+)(["\']?)'
        result = re.sub(regex, rf'\1{mask}\3', result, flags=re.IGNORECASE)

    # Mask specific secret formats
    for regex in SECRET_REGEXES:
        result = re.sub(regex, mask, result)

    return result


def is_secret_key(key: str) -> bool:
    """Check if a key name indicates it holds a secret value."""
    key_lower = key.lower()
    return any(pattern in key_lower for pattern in SECRET_PATTERNS)


class ConsoleReporter:
    """Renders migration events as a progress bar with interleaved warnings.

    Usable as a context manager so the live bar is torn down even when the
    run dies with an exception.
    """

    def __init__(self, console: Optional[Console] = None, transient: bool = True):
        self.console = console or Console()
        self.transient = transient
        self._progress: Optional[Progress] = None
        self._task = None
        self._count = 0
        self._index = 0
        self._module = ""

    def __enter__(self) -> "ConsoleReporter":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def __call__(self, event: Any) -> None:
        if isinstance(event, RunStarted):
            self._start(event.module_count)
        elif isinstance(event, ModuleStarted):
            self._index, self._count, self._module = event.index, event.count, event.module
            self._update("", 0.0)
        elif isinstance(event, ProgressUpdate):
            self._update(event.stage, event.fraction)
        elif isinstance(event, VersionSkipped):
            self._print(f"[dim]○ Skipping {escape(event.module)}@{event.version}: {escape(event.reason)}[/dim]")
        elif isinstance(event, WarningRaised):
            self._print(f"[yellow]⚠[/yellow] {escape(mask_secrets(event.message))}")
        elif isinstance(event, ModuleDone):
            self._module_done(event)
        elif isinstance(event, RunFinished):
            self.close()
            self.show_summary(event)

    def _start(self, count: int):
        self.close()
        self._count = count
        self._progress = Progress(
            TextColumn("[ {task.fields[current]} / {task.fields[count]} ]"),
            TextColumn("[bold]{task.fields[module]:<30.30}[/bold]"),
            TextColumn("[blue]{task.fields[stage]:<20.20}[/blue]"),
            BarColumn(bar_width=30),
            TaskProgressColumn(),
            console=self.console,
            transient=self.transient,
        )
        self._task = self._progress.add_task(
            "migrate", total=100, current=0, count=count, module="", stage=""
        )
        self._progress.start()

    def _update(self, stage: str, fraction: float):
        if self._progress is None:
            return
        self._progress.update(
            self._task,
            completed=max(0.0, min(fraction, 1.0)) * 100,
            current=self._index,
            count=self._count,
            module=self._module,
            stage=stage,
        )

    def _print(self, message: str):
        # Progress.console prints above the live bar
        console = self._progress.console if self._progress else self.console
        console.print(message)

    def _module_done(self, event: ModuleDone):
        width = len(str(self._count))
        prefix = f"[ {self._index:>{width}} / {self._count} ]"
        if event.error:
            self._print(f"{prefix} [bold]{escape(event.module)}[/bold] [red]✗[/red] {escape(mask_secrets(event.error))}")
            return

        label = f"{event.published_count} Versions"
        if event.failed_count:
            label += f", {event.failed_count} failed"
        icon = "[red]✗[/red]" if event.failed_count else "[green bold]✓[/green bold]"
        self._print(f"{prefix} [bold]{escape(event.module)}[/bold] [blue]{label}[/blue] {icon}")

    def show_summary(self, event: RunFinished):
        """Show a summary table of all processed modules."""
        if not event.modules:
            self.console.print("[dim]No modules processed.[/dim]")
            return

        table = Table(title="Migration Summary", border_style="blue")
        table.add_column("Module", style="cyan")
        table.add_column("Published", justify="right")
        table.add_column("Skipped", justify="right", style="dim")
        table.add_column("Failed", justify="right")
        table.add_column("Status")

        for done in event.modules:
            if done.error:
                status = "[red]module failed[/red]"
            elif done.failed_count:
                status = "[yellow]partial[/yellow]"
            else:
                status = "[green]ok[/green]"
            table.add_row(
                done.module,
                str(done.published_count),
                str(done.skipped_count),
                str(done.failed_count),
                status,
            )

        self.console.print(table)

    def close(self):
        """Stop the live progress display."""
        if self._progress is not None:
            self._progress.stop()
            self._progress = None
            self._task = None


class LoggingReporter:
    """Writes migration events to a logger."""

    def __init__(self, logger):
        self.logger = logger

    def __call__(self, event: Any) -> None:
        if isinstance(event, RunStarted):
            self.logger.info("Migrating %d modules", event.module_count)
        elif isinstance(event, ModuleStarted):
            self.logger.info("[%d/%d] %s", event.index, event.count, event.module)
        elif isinstance(event, ProgressUpdate):
            self.logger.debug("%s: %s (%.0f%%)", event.module, event.stage, event.fraction * 100)
        elif isinstance(event, VersionSkipped):
            self.logger.info("Skipping %s@%s: %s", event.module, event.version, event.reason)
        elif isinstance(event, WarningRaised):
            self.logger.warning(event.message)
        elif isinstance(event, ModuleDone):
            if event.error:
                self.logger.error("%s failed: %s", event.module, event.error)
            else:
                self.logger.info(
                    "%s done: %d published, %d skipped, %d failed",
                    event.module, event.published_count, event.skipped_count, event.failed_count,
                )
        elif isinstance(event, RunFinished):
            self.logger.info("Run finished: %d modules", len(event.modules))

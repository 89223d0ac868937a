"""Rich console feedback for the command line interface."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
import rich.box

logger = logging.getLogger(__name__)


class StatusIcon:
    """Status icons for CLI display."""

    SUCCESS = "[bold green]✓[/bold green]"
    ERROR = "[bold red]✗[/bold red]"
    WARNING = "[bold yellow]⚠[/bold yellow]"
    INFO = "[bold blue]●[/bold blue]"
    DEBUG = "[dim]◦[/dim]"

    LOADING = "[bold cyan]◐[/bold cyan]"
    TARGET = "[bold green]◉[/bold green]"
    MISSED = "[bold yellow]○[/bold yellow]"

    BULLET = "[dim]•[/dim]"


_PRIORITY_STYLES = {
    'critical': 'bold red',
    'high': 'red',
    'medium': 'yellow',
    'low': 'dim',
}

_STATUS_ICONS = {
    'success': StatusIcon.SUCCESS,
    'completed': StatusIcon.SUCCESS,
    'healthy': StatusIcon.SUCCESS,
    'error': StatusIcon.ERROR,
    'failed': StatusIcon.ERROR,
    'unhealthy': StatusIcon.ERROR,
    'warning': StatusIcon.WARNING,
    'missed': StatusIcon.WARNING,
}


class UserFeedback:
    """Console output for runs, iterations and session summaries."""

    def __init__(self, verbose: bool = False, quiet: bool = False):
        self.verbose = verbose
        self.quiet = quiet
        self.console = Console(stderr=False)
        self.error_console = Console(stderr=True)

    def success(self, message: str, details: Optional[str] = None):
        if not self.quiet:
            self.console.print(f"{StatusIcon.SUCCESS} {message}")
            if details and self.verbose:
                self._print_details(details, "green")

    def error(self, message: str, suggestion: Optional[str] = None, details: Optional[str] = None):
        """Display an error with an optional suggestion; shown even in quiet mode."""
        self.error_console.print(f"{StatusIcon.ERROR} [bold red]Error:[/bold red] {message}")

        if suggestion:
            self.error_console.print(f"  [yellow]💡 Suggestion:[/yellow] {suggestion}")

        if details and self.verbose:
            self._print_details(details, "red", console=self.error_console)

    def warning(self, message: str, suggestion: Optional[str] = None):
        if not self.quiet:
            self.console.print(f"{StatusIcon.WARNING} [bold yellow]Warning:[/bold yellow] {message}")

            if suggestion:
                self.console.print(f"  [yellow]💡 {suggestion}[/yellow]")

    def info(self, message: str, details: Optional[str] = None):
        if not self.quiet:
            self.console.print(f"{StatusIcon.INFO} {message}")

            if details and self.verbose:
                self._print_details(details, "blue")

    def debug(self, message: str, details: Optional[str] = None):
        """Display a debug message (verbose mode only)."""
        if self.verbose and not self.quiet:
            self.console.print(f"{StatusIcon.DEBUG} [dim]{message}[/dim]")
            if details:
                self._print_details(details, "dim")

    def brand_header(self, subtitle: str = ""):
        if not self.quiet:
            title_text = Text()
            title_text.append("mutant-testgen", style="bold bright_blue")
            if subtitle:
                title_text.append(f" • {subtitle}", style="dim cyan")

            self.console.print()
            self.console.print(Panel(
                Align.center(title_text),
                border_style="bright_blue",
                box=rich.box.DOUBLE,
                padding=(0, 2),
            ))

    def section_header(self, title: str):
        if not self.quiet:
            self.console.print(f"\n[bold bright_cyan]▊ {title}[/bold bright_cyan]")

    def status_table(self, title: str, items: List[Tuple[str, str, str]]):
        """Display a status table with icons.

        Args:
            title: Table title
            items: List of (status, name, description) tuples
        """
        if not self.quiet:
            table = Table(title=title, show_header=True, header_style="bold magenta")
            table.add_column("Status", style="bold", width=8, justify="center")
            table.add_column("Component", style="cyan", min_width=20)
            table.add_column("Description", style="white")

            for status, name, description in items:
                table.add_row(self._get_status_icon(status), name, description)

            self.console.print(table)

    def iteration_table(self, title: str, iterations: List[Dict[str, Any]], target_score: float):
        """Display per-iteration mutation scores of one feedback loop.

        Each item carries ``iteration``, ``mutation_score``, ``survived``,
        ``duration`` and optionally ``error``.
        """
        if self.quiet:
            return

        table = Table(title=title, show_header=True, header_style="bold magenta", box=rich.box.ROUNDED)
        table.add_column("#", justify="right", width=4)
        table.add_column("Score", justify="right", width=8)
        table.add_column("Target", justify="center", width=8)
        table.add_column("Survived", justify="right", width=9)
        table.add_column("Duration", justify="right", width=10)
        table.add_column("Notes", style="dim")

        for item in iterations:
            score = item.get('mutation_score')
            if score is None:
                score_text, marker = "-", StatusIcon.ERROR
            else:
                score_text = f"{score:.1f}%"
                marker = StatusIcon.TARGET if score >= target_score else StatusIcon.MISSED
            table.add_row(
                str(item.get('iteration', '')),
                score_text,
                marker,
                str(item.get('survived', '-')),
                f"{item.get('duration', 0.0):.1f}s",
                item.get('error') or '',
            )

        self.console.print(table)

    def recommendations(self, items: List[Dict[str, Any]], limit: int = 5):
        """Display recommendations coloured by priority."""
        if self.quiet or not items:
            return

        self.console.print("[bold]Recommendations:[/bold]")
        for item in items[:limit]:
            priority = item.get('priority', 'low')
            style = _PRIORITY_STYLES.get(priority, 'white')
            self.console.print(
                f"  {StatusIcon.BULLET} [{style}]{priority.upper()}[/{style}] "
                f"{item.get('title', '')}: [dim]{item.get('description', '')}[/dim]"
            )

    def summary_panel(self, title: str, items: Dict[str, Any], style: str = "green"):
        if not self.quiet:
            content = [f"[bold]{key}:[/bold] {value}" for key, value in items.items()]
            self.console.print(Panel("\n".join(content), title=title, border_style=style, padding=(1, 2)))

    def final_summary(self, title: str, items: Dict[str, Any], style: str = "green"):
        """Display the final summary - always shown even in quiet mode."""
        content = [f"[bold]{key}:[/bold] {value}" for key, value in items.items()]
        self.console.print()
        self.console.print(Panel(
            "\n".join(content),
            title=f"[bold]{title}[/bold]",
            border_style=style,
            padding=(1, 2)
        ))

    @contextmanager
    def status_spinner(self, message: str, spinner_style: str = "dots") -> Iterator[None]:
        """Display a status spinner for long operations."""
        if not self.quiet:
            with self.console.status(f"{StatusIcon.LOADING} {message}", spinner=spinner_style) as status:
                yield status
        else:
            yield None

    def _print_details(self, details: str, style: str, console: Optional[Console] = None):
        target_console = console or self.console
        for line in details.split('\n'):
            if line.strip():
                target_console.print(f"  [dim]│[/dim] [{style}]{line}[/{style}]")

    def _get_status_icon(self, status: str) -> str:
        return _STATUS_ICONS.get(status.lower(), StatusIcon.INFO)

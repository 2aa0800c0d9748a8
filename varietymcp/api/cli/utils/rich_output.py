"""Rich-based output formatting for varietymcp CLI commands."""

import json
import os
import sys
from typing import Any

import rich.box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from varietymcp.core.types import CandidateServer


class MessagePrefixes:
    """Constants for consistent message prefixes in fallback mode."""

    INFO = "[INFO]"
    SUCCESS = "[SUCCESS]"
    WARN = "[WARN]"
    ERROR = "[ERROR]"
    DEBUG = "[DEBUG]"


class RichOutputFormatter:
    """Terminal output formatter using Rich, with a plain-text fallback."""

    def __init__(self, verbose: bool = False):
        """Initialize Rich output formatter.

        Args:
            verbose: Whether to enable verbose output
        """
        self.verbose = verbose
        self._terminal_compatible = self._check_terminal_compatibility()
        self.console = Console() if self._terminal_compatible else None

    def _check_terminal_compatibility(self) -> bool:
        """Check if terminal supports Rich formatting."""
        if os.environ.get("VARIETYMCP_NO_RICH"):
            return False
        if not sys.stdout.isatty():
            return False
        return os.environ.get("TERM", "") not in ("dumb", "unknown")

    def _safe_print(self, message: str, fallback_message: str) -> None:
        """Print with Rich when available, otherwise plain text."""
        if self.console is not None:
            self.console.print(message)
        else:
            print(fallback_message)

    def info(self, message: str) -> None:
        """Print an info message."""
        self._safe_print(
            f"[blue][INFO][/blue] {escape(message)}", f"{MessagePrefixes.INFO} {message}"
        )

    def success(self, message: str) -> None:
        """Print a success message."""
        self._safe_print(
            f"[green][SUCCESS][/green] {escape(message)}",
            f"{MessagePrefixes.SUCCESS} {message}",
        )

    def warning(self, message: str) -> None:
        """Print a warning message."""
        self._safe_print(
            f"[yellow][WARN][/yellow] {escape(message)}", f"{MessagePrefixes.WARN} {message}"
        )

    def error(self, message: str) -> None:
        """Print an error message."""
        self._safe_print(
            f"[red][ERROR][/red] {escape(message)}", f"{MessagePrefixes.ERROR} {message}"
        )

    def verbose_info(self, message: str) -> None:
        """Print a verbose info message if verbose mode is enabled."""
        if self.verbose:
            self._safe_print(
                f"[cyan][DEBUG][/cyan] {escape(message)}",
                f"{MessagePrefixes.DEBUG} {message}",
            )

    def section_header(self, title: str) -> None:
        """Print a section header with consistent formatting."""
        if self.console is not None:
            self.console.print(Panel(title, style="bold cyan", padding=(0, 1)))
        else:
            print(f"\n=== {title} ===\n")

    def json_output(self, data: Any) -> None:
        """Print data as formatted JSON."""
        json_str = json.dumps(data, indent=2, default=str)
        if self.console is not None:
            self.console.print(Syntax(json_str, "json", theme="monokai"))
        else:
            print(json_str)

    def box_section(self, title: str, content: list[tuple[str, str]]) -> None:
        """Print a bordered section with key-value pairs."""
        if self.console is None:
            print(f"\n{title}")
            for key, value in content:
                print(f"  {key}: {value}")
            return

        table = Table(title=title, show_header=False, box=rich.box.ROUNDED)
        table.add_column("Key", style="cyan", no_wrap=True)
        table.add_column("Value", style="white")
        for key, value in content:
            table.add_row(key, escape(value))
        self.console.print(table)

    def candidates_table(self, capability: str, candidates: list[CandidateServer]) -> None:
        """Print ranked discovery candidates."""
        if self.console is None:
            print(f"\nCandidates for '{capability}':")
            for rank, c in enumerate(candidates, 1):
                print(
                    f"  {rank}. {c.package_name}@{c.version} "
                    f"score={c.score:.1f} source={c.source_origin.value}"
                )
            return

        table = Table(title=f"Candidates for '{capability}'", box=rich.box.ROUNDED)
        table.add_column("#", justify="right", style="dim")
        table.add_column("Package", style="cyan")
        table.add_column("Version")
        table.add_column("Score", justify="right")
        table.add_column("Source", style="magenta")
        table.add_column("Description", overflow="fold")
        for rank, c in enumerate(candidates, 1):
            table.add_row(
                str(rank),
                escape(c.package_name),
                escape(c.version),
                f"{c.score:.1f}",
                c.source_origin.value,
                escape(c.description[:80]),
            )
        self.console.print(table)

    def attempt_summary(self, status: dict[str, Any]) -> None:
        """Print one acquisition attempt as returned by get_acquisition_status()."""
        content = [
            ("Stage", status["stage"]),
            ("Stages", " -> ".join(status.get("stages", []))),
            ("Elapsed", f"{status.get('elapsed_seconds', 0.0)}s"),
        ]
        candidate = status.get("candidate")
        if candidate:
            content.append(("Package", f"{candidate['package_name']}@{candidate['version']}"))
        if status.get("process_id"):
            content.append(("Process", status["process_id"]))
        if status.get("tool_name"):
            content.append(("Tool", status["tool_name"]))
        failure = status.get("failure")
        if failure:
            content.append(("Failed at", f"{failure['stage']} ({failure['kind']})"))
            content.append(("Reason", str(failure["reason"])))
        installed = status.get("installed")
        if installed:
            content.append(("Install dir", installed["install_dir"]))
        self.box_section(f"Acquisition: {status['capability']}", content)

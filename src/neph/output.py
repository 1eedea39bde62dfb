"""Console output for the neph CLI."""

import json
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console()
error_console = Console(stderr=True)


class OutputFormatter:
    """Handles output formatting for CLI."""

    def __init__(
        self,
        json_output: bool = False,
        out: Optional[Console] = None,
        err: Optional[Console] = None,
    ):
        self.json_output = json_output
        self.console = out or console
        self.error_console = err or error_console

    def print_block(self, path: str, block_text: str) -> None:
        """Print the managed block of a config file."""
        # Bytes that are not UTF-8 show up as replacement characters
        block_text = block_text.encode("utf-8", "surrogateescape").decode("utf-8", "replace")
        if self.json_output:
            self.console.print_json(json.dumps({"file": path, "block": block_text}))
            return

        if not block_text:
            self.console.print(f"[yellow]No managed block in {escape(path)}[/yellow]")
            return
        self.console.out(block_text, end="", highlight=False)

    def print_hosts(self, hosts: dict[str, str]) -> None:
        """Print configured hostnames and their addresses."""
        if self.json_output:
            self.console.print_json(json.dumps(hosts))
            return

        if not hosts:
            self.console.print("[yellow]No hosts configured.[/yellow]")
            return

        table = Table(title="Configured Hosts")
        table.add_column("Hostname", style="cyan", no_wrap=True)
        table.add_column("Address", style="magenta")
        for name in sorted(hosts):
            table.add_row(name, hosts[name])
        self.console.print(table)

    def print_paths(self, paths: list[str]) -> None:
        """Print one path per line."""
        if self.json_output:
            self.console.print_json(json.dumps(paths))
            return
        for path in paths:
            self.console.print(path, markup=False, highlight=False, soft_wrap=True)

    def print_success(self, message: str) -> None:
        """Print success message."""
        if not self.json_output:
            self.console.print(f"[green]✓[/green] {escape(message)}")

    def print_error(self, message: str, hint: Optional[str] = None) -> None:
        """Print error message."""
        if self.json_output:
            data = {"error": message}
            if hint:
                data["hint"] = hint
            self.error_console.print_json(json.dumps(data))
            return

        self.error_console.print(f"[red]✗[/red] {escape(message)}", highlight=False)
        if hint:
            self.error_console.print(f"  {hint}", markup=False, highlight=False)

    def print_warning(self, message: str) -> None:
        """Print warning message."""
        if not self.json_output:
            self.console.print(f"[yellow]![/yellow] {escape(message)}")

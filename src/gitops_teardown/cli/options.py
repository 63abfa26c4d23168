"""Shared CLI options."""

from __future__ import annotations

import typer

OutputOption = typer.Option("table", "--output", "-o", help="Output format: table, json, yaml")
ContextOption = typer.Option(None, "--context", help="Kubernetes context name")
ConfigOption = typer.Option(
    None, "--config", help="YAML file overriding the built-in names, patterns and timeouts",
    exists=True, dir_okay=False, readable=True,
)
ForceOption = typer.Option(False, "--force", "-f", help="Skip the confirmation prompt")
DryRunOption = typer.Option(
    False, "--dry-run", "--list", "-l", help="Only show what would be deleted",
)
TimeoutOption = typer.Option(None, "--timeout", "-t", help="Seconds to wait for each deletion before forcing it")
SecondaryTimeoutOption = typer.Option(
    None, "--secondary-timeout", help="Seconds to wait after a forced deletion",
)
WorkersOption = typer.Option(None, "--workers", help="Parallel deletions within one rank (1 = sequential)")
DeadlineOption = typer.Option(None, "--deadline", help="Stop starting new deletions after this many seconds")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Debug logging and detailed inventories")

"""gitops-teardown teardown-namespace <name> - Empty and delete a namespace."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from gitops_teardown.cli.common import (
    confirm,
    configure_logging,
    connect,
    declined,
    err_console,
    finish,
    load_settings,
    run_plan,
)
from gitops_teardown.cli.options import (
    ConfigOption,
    ContextOption,
    DryRunOption,
    ForceOption,
    OutputOption,
    SecondaryTimeoutOption,
    TimeoutOption,
    VerboseOption,
)
from gitops_teardown.output.formatters import output_namespace_inventory


def teardown_namespace(
    name: str = typer.Argument(help="Namespace name"),
    output: str = OutputOption,
    context: Optional[str] = ContextOption,
    config: Optional[Path] = ConfigOption,
    force: bool = ForceOption,
    dry_run: bool = DryRunOption,
    timeout: Optional[float] = TimeoutOption,
    secondary_timeout: Optional[float] = SecondaryTimeoutOption,
    verbose: bool = VerboseOption,
) -> None:
    """Delete every resource in a namespace, then the namespace itself."""
    configure_logging(verbose)
    settings = load_settings(
        config,
        output,
        managed_namespaces=[name],
        namespace_timeout=timeout,
        secondary_timeout=secondary_timeout,
    )
    session = connect(settings, context)
    plan = session.builder.namespace_plan()
    resource = plan.resources[0]

    if dry_run or (verbose and output == "table"):
        with err_console.status(f"[bold cyan]Collecting resources in {name}…"):
            counts = session.engine.namespace_inventory(name) if session.engine.exists(resource) is not False else None
        output_namespace_inventory({name: counts}, output)
        if dry_run:
            return

    if not confirm(f"This will delete namespace '{name}' and everything in it.", force):
        declined()
        return

    report = run_plan(session, plan, output)
    finish(report)

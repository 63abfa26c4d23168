"""gitops-teardown teardown-crds - Delete platform CRDs and their instances."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from gitops_teardown.cli.common import (
    EXIT_FAILED,
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
    DeadlineOption,
    DryRunOption,
    ForceOption,
    OutputOption,
    SecondaryTimeoutOption,
    TimeoutOption,
    VerboseOption,
    WorkersOption,
)
from gitops_teardown.core.errors import ClusterAPIError
from gitops_teardown.output.formatters import output_crds


def teardown_crds(
    pattern: Optional[List[str]] = typer.Option(
        None, "--pattern", "-p", help="Additional regex matched against CRD names (repeatable)",
    ),
    output: str = OutputOption,
    context: Optional[str] = ContextOption,
    config: Optional[Path] = ConfigOption,
    force: bool = ForceOption,
    dry_run: bool = DryRunOption,
    timeout: Optional[float] = TimeoutOption,
    secondary_timeout: Optional[float] = SecondaryTimeoutOption,
    workers: Optional[int] = WorkersOption,
    deadline: Optional[float] = DeadlineOption,
    verbose: bool = VerboseOption,
) -> None:
    """Delete CRDs installed by the platform, removing their custom resources first."""
    configure_logging(verbose)
    settings = load_settings(
        config,
        output,
        extra_crd_patterns=pattern or (),
        crd_timeout=timeout,
        secondary_timeout=secondary_timeout,
        max_workers=workers,
        deadline_seconds=deadline,
    )
    session = connect(settings, context)
    engine = session.engine

    with err_console.status("[bold cyan]Discovering CRDs…") as status:
        plan = session.builder.crd_plan()
        crds = []
        for i, res in enumerate(plan.resources, 1):
            status.update(f"[bold cyan]Counting custom resources… [dim]({i}/{len(plan)})[/dim] {res.name}")
            try:
                info = engine.crd_info(res.name)
            except ClusterAPIError as e:
                err_console.print(f"[yellow]Could not inspect {res.name}: {e}[/yellow]")
                continue
            if info is not None:
                crds.append(info)

    if dry_run:
        output_crds(crds, output, verbose=verbose)
        if session.builder.discovery_errors:
            raise typer.Exit(code=EXIT_FAILED)
        return

    if output == "table" or not plan:
        output_crds(crds, output, verbose=verbose)
    if not plan:
        if session.builder.discovery_errors:
            raise typer.Exit(code=EXIT_FAILED)
        return

    instances = sum(c.instance_count for c in crds)
    if not confirm(
        f"This will delete {len(plan)} CRD(s) and {instances} custom resource(s). This cannot be undone.",
        force,
    ):
        declined()
        return

    report = run_plan(session, plan, output)
    finish(report, session.builder.discovery_errors)

"""gitops-teardown teardown-all - Remove the whole platform in dependency order."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

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
from gitops_teardown.models import ResourceKind
from gitops_teardown.output.formatters import output_namespace_inventory, output_plan


def teardown_all(
    output: str = OutputOption,
    context: Optional[str] = ContextOption,
    config: Optional[Path] = ConfigOption,
    force: bool = ForceOption,
    dry_run: bool = DryRunOption,
    timeout: Optional[float] = TimeoutOption,
    namespace_timeout: Optional[float] = typer.Option(
        None, "--namespace-timeout", help="Seconds to wait for each namespace before forcing it",
    ),
    secondary_timeout: Optional[float] = SecondaryTimeoutOption,
    workers: Optional[int] = WorkersOption,
    deadline: Optional[float] = DeadlineOption,
    skip_crds: bool = typer.Option(False, "--skip-crds", help="Leave custom resource definitions in place"),
    verbose: bool = VerboseOption,
) -> None:
    """Delete applications, namespaces, cluster-scoped objects and CRDs, in that order."""
    configure_logging(verbose)
    settings = load_settings(
        config,
        output,
        application_timeout=timeout,
        cluster_object_timeout=timeout,
        crd_timeout=timeout,
        namespace_timeout=namespace_timeout,
        secondary_timeout=secondary_timeout,
        max_workers=workers,
        deadline_seconds=deadline,
    )
    session = connect(settings, context)
    builder = session.builder

    with err_console.status("[bold cyan]Discovering resources…"):
        plan = builder.full_plan(include_crds=not skip_crds)

    if dry_run:
        output_plan(plan, output)
        if verbose and output == "table":
            inventory = {
                res.name: session.engine.namespace_inventory(res.name)
                if session.engine.exists(res) is not False else None
                for res in plan.resources
                if res.kind == ResourceKind.NAMESPACE
            }
            output_namespace_inventory(inventory, output)
        if builder.discovery_errors:
            raise typer.Exit(code=EXIT_FAILED)
        return

    if output == "table":
        output_plan(plan, output)
    if not confirm(
        f"This will delete {len(plan)} resource(s) from cluster '{session.k8s.active_context_name}'. "
        "This cannot be undone.",
        force,
    ):
        declined()
        return

    report = run_plan(
        session,
        plan,
        output,
        pause_before={builder.namespace_rank: settings.settle_seconds},
    )
    finish(report, builder.discovery_errors)

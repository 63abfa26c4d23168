"""gitops-teardown teardown-application <name> - Delete one ArgoCD Application."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from gitops_teardown.cli.common import (
    confirm,
    configure_logging,
    connect,
    declined,
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
from gitops_teardown.output.formatters import output_plan

console = Console()


def teardown_application(
    name: str = typer.Argument(help="ArgoCD Application name"),
    namespace: Optional[str] = typer.Option(
        None, "--namespace", "-n", help="Namespace holding the Application (default: argocd)",
    ),
    output: str = OutputOption,
    context: Optional[str] = ContextOption,
    config: Optional[Path] = ConfigOption,
    force: bool = ForceOption,
    dry_run: bool = DryRunOption,
    timeout: Optional[float] = TimeoutOption,
    secondary_timeout: Optional[float] = SecondaryTimeoutOption,
    verbose: bool = VerboseOption,
) -> None:
    """Delete an ArgoCD Application, clearing finalizers if it gets stuck."""
    configure_logging(verbose)
    settings = load_settings(
        config,
        output,
        argocd_namespace=namespace,
        applications=[[name]],
        application_timeout=timeout,
        secondary_timeout=secondary_timeout,
    )
    session = connect(settings, context)
    plan = session.builder.application_plan()

    if dry_run:
        output_plan(plan, output)
        if output == "table":
            resource = plan.resources[0]
            state = session.engine.describe(resource)
            if state is None:
                console.print(f"[dim]{resource} does not exist.[/dim]")
            elif "error" in state:
                console.print(f"[yellow]Could not inspect {resource}: {state['error']}[/yellow]")
            else:
                finalizers = ", ".join(state.get("finalizers", [])) or "none"
                console.print(f"{resource} exists (finalizers: {finalizers})")
        return

    if not confirm(f"This will delete Application '{name}' from namespace '{settings.argocd_namespace}'.", force):
        declined()
        return

    report = run_plan(session, plan, output)
    finish(report)

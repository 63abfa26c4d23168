"""Rich table builders for each command."""

from __future__ import annotations

from rich.panel import Panel
from rich.table import Table

from gitops_teardown.models.crd import CrdInfo
from gitops_teardown.models.report import DeletionReport
from gitops_teardown.models.resource import DeletionPlan
from gitops_teardown.output.themes import styled_kind, styled_outcome

# Instance names shown per CRD in verbose listings
MAX_LISTED_INSTANCES = 10


def plan_table(plan: DeletionPlan, title: str = "Deletion Plan") -> Table:
    table = Table(title=title, expand=True, show_lines=False)
    table.add_column("Rank", justify="right", style="dim")
    table.add_column("Kind", no_wrap=True)
    table.add_column("Type", style="cyan", no_wrap=True)
    table.add_column("Namespace", style="blue", no_wrap=True)
    table.add_column("Name", style="bold white")

    for group in plan.groups:
        for res in group:
            table.add_row(
                str(res.rank),
                styled_kind(res.kind),
                res.resource_type.kind,
                res.namespace or "-",
                res.name,
            )
    return table


def report_table(report: DeletionReport) -> Table:
    table = Table(title="Teardown Results", expand=True)
    table.add_column("Rank", justify="right", style="dim")
    table.add_column("Resource", style="bold white")
    table.add_column("Outcome", no_wrap=True)
    table.add_column("Forced", justify="center")
    table.add_column("Elapsed", justify="right", style="dim")
    table.add_column("Details", max_width=50)

    outcomes = sorted(report.outcomes, key=lambda o: o.resource.rank)
    for o in outcomes:
        details = [o.reason] if o.reason else []
        if o.swept_kinds:
            details.append(f"{o.swept_kinds} kind(s) swept")
        if o.instances_deleted:
            details.append(f"{o.instances_deleted} instance(s) deleted")
        table.add_row(
            str(o.resource.rank),
            o.resource.identifier,
            styled_outcome(o.status),
            "[yellow]yes[/yellow]" if o.escalated else "",
            f"{o.elapsed:.1f}s",
            "; ".join(details),
        )
    for res in report.skipped:
        table.add_row(str(res.rank), res.identifier, "[dim]skipped[/dim]", "", "", "run cancelled")
    return table


def failures_panel(report: DeletionReport) -> Panel:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Resource", style="bold red", no_wrap=True)
    table.add_column("State")

    for o in report.failures:
        state = o.last_state or {}
        lines = [o.reason or o.status.value]
        if state.get("deletionTimestamp"):
            lines.append(f"deletionTimestamp: {state['deletionTimestamp']}")
        if state.get("finalizers"):
            lines.append(f"finalizers: {', '.join(state['finalizers'])}")
        if state.get("specFinalizers"):
            lines.append(f"spec.finalizers: {', '.join(state['specFinalizers'])}")
        if state.get("phase"):
            lines.append(f"phase: {state['phase']}")
        for condition in state.get("conditions", []):
            lines.append(condition)
        table.add_row(o.resource.identifier, "\n".join(lines))

    return Panel(
        table,
        title="[bold]Resources needing manual inspection[/bold]",
        border_style="red",
    )


def crd_inventory_table(crds: list[CrdInfo], verbose: bool = False) -> Table:
    table = Table(title="Custom Resource Definitions", expand=True)
    table.add_column("CRD", style="bold white")
    table.add_column("Group", style="magenta")
    table.add_column("Scope", style="cyan", no_wrap=True)
    table.add_column("Created", style="dim", no_wrap=True)
    table.add_column("Instances", justify="right", style="bold")
    if verbose:
        table.add_column("Instance Names", style="dim")

    for crd in crds:
        row = [crd.name, crd.group, crd.scope, crd.created or "-", str(crd.instance_count)]
        if verbose:
            row.append(_instance_names(crd))
        table.add_row(*row)
    return table


def _instance_names(crd: CrdInfo) -> str:
    shown = [f"{ns}/{name}" if ns else name for ns, name in crd.instances[:MAX_LISTED_INSTANCES]]
    hidden = crd.instance_count - len(shown)
    if hidden > 0:
        shown.append(f"... and {hidden} more")
    return "\n".join(shown)


def namespace_inventory_table(namespace: str, counts: dict[str, int]) -> Table:
    table = Table(title=f"Resources in namespace {namespace}", expand=False)
    table.add_column("Kind", style="cyan")
    table.add_column("Count", justify="right", style="bold")
    for kind, count in sorted(counts.items()):
        table.add_row(kind, str(count))
    return table

"""Table / JSON / YAML output dispatch."""

from __future__ import annotations

import json
from typing import Any

import yaml
from rich.console import Console

from gitops_teardown.models.crd import CrdInfo
from gitops_teardown.models.report import DeletionOutcome, DeletionReport
from gitops_teardown.models.resource import DeletionPlan, ManagedResource

console = Console()


def _resource_to_dict(r: ManagedResource) -> dict[str, Any]:
    data: dict[str, Any] = {
        "kind": r.kind.value,
        "type": r.resource_type.kind,
        "name": r.name,
        "rank": r.rank,
    }
    if r.namespace:
        data["namespace"] = r.namespace
    return data


def _outcome_to_dict(o: DeletionOutcome) -> dict[str, Any]:
    data = _resource_to_dict(o.resource)
    data.update({
        "outcome": o.status.value,
        "escalated": o.escalated,
        "elapsed_seconds": round(o.elapsed, 2),
    })
    if o.reason:
        data["reason"] = o.reason
    if o.swept_kinds:
        data["swept_kinds"] = o.swept_kinds
    if o.instances_deleted:
        data["instances_deleted"] = o.instances_deleted
    if o.last_state is not None:
        data["last_state"] = o.last_state
    return data


def _report_to_dict(report: DeletionReport) -> dict[str, Any]:
    return {
        "summary": {status.value: count for status, count in report.counts.items()},
        "escalations": report.escalations,
        "cancelled": report.cancelled,
        "failed": report.failed_identifiers,
        "skipped": [r.identifier for r in report.skipped],
        "outcomes": [_outcome_to_dict(o) for o in report.outcomes],
    }


def _crd_to_dict(c: CrdInfo) -> dict[str, Any]:
    return {
        "name": c.name,
        "group": c.group,
        "kind": c.kind,
        "version": c.version,
        "scope": c.scope,
        "created": c.created,
        "instance_count": c.instance_count,
        "instances": [
            {"namespace": ns, "name": name} if ns else {"name": name}
            for ns, name in c.instances
        ],
    }


def _dump(data: Any, fmt: str) -> None:
    if fmt == "json":
        console.print_json(json.dumps(data, indent=2, default=str))
    else:
        console.print(yaml.dump(data, default_flow_style=False, sort_keys=False))


def output_plan(plan: DeletionPlan, fmt: str, title: str = "Deletion Plan") -> None:
    if fmt in ("json", "yaml"):
        _dump([_resource_to_dict(r) for r in plan.resources], fmt)
    else:
        from gitops_teardown.output.tables import plan_table
        console.print(plan_table(plan, title=title))


def output_report(report: DeletionReport, fmt: str) -> None:
    if fmt in ("json", "yaml"):
        _dump(_report_to_dict(report), fmt)
        return

    from gitops_teardown.output.tables import failures_panel, report_table
    console.print(report_table(report))
    if report.failures:
        console.print(failures_panel(report))

    color = "green" if report.ok else "red"
    console.print(f"\nTeardown complete: [{color}]{report.summary}[/{color}]")
    if report.escalations:
        console.print(f"[yellow]{report.escalations} resource(s) needed forced deletion[/yellow]")


def output_crds(crds: list[CrdInfo], fmt: str, verbose: bool = False) -> None:
    if fmt in ("json", "yaml"):
        _dump([_crd_to_dict(c) for c in crds], fmt)
        return

    from gitops_teardown.output.tables import crd_inventory_table
    if not crds:
        console.print("[dim]No matching CRDs found.[/dim]")
        return
    console.print(crd_inventory_table(crds, verbose=verbose))
    total = sum(c.instance_count for c in crds)
    console.print(f"\n{len(crds)} CRD(s), {total} custom resource instance(s)")


def output_namespace_inventory(inventory: dict[str, dict[str, int] | None], fmt: str) -> None:
    """``inventory`` maps namespace name to kind counts, or None if it does not exist."""
    if fmt in ("json", "yaml"):
        _dump(
            {ns: {"exists": counts is not None, "resources": counts or {}} for ns, counts in inventory.items()},
            fmt,
        )
        return

    from gitops_teardown.output.tables import namespace_inventory_table
    for ns, counts in inventory.items():
        if counts is None:
            console.print(f"[dim]Namespace {ns} does not exist.[/dim]")
        elif not counts:
            console.print(f"Namespace [blue]{ns}[/blue] is empty.")
        else:
            console.print(namespace_inventory_table(ns, counts))

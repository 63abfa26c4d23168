"""Plumbing shared by the teardown commands."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

import typer
from rich.console import Console

from gitops_teardown.config.settings import Settings
from gitops_teardown.core.errors import ClusterConnectionError, InvalidConfigError, PartialFailureError
from gitops_teardown.core.k8s_client import K8sClient
from gitops_teardown.core.plan_builder import PlanBuilder
from gitops_teardown.core.plan_runner import PlanRunner
from gitops_teardown.core.teardown_engine import TeardownEngine
from gitops_teardown.models.report import DeletionOutcome, DeletionReport
from gitops_teardown.models.resource import DeletionPlan
from gitops_teardown.output.formatters import output_report

logger = logging.getLogger(__name__)
# Progress and prompts stay off stdout so json/yaml output can be piped
err_console = Console(stderr=True)

EXIT_FAILED = 1
EXIT_INVALID_CONFIG = 2
EXIT_UNREACHABLE = 3

OUTPUT_FORMATS = ("table", "json", "yaml")


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(asctime)s] %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
    # The SDK's transport logging drowns out ours at DEBUG
    for name in ("urllib3", "kubernetes"):
        logging.getLogger(name).setLevel(logging.WARNING)


def load_settings(
    config: Optional[Path],
    output: str,
    extra_crd_patterns: Iterable[str] = (),
    **overrides,
) -> Settings:
    """Defaults, config file, environment, then CLI flags. Exits 2 when invalid."""
    if output not in OUTPUT_FORMATS:
        typer.echo(f"Error: unknown output format '{output}' (expected one of {', '.join(OUTPUT_FORMATS)})", err=True)
        raise typer.Exit(code=EXIT_INVALID_CONFIG)
    try:
        settings = Settings.load(config).with_overrides(**overrides)
        extra = tuple(extra_crd_patterns)
        if extra:
            settings = settings.with_overrides(crd_patterns=(*settings.crd_patterns, *extra))
        return settings.validate()
    except InvalidConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=EXIT_INVALID_CONFIG)


@dataclass
class Session:
    k8s: K8sClient
    settings: Settings
    engine: TeardownEngine
    builder: PlanBuilder
    runner: PlanRunner


def connect(settings: Settings, context: Optional[str]) -> Session:
    """Build the client stack and make sure the cluster answers. Exits 3 when it does not."""
    k8s = K8sClient(context=context, request_timeout=settings.request_timeout)
    try:
        with err_console.status("[bold cyan]Connecting to cluster…"):
            version = k8s.check_connection()
    except ClusterConnectionError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=EXIT_UNREACHABLE)
    logger.info("Connected to cluster %s (%s)", k8s.active_context_name, version)

    engine = TeardownEngine(k8s, settings)
    return Session(
        k8s=k8s,
        settings=settings,
        engine=engine,
        builder=PlanBuilder(k8s, settings, engine),
        runner=PlanRunner(engine, max_workers=settings.max_workers, deadline_seconds=settings.deadline_seconds),
    )


def confirm(message: str, force: bool) -> bool:
    """Ask for an explicit 'yes' unless ``force`` is set."""
    if force:
        return True
    err_console.print(f"[bold yellow]WARNING:[/bold yellow] {message}")
    answer = typer.prompt("Type 'yes' to continue", default="", show_default=False, err=True)
    return answer.strip() == "yes"


def declined() -> None:
    err_console.print("Teardown cancelled.")


def run_plan(
    session: Session,
    plan: DeletionPlan,
    output: str,
    pause_before: dict[int, float] | None = None,
) -> DeletionReport:
    total = len(plan)
    done = 0
    lock = threading.Lock()

    def on_outcome(outcome: DeletionOutcome) -> None:
        nonlocal done
        with lock:
            done += 1
            logger.info("[%d/%d] %s: %s", done, total, outcome.resource, outcome.status.value)

    session.runner.on_outcome = on_outcome
    report = session.runner.run(plan, pause_before=pause_before)
    output_report(report, output)
    return report


def finish(report: DeletionReport, discovery_errors: Iterable[str] = ()) -> None:
    """Map the report onto the process exit code."""
    try:
        report.raise_for_failures()
    except PartialFailureError as e:
        logger.error("%s", e)
        raise typer.Exit(code=EXIT_FAILED)
    if report.cancelled:
        logger.error("Teardown was cancelled before all resources were processed")
        raise typer.Exit(code=EXIT_FAILED)
    errors = list(discovery_errors)
    if errors:
        logger.error("Teardown incomplete, discovery failed: %s", "; ".join(errors))
        raise typer.Exit(code=EXIT_FAILED)

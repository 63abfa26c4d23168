"""Root Typer application, mounts sub-commands."""

from __future__ import annotations

import typer

app = typer.Typer(
    name="gitops-teardown",
    help="GitOps Teardown - Remove an ArgoCD-managed platform from Kubernetes in dependency order.",
    no_args_is_help=True,
)


def _register_commands() -> None:
    from gitops_teardown.cli.commands.teardown_all_cmd import teardown_all
    from gitops_teardown.cli.commands.teardown_application_cmd import teardown_application
    from gitops_teardown.cli.commands.teardown_namespace_cmd import teardown_namespace
    from gitops_teardown.cli.commands.teardown_crds_cmd import teardown_crds

    # Groups stop parsing options at the first positional, so these are plain commands
    app.command(name="teardown-all")(teardown_all)
    app.command(name="teardown-application")(teardown_application)
    app.command(name="teardown-namespace")(teardown_namespace)
    app.command(name="teardown-crds")(teardown_crds)


_register_commands()


def main() -> None:
    app()

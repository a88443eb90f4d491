"""Command line entry point: ``terraformig apply|plan|purge|rollback [SRC] DEST``."""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional, Tuple

import click

from . import __version__
from .models import APPLY, PLAN, PURGE, ROLLBACK, MigrationRun
from .orchestrator import Orchestrator
from .terraform import TerraformCLI

LOG_FORMAT = "[%(levelname)s] - %(message)s"

PATHS_HELP = """\b
  SRC   Path to the source terraform directory (defaults to the working directory)
  DEST  Path to the destination terraform directory"""


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )


def split_paths(paths: Tuple[str, ...]) -> Tuple[Optional[str], Optional[str]]:
    """Map ``[SRC] DEST`` arguments to ``(source, destination)``."""
    if len(paths) > 2:
        raise click.UsageError("Expected at most two paths: [SRC] DEST")
    if len(paths) == 2:
        return paths[0], paths[1]
    if len(paths) == 1:
        return None, paths[0]
    return None, None


def ask_destination() -> str:
    if not click.confirm("Are you ready to continue?", default=True):
        click.echo("Canceled")
        sys.exit(0)
    click.echo(f"Current directory: {os.getcwd()}")
    destination = ""
    while not destination.strip():
        destination = click.prompt("Please enter the destination terraform directory (include path)")
    return destination


def report(run: MigrationRun) -> None:
    click.echo(run.summary())
    if not run.failed:
        return
    click.echo(
        f"\n[ERROR] - {run.failed_phase.value if run.failed_phase else 'run'} failed: {run.error}"
        "\n          You may wish to add the \"--debug\" flag to your command.",
        err=True,
    )
    if run.backups_taken:
        click.echo(
            "          Backups were taken before the failure; run "
            "\"terraformig rollback\" with the same paths to restore them before retrying.",
            err=True,
        )
    sys.exit(run.exit_code)


def _execute(ctx: click.Context, mode: str, paths: Tuple[str, ...], cleanup: bool = False) -> None:
    source, destination = split_paths(paths)
    if destination is None:
        destination = ask_destination()
    orchestrator = Orchestrator(TerraformCLI(ctx.obj["terraform_bin"]))
    report(orchestrator.run(mode, destination, source, cleanup=cleanup))


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--debug", is_flag=True, help="Print otherwise hidden output, such as terraform init logs.")
@click.option(
    "--terraform-bin",
    envvar="TERRAFORM_BIN",
    default="terraform",
    show_default=True,
    help="Terraform executable to run.",
)
@click.version_option(__version__, prog_name="TerraforMig")
@click.pass_context
def main(ctx: click.Context, debug: bool, terraform_bin: str) -> None:
    """Move resources/modules between Terraform states, remote backends included.

    \b
    Cut the resource/module blocks you want to move out of the source
    configuration and paste them into the destination configuration first;
    the resources the source plan would delete are the ones that get moved.
    """
    configure_logging(debug)
    ctx.ensure_object(dict)
    ctx.obj["terraform_bin"] = terraform_bin


@main.command(APPLY, epilog=PATHS_HELP)
@click.argument("paths", nargs=-1, metavar="[SRC] DEST")
@click.option(
    "--cleanup",
    is_flag=True,
    help="CAUTION: delete the backup files once the migration has succeeded.",
)
@click.pass_context
def apply_command(ctx: click.Context, paths: Tuple[str, ...], cleanup: bool) -> None:
    """Move resources/modules between states."""
    _execute(ctx, APPLY, paths, cleanup=cleanup)


@main.command(PLAN, epilog=PATHS_HELP)
@click.argument("paths", nargs=-1, metavar="[SRC] DEST")
@click.pass_context
def plan_command(ctx: click.Context, paths: Tuple[str, ...]) -> None:
    """Dry run: show what would be moved without modifying either state."""
    _execute(ctx, PLAN, paths)


@main.command(PURGE, epilog=PATHS_HELP)
@click.argument("paths", nargs=-1, metavar="[SRC] DEST")
@click.pass_context
def purge_command(ctx: click.Context, paths: Tuple[str, ...]) -> None:
    """Delete the backup files made by this tool in SRC and DEST."""
    _execute(ctx, PURGE, paths)


@main.command(ROLLBACK, epilog=PATHS_HELP)
@click.argument("paths", nargs=-1, metavar="[SRC] DEST")
@click.pass_context
def rollback_command(ctx: click.Context, paths: Tuple[str, ...]) -> None:
    """Restore the previous states of SRC and DEST from their backups."""
    _execute(ctx, ROLLBACK, paths)


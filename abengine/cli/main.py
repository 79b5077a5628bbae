"""Main CLI entry point for abengine."""

import sys
from pathlib import Path

import click
from pydantic import ValidationError

from abengine import __version__
from abengine.cli.commands.experiment import experiment_command
from abengine.core.logging import configure_logging, correlation_context
from abengine.core.settings import get_settings


@click.group(invoke_without_command=True)
@click.option(
    "--config",
    "-c",
    "config_file",
    type=click.Path(exists=True, path_type=Path),
    help="Path to abengine.config.yaml configuration file",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose (DEBUG) logging",
)
@click.version_option(version=__version__, prog_name="abengine")
@click.pass_context
def cli(ctx: click.Context, config_file: Path | None, verbose: bool) -> None:
    """abengine - experiment assignment and analysis engine.

    Examples:

      # Create and start an experiment
      abengine experiment create checkout.yaml
      abengine experiment start <experiment-id>

      # Use a redis store configured in a file
      abengine -c abengine.config.yaml experiment list

    Settings are read from abengine.config.yaml and ABENGINE_* environment
    variables (e.g. ABENGINE_STORE__BACKEND=redis).
    """
    try:
        settings = get_settings(config_file=config_file)
    except ValidationError as e:
        raise click.ClickException(f"Invalid configuration: {e}") from e

    level = "DEBUG" if verbose else settings.logging.level
    configure_logging(
        level=level,
        json_output=settings.logging.json_output,
        log_file=settings.logging.file,
    )
    ctx.with_resource(correlation_context())
    ctx.obj = settings

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command(name="version")
def version_cmd() -> None:
    """Show abengine version information.

    Examples:

      abengine version
    """
    click.echo(f"abengine v{__version__}")
    click.echo(f"Python: {sys.version.split()[0]}")
    click.echo(f"Platform: {sys.platform}")


cli.add_command(experiment_command)


def main() -> None:
    """Main entry point for the CLI."""
    cli(auto_envvar_prefix="ABENGINE")


if __name__ == "__main__":
    main()

"""CLI commands for managing A/B experiments."""

import json
import sys
from pathlib import Path
from typing import Any, NoReturn

import click
import yaml
from rich.console import Console
from rich.table import Table

from abengine.core.exceptions import ABEngineError
from abengine.core.settings import ABEngineSettings, get_cached_settings
from abengine.experiments.engine import ExperimentEngine, build_engine
from abengine.experiments.models import (
    Experiment,
    ExperimentAnalysis,
    ExperimentStatistics,
    ExperimentStatus,
)

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_ERROR = 2

_STATUS_CHOICES = [s.value for s in ExperimentStatus]

MEMORY_BACKEND_WARNING = (
    "Warning: using the in-memory store; nothing is kept after this command. "
    "Set ABENGINE_STORE__BACKEND=redis to persist experiments."
)

_output_option = click.option(
    "--output",
    "-o",
    type=click.Choice(["console", "json"]),
    default="console",
    help="Output format",
)


def _build_engine() -> ExperimentEngine:
    """Build an engine from the settings attached to the CLI context.

    The memory backend only lives as long as this process, so a warning is
    printed whenever a command is about to use it.
    """
    ctx = click.get_current_context(silent=True)
    settings = ctx.find_object(ABEngineSettings) if ctx else None
    settings = settings or get_cached_settings()
    if settings.store.backend == "memory":
        click.echo(MEMORY_BACKEND_WARNING, err=True)
    return build_engine(settings)


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _fail(e: Exception, action: str) -> NoReturn:
    """Report an error and exit with the matching code."""
    if isinstance(e, ABEngineError):
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILURE)
    click.echo(f"Error {action}: {e}", err=True)
    sys.exit(EXIT_ERROR)


def _create_experiments_table(title: str = "Experiments") -> Table:
    """Create a Rich table for experiment display.

    Args:
        title: Table title.

    Returns:
        Configured Rich Table instance.
    """
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Name", style="green", no_wrap=True)
    table.add_column("Status", style="magenta")
    table.add_column("Variants", justify="right")
    table.add_column("Traffic", justify="right")
    table.add_column("Company", style="blue")
    table.add_column("Created", style="dim")
    return table


def _create_variants_table(title: str = "Variants") -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Name", style="green")
    table.add_column("Split %", justify="right")
    table.add_column("Control", justify="center")
    table.add_column("Samples", justify="right")
    return table


def _create_results_table(title: str = "Statistical Results") -> Table:
    """Create a Rich table for per-variant results.

    Args:
        title: Table title.

    Returns:
        Configured Rich Table instance.
    """
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Variant", style="green")
    table.add_column("Samples", justify="right")
    table.add_column("Conversions", justify="right")
    table.add_column("Rate", justify="right")
    table.add_column("Interval", justify="right")
    table.add_column("p-value", justify="right")
    table.add_column("Lift %", justify="right")
    table.add_column("Significant", justify="center")
    return table


def _format_status(status: str) -> str:
    """Format experiment status with color.

    Args:
        status: Status string.

    Returns:
        Formatted status with Rich markup.
    """
    status_colors = {
        "draft": "[dim]DRAFT[/dim]",
        "active": "[green]ACTIVE[/green]",
        "paused": "[yellow]PAUSED[/yellow]",
        "completed": "[blue]COMPLETED[/blue]",
    }
    return status_colors.get(status, status.upper())


def _format_significant(significant: bool) -> str:
    return "[green]Yes[/green]" if significant else "[dim]No[/dim]"


def _load_definition(path: Path) -> dict[str, Any]:
    """Load an experiment definition from a YAML or JSON file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise click.ClickException(f"Invalid definition file: {e}") from e
    if not isinstance(data, dict):
        raise click.ClickException("Definition file must contain a mapping")
    return data


def _experiment_summary(experiment: Experiment) -> dict[str, Any]:
    return {
        "id": experiment.id,
        "name": experiment.config.name,
        "status": experiment.status.value,
        "variants": len(experiment.config.variants),
        "traffic_allocation": experiment.config.traffic_allocation,
        "company_id": experiment.config.company_id,
        "created_at": experiment.created_at.isoformat(),
    }


@click.group(name="experiment")
def experiment_command() -> None:
    """Manage A/B experiments.

    Experiments split eligible subjects across variants deterministically
    and analyze recorded conversions per variant. State lives in the
    configured store; use the redis backend to keep it between invocations.

    Examples:

      # Create an experiment from a definition file
      abengine experiment create checkout.yaml

      # Start it
      abengine experiment start ab_1718000000000_1a2b3c4d5

      # Assign a subject and record a conversion
      abengine experiment assign ab_1718000000000_1a2b3c4d5 user-42
      abengine experiment record ab_1718000000000_1a2b3c4d5 user-42 \\
          conversion_purchase

      # Analyze
      abengine experiment analyze ab_1718000000000_1a2b3c4d5
    """
    pass


@experiment_command.command(name="create")
@click.argument("definition_file", type=click.Path(exists=True, path_type=Path))
@_output_option
def create_experiment(definition_file: Path, output: str) -> None:
    """Create a draft experiment from a YAML or JSON definition.

    DEFINITION_FILE holds the experiment definition (name, variants,
    target_criteria, metrics, confidence_level, traffic_allocation, ...).

    Exit Codes:

      0 - Experiment created
      1 - Definition is invalid
      2 - Error occurred
    """
    console = Console()
    definition = _load_definition(definition_file)

    try:
        experiment = _build_engine().create_experiment(definition)

        if output == "json":
            _echo_json(experiment.model_dump(mode="json"))
        else:
            console.print(
                f"[green]Experiment '{experiment.config.name}' created "
                f"with ID {experiment.id}[/green]"
            )
            console.print("Status: draft. Start it with 'abengine experiment start'.")
        sys.exit(EXIT_SUCCESS)

    except Exception as e:
        _fail(e, "creating experiment")


@experiment_command.command(name="list")
@click.option(
    "--status",
    "-s",
    type=click.Choice(_STATUS_CHOICES),
    help="Filter by experiment status",
)
@click.option(
    "--company",
    type=str,
    help="Filter by company ID",
)
@_output_option
def list_experiments(status: str | None, company: str | None, output: str) -> None:
    """List experiments, newest first.

    Examples:

      abengine experiment list --status=active
      abengine experiment list --company=acme --output=json

    Exit Codes:

      0 - Success
      2 - Error occurred
    """
    console = Console()

    try:
        experiments = _build_engine().list_experiments(
            status=ExperimentStatus(status) if status else None,
            company_id=company,
        )
        result = [_experiment_summary(e) for e in experiments]

        if output == "json":
            _echo_json(result)
        else:
            _output_experiments_console(result, console)
        sys.exit(EXIT_SUCCESS)

    except Exception as e:
        _fail(e, "listing experiments")


def _output_experiments_console(
    experiments: list[dict[str, Any]],
    console: Console,
) -> None:
    """Output experiments to console.

    Args:
        experiments: List of experiment dictionaries.
        console: Rich console instance.
    """
    if not experiments:
        console.print("No experiments found.")
        return

    table = _create_experiments_table()
    for exp in experiments:
        table.add_row(
            exp["id"],
            exp["name"],
            _format_status(exp["status"]),
            str(exp["variants"]),
            f"{exp['traffic_allocation']:g}%",
            exp["company_id"] or "-",
            exp["created_at"][:19],
        )

    console.print(table)
    console.print(f"\nTotal: {len(experiments)} experiment(s)")


@experiment_command.command(name="show")
@click.argument("experiment_id")
@_output_option
def show_experiment(experiment_id: str, output: str) -> None:
    """Show an experiment definition and its participation.

    Exit Codes:

      0 - Success
      1 - Experiment not found
      2 - Error occurred
    """
    console = Console()

    try:
        engine = _build_engine()
        experiment = engine.get_experiment(experiment_id)
        stats = engine.get_statistics(experiment_id)

        if output == "json":
            _echo_json(
                {
                    "experiment": experiment.model_dump(mode="json"),
                    "statistics": stats.model_dump(mode="json"),
                }
            )
        else:
            _output_statistics_console(experiment.config.name, stats, console)
            if not experiment.config.target_criteria.is_empty:
                criteria = experiment.config.target_criteria.model_dump(
                    exclude_none=True
                )
                console.print(f"Target criteria: {criteria}")
        sys.exit(EXIT_SUCCESS)

    except Exception as e:
        _fail(e, "showing experiment")


def _output_statistics_console(
    name: str,
    stats: ExperimentStatistics,
    console: Console,
) -> None:
    console.print(f"\n[bold]{name}[/bold] ({stats.experiment_id})")
    console.print(f"Status: {_format_status(stats.status.value)}")
    if stats.start_date:
        console.print(f"Started: {stats.start_date.isoformat()}")
    if stats.end_date:
        console.print(f"Ended: {stats.end_date.isoformat()}")
    console.print(f"Participants: {stats.total_participants}")

    table = _create_variants_table()
    for variant in stats.variants:
        table.add_row(
            variant.id,
            variant.name,
            f"{variant.traffic_split:g}",
            "✓" if variant.is_control else "",
            str(variant.sample_size),
        )
    console.print(table)


@experiment_command.command(name="start")
@click.argument("experiment_id")
def start_experiment(experiment_id: str) -> None:
    """Start a draft experiment.

    Subjects can be assigned once the experiment is active.

    Exit Codes:

      0 - Experiment started
      1 - Experiment not found or not in draft
      2 - Error occurred
    """
    console = Console()

    try:
        _build_engine().start_experiment(experiment_id)
        console.print(f"[green]Experiment {experiment_id} started.[/green]")
        console.print("Eligible subjects are now being assigned.")
        sys.exit(EXIT_SUCCESS)

    except Exception as e:
        _fail(e, "starting experiment")


@experiment_command.command(name="pause")
@click.argument("experiment_id")
def pause_experiment(experiment_id: str) -> None:
    """Pause an active experiment.

    Existing assignments are kept; no new subjects are assigned.

    Exit Codes:

      0 - Experiment paused
      1 - Experiment not found or not active
      2 - Error occurred
    """
    console = Console()

    try:
        _build_engine().pause_experiment(experiment_id)
        console.print(f"[yellow]Experiment {experiment_id} paused.[/yellow]")
        sys.exit(EXIT_SUCCESS)

    except Exception as e:
        _fail(e, "pausing experiment")


@experiment_command.command(name="resume")
@click.argument("experiment_id")
def resume_experiment(experiment_id: str) -> None:
    """Resume a paused experiment.

    Exit Codes:

      0 - Experiment resumed
      1 - Experiment not found or not paused
      2 - Error occurred
    """
    console = Console()

    try:
        _build_engine().resume_experiment(experiment_id)
        console.print(f"[green]Experiment {experiment_id} resumed.[/green]")
        sys.exit(EXIT_SUCCESS)

    except Exception as e:
        _fail(e, "resuming experiment")


@experiment_command.command(name="complete")
@click.argument("experiment_id")
def complete_experiment(experiment_id: str) -> None:
    """Complete an active or paused experiment.

    Exit Codes:

      0 - Experiment completed
      1 - Experiment not found or already completed
      2 - Error occurred
    """
    console = Console()

    try:
        _build_engine().complete_experiment(experiment_id)
        console.print(f"[blue]Experiment {experiment_id} completed.[/blue]")
        sys.exit(EXIT_SUCCESS)

    except Exception as e:
        _fail(e, "completing experiment")


@experiment_command.command(name="delete")
@click.argument("experiment_id")
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Delete without confirmation",
)
def delete_experiment(experiment_id: str, force: bool) -> None:
    """Delete an experiment with all its assignments and events.

    Note: Active experiments cannot be deleted. Pause or complete them first.

    Exit Codes:

      0 - Experiment deleted
      1 - Experiment not found, active, or operation cancelled
      2 - Error occurred
    """
    if not force:
        if not click.confirm(f"Delete experiment {experiment_id}?"):
            click.echo("Operation cancelled.")
            sys.exit(EXIT_FAILURE)

    try:
        removed = _build_engine().delete_experiment(experiment_id)
        click.echo(f"Experiment {experiment_id} deleted ({removed} records removed).")
        sys.exit(EXIT_SUCCESS)

    except Exception as e:
        _fail(e, "deleting experiment")


@experiment_command.command(name="assign")
@click.argument("experiment_id")
@click.argument("subject_id")
@click.option(
    "--context",
    "context_pairs",
    type=str,
    multiple=True,
    help="Request context as key=value pairs (e.g. device_type=mobile)",
)
@_output_option
def assign_subject(
    experiment_id: str,
    subject_id: str,
    context_pairs: tuple[str, ...],
    output: str,
) -> None:
    """Assign a subject to a variant of an active experiment.

    Prints the assigned variant, or a notice when the subject is not
    eligible (experiment not active, targeting or traffic allocation).

    Exit Codes:

      0 - Success, whether or not the subject was assigned
      2 - Error occurred
    """
    context: dict[str, str] = {}
    for pair in context_pairs:
        if "=" not in pair:
            click.echo(f"Error: Invalid context '{pair}', expected key=value", err=True)
            sys.exit(EXIT_ERROR)
        key, value = pair.split("=", 1)
        context[key.strip()] = value.strip()

    try:
        engine = _build_engine()
        assignment = engine.assign(experiment_id, subject_id, context or None)

        if output == "json":
            _echo_json(assignment.model_dump(mode="json") if assignment else None)
        elif assignment is None:
            click.echo(f"Subject {subject_id} is not eligible for {experiment_id}.")
        else:
            configuration = engine.get_variant_configuration(experiment_id, subject_id)
            click.echo(f"Subject {subject_id} -> variant {assignment.variant_id}")
            if configuration:
                click.echo(f"Configuration: {json.dumps(configuration)}")
        sys.exit(EXIT_SUCCESS)

    except Exception as e:
        _fail(e, "assigning subject")


@experiment_command.command(name="record")
@click.argument("experiment_id")
@click.argument("subject_id")
@click.argument("metric")
@click.option(
    "--value",
    type=float,
    default=1.0,
    help="Metric value (default: 1.0)",
)
def record_event(
    experiment_id: str,
    subject_id: str,
    metric: str,
    value: float,
) -> None:
    """Record a metric event for an assigned subject.

    Conversion metrics are named conversion_<type>; revenue events use the
    metric name 'revenue'. Events for unassigned subjects are ignored.

    Exit Codes:

      0 - Success
      2 - Error occurred
    """
    try:
        event = _build_engine().record_event(experiment_id, subject_id, metric, value)
        if event is None:
            click.echo(
                f"Subject {subject_id} is not assigned in {experiment_id}; "
                "event ignored."
            )
        else:
            click.echo(f"Recorded {metric}={value:g} for variant {event.variant_id}")
        sys.exit(EXIT_SUCCESS)

    except Exception as e:
        _fail(e, "recording event")


@experiment_command.command(name="analyze")
@click.argument("experiment_id")
@click.option(
    "--cached",
    is_flag=True,
    help="Return the cached analysis when one is available",
)
@_output_option
def analyze_experiment(experiment_id: str, cached: bool, output: str) -> None:
    """Analyze an experiment and print a recommendation.

    Exit Codes:

      0 - Success
      1 - Experiment not found
      2 - Error occurred
    """
    console = Console()

    try:
        analysis = _build_engine().analyze(experiment_id, use_cache=cached)

        if output == "json":
            _echo_json(analysis.model_dump(mode="json"))
        else:
            _output_analysis_console(analysis, console)
        sys.exit(EXIT_SUCCESS)

    except Exception as e:
        _fail(e, "analyzing experiment")


def _output_analysis_console(analysis: ExperimentAnalysis, console: Console) -> None:
    """Output an analysis to console.

    Args:
        analysis: Experiment analysis.
        console: Rich console instance.
    """
    console.print(f"\n[bold]Analysis of {analysis.experiment_id}[/bold]")
    console.print(
        f"Status: {_format_status(analysis.status.value)}  "
        f"Duration: {analysis.duration_days} day(s)  "
        f"Participants: {analysis.total_participants}  "
        f"Events: {analysis.total_events}"
    )

    table = _create_results_table()
    for result in analysis.results:
        name = result.variant_name
        if result.is_control:
            name = f"{name} (control)"
        interval = result.confidence_interval
        table.add_row(
            name,
            str(result.sample_size),
            str(result.conversions),
            f"{result.conversion_rate:.2%}",
            f"{interval.lower:.2%} - {interval.upper:.2%}",
            f"{result.p_value:.4f}",
            "-" if result.is_control else f"{result.lift:+.2f}",
            _format_significant(result.is_statistically_significant),
        )
    console.print(table)

    quality = analysis.metadata.data_quality.value
    note = analysis.metadata.data_quality_note
    console.print(f"Data quality: {quality}" + (f" ({note})" if note else ""))

    recommendation = analysis.recommendation
    console.print(f"\n[bold]Recommendation:[/bold] {recommendation.reasoning}")
    if recommendation.winning_variant:
        console.print(f"Winner: [green]{recommendation.winning_variant}[/green]")
    for step in recommendation.next_steps:
        console.print(f"  - {step}")


@experiment_command.command(name="stats")
@click.argument("experiment_id")
@_output_option
def experiment_stats(experiment_id: str, output: str) -> None:
    """Show participation statistics per variant.

    Exit Codes:

      0 - Success
      1 - Experiment not found
      2 - Error occurred
    """
    console = Console()

    try:
        stats = _build_engine().get_statistics(experiment_id)

        if output == "json":
            _echo_json(stats.model_dump(mode="json"))
        else:
            _output_statistics_console(stats.name, stats, console)
        sys.exit(EXIT_SUCCESS)

    except Exception as e:
        _fail(e, "loading statistics")

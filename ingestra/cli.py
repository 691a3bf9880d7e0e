"""
CLI interface for ingestra.

Submit job definitions, run them through the PAR engine and inspect job and
run history. Job definitions are JSON or YAML files holding the submission
payload ({jobType, name, sourceConfig, targetConfig, ...}).
"""

import json
import sys
from pathlib import Path
from typing import Optional

import click
import yaml

from ingestra import __version__
from ingestra.config import default_config_dict, get_ingestra_home, load_config
from ingestra.errors import ConfigError, IngestraError
from ingestra.orchestrator import Orchestrator
from ingestra.schemas import (
    InlineSource,
    JobDefinition,
    JobRunResult,
    JobStatus,
    JobType,
    LoadMode,
    MultiTargetConfig,
    SearchIndexTarget,
    SourceFormat,
    SqlTableTarget,
    VectorStoreTarget,
)
from ingestra.utils import console, format_timestamp, setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="ingestra")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, verbose: bool):
    """
    ingestra - self-correcting ETL jobs.

    Load CSV, JSON and API data into tables, vector stores and search indexes.
    """
    ctx.ensure_object(dict)
    try:
        config = load_config()
    except Exception as e:
        # init runs without a config; other commands check ctx.obj
        ctx.obj["config_error"] = str(e)
        setup_logging("DEBUG" if verbose else "WARNING")
        return

    ctx.obj["config"] = config
    setup_logging("DEBUG" if verbose else config.log_level, config.log_format)


def _orchestrator(ctx) -> Orchestrator:
    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'ingestra init' to create a configuration file.", err=True)
        raise SystemExit(1)
    try:
        return Orchestrator.from_config(ctx.obj["config"])
    except ConfigError as e:
        raise click.ClickException(str(e))


def _read_definition(path: Path) -> JobDefinition:
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise click.ClickException(f"Invalid job definition {path}: {e}")
    if not isinstance(data, dict):
        raise click.ClickException(f"{path} must contain a mapping")
    try:
        return JobDefinition.from_dict(data)
    except ValueError as e:
        raise click.ClickException(f"Invalid job definition {path}: {e}")


def _report(result: JobRunResult) -> None:
    """Print a run outcome; exit 1 when it failed."""
    if result.status == JobStatus.COMPLETED:
        console.print(
            f"[green]✓[/green] {result.job_id} completed: {result.records_processed} processed, "
            f"{result.records_failed} failed ({result.par_iterations} iteration(s))",
            soft_wrap=True,
            highlight=False,
        )
        return

    console.print(
        f"[red]✗[/red] {result.job_id} failed: {result.records_processed} processed, "
        f"{result.records_failed} failed ({result.par_iterations} iteration(s))",
        soft_wrap=True,
        highlight=False,
    )
    if result.first_error:
        console.print(f"  error: {result.first_error}", markup=False, soft_wrap=True)
    for note in result.reflexion_improvements:
        console.print(f"  - {note}", markup=False, soft_wrap=True)
    raise SystemExit(1)


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize ingestra configuration."""
    home = get_ingestra_home()
    home.mkdir(parents=True, exist_ok=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    cfg_path.write_text(yaml.safe_dump(default_config_dict(home), sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# FRED_API_KEY=...\n")

    click.echo(f"Initialized ingestra config at {cfg_path}")


# =============================================================================
# Jobs
# =============================================================================

@main.group("jobs")
def jobs_group():
    """Submit and inspect jobs."""
    pass


@jobs_group.command("create")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def create_job(ctx, file: Path):
    """Submit the job definition in FILE as a pending job."""
    definition = _read_definition(file)
    orchestrator = _orchestrator(ctx)
    try:
        job_id = orchestrator.create_job(definition)
    finally:
        orchestrator.close()
    click.echo(job_id)


@jobs_group.command("list")
@click.option("--status", type=click.Choice([s.value for s in JobStatus]), help="Filter by status")
@click.option("--type", "job_type", type=click.Choice([t.value for t in JobType]), help="Filter by job type")
@click.option("--limit", default=100, show_default=True, help="Maximum jobs to show")
@click.pass_context
def list_jobs(ctx, status: Optional[str], job_type: Optional[str], limit: int):
    """List submitted jobs, newest first."""
    orchestrator = _orchestrator(ctx)
    try:
        records = orchestrator.get_jobs(
            status=[status] if status else None,
            job_type=[job_type] if job_type else None,
            limit=limit,
        )
    finally:
        orchestrator.close()

    if not records:
        click.echo("No jobs found.")
        return

    for record in records:
        click.echo(
            f"{record.job_id}  {record.definition.job_type.value:<20} "
            f"{record.status.value:<10} {record.definition.name}"
        )


@jobs_group.command("show")
@click.argument("job_id")
@click.pass_context
def show_job(ctx, job_id: str):
    """Show a job's definition and status."""
    orchestrator = _orchestrator(ctx)
    try:
        record = orchestrator.get_job(job_id)
    finally:
        orchestrator.close()

    if record is None:
        click.echo(f"✗ Unknown job: {job_id}", err=True)
        raise SystemExit(1)

    click.echo(f"Job: {record.job_id}")
    click.echo(f"Type: {record.definition.job_type.value}")
    click.echo(f"Status: {record.status.value}")
    click.echo(f"Last run: {format_timestamp(record.last_run_at) or 'never'}")
    click.echo()
    click.echo(json.dumps(record.definition.to_dict(), indent=2))


@jobs_group.command("runs")
@click.argument("job_id")
@click.option("--limit", default=10, show_default=True, help="Maximum runs to show")
@click.option("--json", "as_json", is_flag=True, help="Print full run records as JSON")
@click.pass_context
def list_runs(ctx, job_id: str, limit: int, as_json: bool):
    """Show a job's runs, newest first."""
    orchestrator = _orchestrator(ctx)
    try:
        runs = orchestrator.get_job_runs(job_id, limit=limit)
    finally:
        orchestrator.close()

    if as_json:
        click.echo(json.dumps([r.to_dict() for r in runs], indent=2))
        return

    if not runs:
        click.echo(f"No runs for {job_id}.")
        return

    for run in runs:
        click.echo(
            f"{run.run_id}  {run.status.value:<10} processed={run.records_processed} "
            f"failed={run.records_failed} iterations={run.par_iterations} "
            f"started={format_timestamp(run.started_at)}"
        )
        if run.first_error:
            click.echo(f"    error: {run.first_error}")


# =============================================================================
# Execution
# =============================================================================

@main.command("run")
@click.argument("job_id")
@click.pass_context
def run(ctx, job_id: str):
    """
    Run a submitted job by id.

    Examples:

        ingestra jobs create jobs/customers.json

        ingestra run 01HZX3K2Q4M5N6P7R8S9T0V1W2
    """
    orchestrator = _orchestrator(ctx)
    try:
        result = orchestrator.execute_job(job_id)
    except IngestraError as e:
        click.echo(f"✗ {job_id}: {e}", err=True)
        raise SystemExit(1)
    finally:
        orchestrator.close()
    _report(result)


@main.command("load")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--table", required=True, help="Destination table")
@click.option("--mode", type=click.Choice([m.value for m in LoadMode]), default=LoadMode.INSERT.value,
              show_default=True, help="Table load mode")
@click.option("--key-column", help="Key column for upsert mode")
@click.option("--vector-index", help="Also load into this vector store index")
@click.option("--search-index", help="Also load into this search index")
@click.option("--embedding-column", "embedding_columns", multiple=True,
              help="Column to embed (repeatable; default: detect)")
@click.pass_context
def load(ctx, file: Path, table: str, mode: str, key_column: Optional[str],
         vector_index: Optional[str], search_index: Optional[str], embedding_columns: tuple):
    """
    Load a CSV or JSON FILE into one or more targets.

    Runs a data_load job directly, without submitting it first.

    Examples:

        ingestra load customers.csv --table customers

        ingestra load products.json --table products --vector-index products
    """
    if mode == LoadMode.UPSERT.value and not key_column:
        raise click.UsageError("--mode upsert requires --key-column")

    fmt = SourceFormat.JSON if file.suffix.lower() == ".json" else SourceFormat.CSV
    targets = [SqlTableTarget(table_name=table, mode=LoadMode(mode), key_column=key_column)]
    if vector_index:
        targets.append(VectorStoreTarget(index_name=vector_index, embedding_columns=embedding_columns))
    if search_index:
        targets.append(SearchIndexTarget(index_name=search_index, embedding_columns=embedding_columns))

    definition = JobDefinition(
        job_type=JobType.DATA_LOAD,
        name=file.name,
        source=InlineSource(content=file.read_text(), format=fmt),
        target=MultiTargetConfig(targets=tuple(targets)),
    )

    orchestrator = _orchestrator(ctx)
    if (vector_index or search_index) and orchestrator.context.embedder is None:
        orchestrator.close()
        raise click.UsageError("--vector-index and --search-index need embedding_client set in config.yaml")
    try:
        result = orchestrator.execute_job_direct(definition)
    finally:
        orchestrator.close()
    _report(result)


if __name__ == "__main__":
    sys.exit(main())

"""
CLI interface for issue-resolver.

Provides command-line access to runs, the usage ledger and the list of
supported models.
"""

import asyncio
import logging
import sqlite3
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from issue_resolver.analysis.sonarqube import SonarqubeConnector, create_sonarqube_client
from issue_resolver.config.loader import DEFAULT_CONFIG_PATH, AppConfig, load_config
from issue_resolver.connectors.registry import create_connector
from issue_resolver.core.errors import ConfigurationError, ExitCode
from issue_resolver.core.models import AIModel, RunMetadata
from issue_resolver.core.orchestrator import AutoFixOrchestrator, OperationResult, validate_config
from issue_resolver.source.git import GitConnector
from issue_resolver.storage.db import DEFAULT_DB_PATH
from issue_resolver.storage.repository import UsageLedger, initialize_schema, list_run_summaries

app = typer.Typer()
console = Console()

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Send all log records through rich at the given level."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )
    # request lines would otherwise be logged for every vendor call
    logging.getLogger("httpx").setLevel(logging.WARNING)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """Fix static-analysis findings with AI models."""
    if ctx.invoked_subcommand is None:
        console.print("issue-resolver - Use --help to see available commands")


@app.command()
def init(
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="Path to the usage ledger database")
):
    """Initialize the usage ledger database."""
    try:
        initialize_schema(db)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(ExitCode.SUCCESS)
    except (sqlite3.Error, OSError) as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(ExitCode.UNKNOWN_ERROR)


@app.command()
def models():
    """List the supported AI models."""
    table = Table(title="Supported models")
    table.add_column("Model")
    table.add_column("Vendor")
    table.add_column("Max output tokens", justify="right")
    for model in AIModel:
        table.add_row(model.model_name, model.vendor.value, f"{model.max_output_tokens:,}")
    console.print(table)


@app.command()
def report(
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="Path to the usage ledger database"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of runs to show")
):
    """Show token usage of the most recent runs."""
    try:
        summaries = list_run_summaries(limit=limit, db_path=db)
    except sqlite3.OperationalError as e:
        if "no such table" in str(e).lower():
            console.print("\n[bold yellow]No runs recorded yet[/]")
            console.print("Run `issue-resolver init` to initialize the database\n")
            sys.exit(ExitCode.SUCCESS)
        raise

    if not summaries:
        console.print("\n[bold yellow]No runs recorded yet[/]\n")
        sys.exit(ExitCode.SUCCESS)

    table = Table(title="Recent runs")
    table.add_column("Started")
    table.add_column("Model")
    table.add_column("Branch")
    table.add_column("Requests", justify="right")
    table.add_column("Failed", justify="right")
    table.add_column("Retries", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cached", justify="right")
    for summary in summaries:
        table.add_row(
            summary.run.start_time.strftime("%Y-%m-%d %H:%M:%S"),
            summary.run.model,
            summary.run.branch,
            str(summary.requests),
            str(summary.failed_requests),
            str(summary.retries),
            f"{summary.total_tokens:,}",
            f"{summary.cached_tokens:,}",
        )
    console.print(table)


@app.command()
def run(
    config_path: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to the YAML configuration"),
    log_level: Optional[str] = typer.Option(None, "--log-level", "-l", help="Overrides logging.level")
):
    """Fix the issues of the configured project and push them to a new branch."""
    try:
        config = load_config(config_path)
        model = validate_config(config)
        configure_logging(log_level or config.logging.level)
    except (ConfigurationError, ValueError) as e:
        console.print(f"[red]Configuration error:[/] {str(e)}")
        sys.exit(ExitCode.CONFIGURATION_ERROR)

    result = asyncio.run(_run(config, model))
    _display_result(result)
    sys.exit(int(result.exit_code))


async def _run(config: AppConfig, model: AIModel) -> OperationResult:
    initialize_schema(config.reporting.db_path)
    metadata = RunMetadata()
    ledger = UsageLedger(config.reporting.db_path, metadata)
    source = GitConnector(config.source_code)

    try:
        connector = create_connector(
            model,
            ledger,
            source=source,
            token=config.ai_agent.token,
            base_url=config.ai_agent.base_url,
            timeout_seconds=config.ai_agent.timeout_seconds,
            file_extension=config.source_code.file_extension,
        )
    except Exception as e:
        logger.error("Failed to create AI connector for %s: %s", model.model_name, e)
        return OperationResult.fatal(e, ExitCode.AI_CONNECTOR_ERROR)

    analysis = SonarqubeConnector(
        create_sonarqube_client(config.code_analysis.server_url, config.code_analysis.token)
    )
    orchestrator = AutoFixOrchestrator(config, connector, analysis, source, ledger, metadata)
    try:
        return await orchestrator.run()
    finally:
        await connector.aclose()
        await analysis.aclose()


def _display_result(result: OperationResult):
    summary = result.summary
    if result.success:
        console.print(
            f"\n[green]✓[/] Run finished: {summary.fixed} fixed, "
            f"{summary.failed} failed, {summary.skipped} skipped"
        )
    else:
        console.print(
            f"\n[red]✗[/] Run stopped with exit code {int(result.exit_code)} "
            f"({result.exit_code.name}): {result.exception}"
        )


if __name__ == "__main__":
    app()

"""
CLI entry point for the self-healing extractor.

Usage:
    python -m extractor adapt page.html --field price --field title
    python -m extractor memory stats
    python -m extractor memory cleanup --days 30 --min-confidence 20
    python -m extractor heal report.json --html page.html
    python -m extractor predict metrics.json
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from extractor.adaptive.engine import AdaptationEngine
from extractor.config import AdaptationMode, ExtractorConfig, load_config
from extractor.document import HtmlDocument
from extractor.exceptions import ExtractorError
from extractor.healing.auto_healer import AutoHealer
from extractor.memory.pattern_memory import PatternMemory
from extractor.models import FailureReport
from extractor.utils.logging import setup_logging

console = Console()


def _read_json(path: str) -> dict[str, Any]:
    try:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except ValueError as e:
        raise click.BadParameter(f"{path} is not valid JSON: {e}") from e


def _read_document(path: str, url: str = "") -> HtmlDocument:
    return HtmlDocument(Path(path).read_text(encoding="utf-8"), url=url)


async def _open_memory(config: ExtractorConfig) -> PatternMemory:
    memory = PatternMemory(config.memory)
    await memory.load()
    return memory


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """Self-healing extractor - pattern memory, adaptation and healing."""
    settings = load_config()
    log_level = "DEBUG" if verbose else settings.log_level
    setup_logging(level=log_level, format_type="console")

    ctx.ensure_object(dict)
    ctx.obj["config"] = ExtractorConfig.from_settings(settings)
    ctx.obj["verbose"] = verbose


@main.command()
@click.argument("html_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--field",
    "-f",
    "fields",
    multiple=True,
    default=("price", "title", "revenue", "multiple"),
    show_default=True,
    help="Field to recover. Can be specified multiple times.",
)
@click.option("--url", type=str, default="", help="URL the page was fetched from.")
@click.option(
    "--mode",
    type=click.Choice([m.value for m in AdaptationMode]),
    default=None,
    help="Adaptation mode (default: from settings).",
)
@click.pass_context
def adapt(
    ctx: click.Context,
    html_file: str,
    fields: tuple[str, ...],
    url: str,
    mode: str | None,
) -> None:
    """Run adaptation on a saved HTML page and print the recovered fields."""
    config: ExtractorConfig = ctx.obj["config"]
    if mode:
        config.adaptation.mode = AdaptationMode(mode)

    async def run():
        memory = await _open_memory(config)
        engine = AdaptationEngine(config.adaptation, memory=memory)
        document = _read_document(html_file, url)
        recovered = await engine.adapt_during_execution(document, list(fields), {})
        await memory.flush()
        return recovered

    recovered = asyncio.run(run())

    if not recovered:
        console.print("[yellow]No fields recovered[/yellow]")
        sys.exit(1)

    table = Table(title=f"Recovered fields ({len(recovered)}/{len(fields)})")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_column("Confidence", justify="right")
    table.add_column("Method", style="magenta", no_wrap=True)
    for name, field in recovered.items():
        table.add_row(name, str(field.value), str(field.confidence), field.method)
    console.print(table)


@main.group()
def memory() -> None:
    """Inspect and maintain pattern memory."""


@memory.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show pattern memory statistics and recommendations."""
    config: ExtractorConfig = ctx.obj["config"]
    insights = asyncio.run(_open_memory(config)).get_learning_insights()

    summary = insights["summary"]
    console.print("[bold blue]Pattern Memory[/bold blue]")
    console.print(f"Patterns: {summary['total_patterns']}")
    console.print(f"Failure records: {summary['total_failures']}")
    console.print(f"Last updated: {summary['last_updated']}")

    if insights["by_data_type"]:
        table = Table()
        table.add_column("Data type", style="cyan")
        table.add_column("Patterns", justify="right")
        table.add_column("Avg confidence", justify="right")
        table.add_column("Avg success rate", justify="right")
        table.add_column("Top selector")
        for data_type, row in insights["by_data_type"].items():
            table.add_row(
                data_type,
                str(row["pattern_count"]),
                f"{row['average_confidence']:.1f}",
                f"{row['average_success_rate']:.2f}",
                row["top_pattern"]["selector"],
            )
        console.print(table)

    for rec in insights["recommendations"]:
        console.print(f"[yellow]{rec['severity']}[/yellow] {rec['message']}")


@memory.command()
@click.option("--days", type=int, default=30, show_default=True, help="Days to keep.")
@click.option(
    "--min-confidence",
    type=float,
    default=20,
    show_default=True,
    help="Remove patterns below this confidence.",
)
@click.pass_context
def cleanup(ctx: click.Context, days: int, min_confidence: float) -> None:
    """Remove stale and low-confidence patterns."""
    config: ExtractorConfig = ctx.obj["config"]

    async def run() -> int:
        memory = await _open_memory(config)
        return await memory.cleanup(days, min_confidence)

    removed = asyncio.run(run())
    console.print(f"Removed {removed} pattern(s)")


@main.command()
@click.argument("report_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--html",
    "html_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Saved page the failure was observed on.",
)
@click.option(
    "--export",
    "export_path",
    type=click.Path(),
    default=None,
    help="Write the healing history to this file.",
)
@click.pass_context
def heal(
    ctx: click.Context,
    report_file: str,
    html_file: str | None,
    export_path: str | None,
) -> None:
    """Diagnose a failure report and run healing."""
    config: ExtractorConfig = ctx.obj["config"]
    report = FailureReport.from_dict(_read_json(report_file))
    if html_file:
        report.document = _read_document(html_file, report.url)

    async def run():
        memory = await _open_memory(config)
        engine = AdaptationEngine(config.adaptation, memory=memory)
        healer = AutoHealer(config.healing, engine=engine, memory=memory)
        outcome = await healer.analyze_failure(report)
        await memory.flush()
        exported = await healer.export_history(export_path) if export_path else None
        return outcome, exported

    try:
        outcome, exported = asyncio.run(run())
    except ExtractorError as e:
        console.print(f"\n[bold red]Error: {e.message}[/bold red]")
        sys.exit(1)

    diagnosis = outcome.diagnosis
    console.print(f"Failure type: [bold]{diagnosis.failure_type.value}[/bold]")
    console.print(f"Severity: {diagnosis.severity.value}")
    console.print(
        "Recommended: " + ", ".join(s.value for s in diagnosis.recommended_strategies)
    )
    if outcome.healed:
        console.print(f"[bold green]Healed[/bold green] ({outcome.healing_id})")
    elif outcome.healing_id:
        console.print(f"[bold red]Healing exhausted[/bold red] ({outcome.healing_id})")
    else:
        console.print("[yellow]Healing disabled[/yellow]")
    if exported:
        console.print(f"History exported to {exported}")

    if not outcome.healed:
        sys.exit(1)


@main.command()
@click.argument("metrics_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def predict(ctx: click.Context, metrics_file: str) -> None:
    """Predict failures from a metrics snapshot."""
    config: ExtractorConfig = ctx.obj["config"]
    healer = AutoHealer(config.healing)
    predictions = healer.predict_failures(_read_json(metrics_file))

    if not predictions:
        console.print("[green]No failures predicted[/green]")
        return

    table = Table(title="Predicted failures")
    table.add_column("Type", style="cyan", no_wrap=True)
    table.add_column("Probability", justify="right")
    table.add_column("Timeframe")
    table.add_column("Recommendation")
    for p in predictions:
        table.add_row(p.type.value, f"{p.probability:.0%}", p.timeframe, p.recommendation)
    console.print(table)


if __name__ == "__main__":
    main()

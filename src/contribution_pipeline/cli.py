"""CLI interface for the contribution pipeline."""

import asyncio
import json
import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from .config import CONFIG, PipelineConfig
from .exceptions import ContributionError, PersistenceError, QualificationRejected

app = typer.Typer(
    name="contribute",
    help="Guided contribution of historical documents to the research registry",
    add_completion=False,
)
console = Console()

state: dict = {"db": None, "log_level": None}


@app.callback()
def main(
    db: Path = typer.Option(None, "--db", help="SQLite database path (default: CONTRIB_DB_PATH)"),
    log_level: str = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
):
    """Walk a source URL from analysis to confirmed records."""
    state["db"] = db
    state["log_level"] = log_level


def get_config() -> PipelineConfig:
    """Load configuration from the environment and any .env file."""
    from dotenv import load_dotenv

    load_dotenv()
    return replace(
        CONFIG,
        db_path=str(state["db"]) if state["db"] else os.getenv("CONTRIB_DB_PATH", CONFIG.db_path),
        log_level=state["log_level"] or os.getenv("CONTRIB_LOG_LEVEL", "WARNING"),
    )


def get_pipeline():
    from .logging import configure_logging
    from .pipeline import ContributionPipeline
    from .storage import ContributionStorage

    config = get_config()
    configure_logging(config.log_level, json=False)
    storage = ContributionStorage(config.db_path, timeout=config.db_timeout)
    return ContributionPipeline(storage, config=config)


@contextmanager
def reported_errors() -> Iterator[None]:
    """Print pipeline errors in red and exit 1; storage faults show only a reference id."""
    try:
        yield
    except PersistenceError as exc:
        console.print(f"[red]Error: internal error (ref {exc.correlation_id})[/red]")
        raise typer.Exit(1)
    except QualificationRejected as exc:
        console.print(f"[red]Not promoted: {exc.reason}[/red]")
        raise typer.Exit(1)
    except ContributionError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)


def parse_pairs(values: list[str] | None) -> dict[str, str]:
    pairs = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected key=value, got {item!r}")
        pairs[key.strip()] = value.strip()
    return pairs


@app.command()
def start(
    url: str = typer.Argument(..., help="URL of the source document"),
    contributor: str = typer.Option(None, "--contributor", "-c", help="Contributor id"),
):
    """Open a session for URL and analyze it."""
    pipeline = get_pipeline()
    with reported_errors():
        outcome = asyncio.run(pipeline.start(url, contributor))

    console.print(Panel(Markdown(outcome.message), title="[bold]Source Analysis[/bold]"))
    _print_questions(outcome.questions)
    console.print(f"[green]Session:[/green] {outcome.session.session_id}")


@app.command()
def describe(
    session_id: str = typer.Argument(..., help="Session id"),
    text: str = typer.Argument(None, help="What you see in the document"),
    answer: list[str] = typer.Option(None, "--answer", "-a", help="Answer a question as key=value"),
):
    """Describe the document layout in your own words, or answer questions."""
    pipeline = get_pipeline()
    answers = parse_pairs(answer)
    if not text and not answers:
        console.print("[red]Error: give a description or at least one --answer[/red]")
        raise typer.Exit(1)

    with reported_errors():
        if text:
            outcome = pipeline.process_content_description(session_id, text)
        if answers:
            outcome = pipeline.describe_answers(session_id, answers)

    console.print(Panel(Markdown(outcome.message), title="[bold]Structure[/bold]"))
    _print_questions(outcome.questions)
    console.print(f"[dim]Stage: {outcome.next_stage.value}[/dim]")


@app.command()
def confirm(
    session_id: str = typer.Argument(..., help="Session id"),
    reject: bool = typer.Option(False, "--reject", help="The structure is not right yet"),
    fix: list[str] = typer.Option(None, "--set", "-s", help="Correct a field, e.g. column_2_type=age"),
):
    """Confirm (or correct) the understood document structure."""
    pipeline = get_pipeline()
    with reported_errors():
        outcome = pipeline.confirm_structure(
            session_id, confirmed=not reject, corrections=parse_pairs(fix) or None
        )

    console.print(Panel(Markdown(outcome.message), title="[bold]Confirmation[/bold]"))
    if outcome.options:
        table = Table(title="Extraction Methods")
        table.add_column("Method")
        table.add_column("Description")
        table.add_column("Best for")
        table.add_column("")
        for option in outcome.options:
            if not option.available:
                mark = "[dim]unavailable[/dim]"
            elif option.recommended:
                mark = "[green]recommended[/green]"
            else:
                mark = ""
            table.add_row(option.id, option.description, option.best_for, mark)
        console.print(table)
    _print_questions(outcome.questions)


@app.command()
def extract(
    session_id: str = typer.Argument(..., help="Session id"),
    method: str = typer.Argument(..., help="Extraction method, e.g. auto_ocr or manual_text"),
    option: list[str] = typer.Option(None, "--option", "-o", help="Backend option as key=value"),
    text_file: Path = typer.Option(None, "--text-file", "-f", help="Transcribed text or CSV to import"),
):
    """Start an extraction job."""
    pipeline = get_pipeline()
    if text_file is not None and not text_file.exists():
        console.print(f"[red]Error: File not found: {text_file}[/red]")
        raise typer.Exit(1)

    with reported_errors():
        started = pipeline.start_extraction(session_id, method, parse_pairs(option))
        job = started.job
        if text_file is not None:
            job = pipeline.submit_transcription(session_id, job.extraction_id, text_file.read_text())

    console.print(Panel(Markdown(started.message), title="[bold]Extraction[/bold]"))
    console.print(f"[green]Extraction:[/green] {job.extraction_id} ({job.status.value})")
    if job.row_count:
        console.print(f"Parsed {job.row_count} rows, average confidence {job.avg_confidence:.2f}")


@app.command()
def status(
    session_id: str = typer.Argument(..., help="Session id"),
    extraction_id: str = typer.Argument(..., help="Extraction id"),
    rows: bool = typer.Option(False, "--rows", help="Show parsed rows"),
    debug: bool = typer.Option(False, "--debug", help="Show the backend debug log"),
):
    """Show the progress of an extraction job."""
    pipeline = get_pipeline()
    with reported_errors():
        view = pipeline.get_extraction_status(session_id, extraction_id, include_rows=rows, debug=debug)

    table = Table(title=f"Extraction {view.extraction_id}")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Method", view.method.value)
    table.add_row("Status", view.status.value)
    table.add_row("Progress", f"{view.progress}%")
    table.add_row("Rows", str(view.row_count))
    table.add_row("Avg Confidence", f"{view.avg_confidence:.2f}" if view.avg_confidence is not None else "-")
    table.add_row("Corrections", str(view.human_corrections))
    table.add_row("Illegible", str(view.illegible_count))
    if view.status_message:
        table.add_row("Message", view.status_message)
    if view.error:
        table.add_row("Error", f"[red]{view.error}[/red]")
    if view.suggested_fallback:
        table.add_row("Try instead", view.suggested_fallback)
    console.print(table)

    if rows and view.parsed_rows:
        row_table = Table(title="Parsed Rows")
        row_table.add_column("#")
        row_table.add_column("Values")
        row_table.add_column("Confidence")
        for row in view.parsed_rows:
            values = row.get("columns", {})
            row_table.add_row(
                str(row.get("row_index", "")),
                ", ".join(f"{k}={v}" for k, v in values.items()) if isinstance(values, dict) else str(values),
                str(row.get("confidence", "")),
            )
        console.print(row_table)
    if debug and view.debug_log is not None:
        console.print_json(json.dumps(view.debug_log, default=str))


@app.command()
def correct(
    extraction_id: str = typer.Argument(..., help="Extraction id"),
    corrections_file: Path = typer.Argument(..., help="JSON list of {row_index, field_name, corrected_value}"),
    by: str = typer.Option(None, "--by", help="Who made the corrections"),
):
    """Record human corrections to parsed rows."""
    if not corrections_file.exists():
        console.print(f"[red]Error: File not found: {corrections_file}[/red]")
        raise typer.Exit(1)
    try:
        corrections = json.loads(corrections_file.read_text())
    except json.JSONDecodeError as exc:
        console.print(f"[red]Error: {corrections_file} is not valid JSON: {exc}[/red]")
        raise typer.Exit(1)

    pipeline = get_pipeline()
    with reported_errors():
        receipt = pipeline.submit_corrections(extraction_id, corrections, corrected_by=by)

    console.print(f"[green]Applied {receipt.applied} corrections[/green]")
    if receipt.failed:
        refs = f" (ref {', '.join(receipt.correlation_ids)})" if receipt.correlation_ids else ""
        console.print(f"[yellow]{receipt.failed} corrections failed{refs}[/yellow]")


@app.command()
def promote(
    session_id: str = typer.Argument(..., help="Session id"),
    extraction_id: str = typer.Argument(..., help="Extraction id"),
    channel: str = typer.Option(..., "--channel", help="How the rows were confirmed, e.g. human_transcription"),
):
    """Promote qualifying owner rows of an extraction to the confirmed registry."""
    pipeline = get_pipeline()
    with reported_errors():
        summary = pipeline.promote_from_extraction(session_id, extraction_id, channel)

    if not summary.federal_source:
        console.print("[yellow]Not a federal/government source; nothing promoted[/yellow]")
        return

    table = Table(title="Promotion Results")
    table.add_column("Name")
    table.add_column("Result")
    table.add_column("Detail")
    for result in summary.results:
        if result.success:
            kind = result.promotion_type.value if result.promotion_type else ""
            table.add_row(result.person or "", f"[green]{result.action}[/green]", kind)
        elif result.error:
            table.add_row(result.person or "", "[red]error[/red]", f"ref {result.correlation_id}")
        else:
            table.add_row(result.person or "", "[yellow]skipped[/yellow]", result.reason or "")
    console.print(table)
    console.print(
        f"Promoted {summary.promoted}, skipped {summary.skipped}, errors {summary.errors} "
        f"of {summary.evaluated} evaluated"
    )


@app.command("promote-lead")
def promote_lead(
    lead_id: str = typer.Argument(..., help="Staging lead id"),
    by: str = typer.Option("manual_review", "--by", help="Reviewer"),
):
    """Promote one staging lead after human review."""
    pipeline = get_pipeline()
    with reported_errors():
        result = pipeline.promote_by_id(lead_id, verified_by=by)
    console.print(f"[green]{result.person}: {result.action} ({result.individual_id})[/green]")


@app.command("check-federal")
def check_federal(
    url: str = typer.Argument(..., help="Source URL"),
    document_type: str = typer.Option(None, "--document-type", "-t", help="e.g. slave_schedule"),
):
    """Check whether a source counts as federal/government."""
    from .promotion import is_federal_source

    if is_federal_source(url, document_type):
        console.print(f"[green]{url} is a federal/government source[/green]")
    else:
        console.print(f"[yellow]{url} is not a federal/government source[/yellow]")


@app.command()
def stats():
    """Show confirmed registry statistics."""
    pipeline = get_pipeline()
    with reported_errors():
        numbers = pipeline.promotion_stats()

    table = Table(title="Registry Statistics")
    table.add_column("Metric")
    table.add_column("Value")
    table.add_row("Confirmed individuals", str(numbers.total_individuals))
    table.add_row("Primary source", str(numbers.primary_source_count))
    table.add_row("Verified", str(numbers.verified_count))
    table.add_row("Promoted (last 24h)", str(numbers.promoted_last_24h))
    console.print(table)


@app.command()
def show(
    session_id: str = typer.Argument(..., help="Session id"),
    history: bool = typer.Option(False, "--history", help="Show the full conversation"),
):
    """Show a session summary."""
    pipeline = get_pipeline()
    with reported_errors():
        session = pipeline.get_session(session_id)
    summary = pipeline.session_summary(session)

    table = Table(title=f"Session {summary.session_id}")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("URL", summary.url)
    table.add_row("Stage", f"{summary.stage.value} ({summary.stage_index + 1}/{summary.total_stages})")
    table.add_row("Status", summary.status.value)
    table.add_row("Source", summary.source or "-")
    table.add_row("Document", summary.document_title or "-")
    table.add_row("Messages", str(summary.message_count))
    table.add_row("Last activity", summary.last_activity.isoformat())
    console.print(table)

    if history:
        for entry in session.conversation_history:
            console.print(Panel(Markdown(entry.message), title=entry.role.value, subtitle=entry.timestamp.isoformat()))


@app.command()
def chat(
    session_id: str = typer.Argument(..., help="Session id"),
    message: str = typer.Argument(..., help="Your message"),
):
    """Send a free-text message; it is routed by the session's stage."""
    pipeline = get_pipeline()
    with reported_errors():
        reply = asyncio.run(pipeline.chat(session_id, message))
    console.print(Panel(Markdown(reply.message), title=f"[bold]{reply.stage.value}[/bold]"))
    _print_questions(reply.questions)


def _print_questions(questions):
    for question in questions:
        console.print(f"[bold]{question.id}[/bold]: {question.question}")
        for opt in question.options:
            console.print(f"    {opt.value} - {opt.label}")


if __name__ == "__main__":
    app()

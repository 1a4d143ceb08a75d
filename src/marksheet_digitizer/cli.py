from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from .aggregate import AggregatedData, AggregationStore
from .config_io import load_settings
from .export_core import EXPORT_FORMATS, build_rows, write_export
from .log import setup_logging
from .ocr_client import ExtractionError, GeminiMarksheetReader
from .queue_core import DONE, ERROR, ProcessingQueue, QueueItem, ReviewSession
from .roster import RosterError, parse_roster, reconcile, render_merged_csv
from .settings import Settings
from .sheet_mapper import SheetRecord
from .snapshot_io import SnapshotStore
from .tools.sheet_images import ImageInputError, load_ocr_payloads

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="marksheet-digitizer: extract, review, consolidate and merge handwritten mark-sheets.",
)
console = Console()


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj["settings"]


def _open_store(settings: Settings) -> AggregationStore:
    return AggregationStore(SnapshotStore(settings.store_dir), key=settings.store_key)


def _make_reader(settings: Settings) -> GeminiMarksheetReader:
    return GeminiMarksheetReader.from_settings(settings)


def _consolidated_table(data: AggregatedData) -> Table:
    rows = build_rows(data)
    table = Table(title=f"Consolidated marks ({len(data)} sheet(s))")
    for h in rows[0]:
        table.add_column(h, no_wrap=True)
    for r in rows[1:]:
        table.add_row(*r)
    return table


def _sheet_table(sheet: SheetRecord) -> Table:
    table = Table(title=f"Register No: {sheet.reg_no}")
    table.add_column("Question")
    table.add_column("Extracted")
    table.add_column("Corrected")
    for m in sheet.marks:
        style = "yellow" if m.corrected_mark != m.extracted_mark else None
        table.add_row(m.question, m.extracted_mark, m.corrected_mark, style=style)
    table.add_row("Total", sheet.extracted_total or "", sheet.corrected_total or "", end_section=True)
    return table


def _review_interactively(sheet: SheetRecord) -> bool:
    """Prompt for KEY=VALUE corrections until an empty answer. Returns False to skip the sheet."""
    while True:
        console.print(_sheet_table(sheet))
        answer = typer.prompt(
            "Correction (e.g. Q1a=5, total=42), 'skip', or Enter to finalize",
            default="",
            show_default=False,
        ).strip()
        if not answer:
            return True
        if answer.lower() == "skip":
            return False
        key, sep, value = answer.partition("=")
        key, value = key.strip(), value.strip()
        if not sep or not key:
            rprint("[yellow]Use KEY=VALUE, e.g. Q3b=4[/yellow]")
            continue
        if key.lower() == "total":
            sheet.set_total(value)
            continue
        try:
            sheet.set_mark(key, value)
        except KeyError:
            rprint(f"[yellow]No question {key} on this sheet.[/yellow]")


def _print_status(item: QueueItem) -> None:
    if item.status == DONE:
        r = item.result
        rprint(f"[green]done[/green]  {item.name}: Reg No {r.reg_no}, "
               f"{r.subpart_mark_count()} sub-part mark(s), total {r.total_marks or 'N/A'}")
    elif item.status == ERROR:
        rprint(f"[red]error[/red] {item.name}: {item.error}")


# ------------------------------ ROOT ---------------------------------
@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Settings file (.yaml/.yml or .json)"),
    store_dir: Optional[str] = typer.Option(None, "--store-dir", help="Directory holding the consolidated marks snapshot"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG|INFO|WARNING|ERROR"),
):
    """
    Shared options; the consolidated marks survive between runs in --store-dir.
    """
    try:
        settings = load_settings(config, store_dir=store_dir, log_level=log_level)
    except (OSError, ValueError) as e:
        rprint(f"[red]Failed to load config {config}:[/red] {e}")
        raise typer.Exit(code=2)
    setup_logging(settings.log_level)
    ctx.obj = {"settings": settings}


# ------------------------------ PROCESS ------------------------------
@app.command()
def process(
    ctx: typer.Context,
    images: List[str] = typer.Argument(..., help="Mark-sheet images or PDF scans (one sheet per page)"),
    review: bool = typer.Option(True, "--review/--accept", help="Review and correct each sheet, or accept extractions as-is"),
    verify: bool = typer.Option(False, "--verify", help="Ask the model to double-check marks before review"),
):
    """
    Extract marks from each image (one at a time), review, and finalize into the consolidated table.
    """
    settings = _settings(ctx)
    queue = ProcessingQueue()
    for path in images:
        try:
            for name, payload in load_ocr_payloads(path, dpi=settings.pdf_dpi, max_side=settings.max_image_side):
                queue.add(name, payload)
        except ImageInputError as e:
            rprint(f"[red]Skipped:[/red] {e}")
    if not queue.items:
        rprint("[red]No readable images to process.[/red]")
        raise typer.Exit(code=2)

    try:
        reader = _make_reader(settings)
    except ExtractionError as e:
        rprint(f"[red]{e}[/red]")
        raise typer.Exit(code=2)

    rprint(f"[cyan]Processing {len(queue.items)} image(s)...[/cyan]")
    summary = queue.process(reader, on_update=_print_status)

    store = _open_store(settings)
    session = ReviewSession(store, queue)
    finalized: set = set()
    for item in queue.done():
        reg_no = item.result.reg_no
        if reg_no in finalized:
            continue
        if reg_no in store:
            rprint(f"[yellow]Register No {reg_no} is already in the table; finalizing replaces it.[/yellow]")
        sheet = session.select(reg_no)
        if verify:
            try:
                reader.verify_marks(sheet)
            except ExtractionError as e:
                rprint(f"[yellow]Verification skipped for {sheet.reg_no}:[/yellow] {e}")
        if review and not _review_interactively(sheet):
            session.discard()
            rprint(f"[yellow]Skipped {sheet.reg_no}[/yellow]")
            continue
        session.finalize()
        finalized.add(reg_no)
        rprint(f"[green]Finalized:[/green] {reg_no}")

    rprint(f"[green]{len(finalized)} sheet(s) finalized[/green], {summary.failed} failed; "
           f"{len(store.sheets)} sheet(s) in the consolidated table.")
    if summary.failed:
        raise typer.Exit(code=1)


# ------------------------------- SHOW --------------------------------
@app.command()
def show(ctx: typer.Context):
    """
    Print the consolidated marks table.
    """
    store = _open_store(_settings(ctx))
    if not store.sheets:
        rprint("[yellow]No sheets have been finalized yet.[/yellow]")
        return
    console.print(_consolidated_table(store.data))


# ------------------------------ DELETE -------------------------------
@app.command()
def delete(
    ctx: typer.Context,
    reg_no: str = typer.Argument(..., help="Register number of the sheet to remove"),
):
    """
    Remove one sheet from the consolidated table.
    """
    store = _open_store(_settings(ctx))
    if reg_no not in store:
        rprint(f"[yellow]No sheet for Register No. {reg_no}; nothing to delete.[/yellow]")
        return
    store.delete(reg_no)
    rprint(f"[green]Deleted:[/green] {reg_no}")


# ------------------------------- CLEAR -------------------------------
@app.command()
def clear(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """
    Remove ALL consolidated sheet data. Irreversible.
    """
    if not yes and not typer.confirm("Clear all marksheet data?", default=False):
        raise typer.Abort()
    _open_store(_settings(ctx)).clear()
    rprint("[green]All marksheet data cleared.[/green]")


# ------------------------------ EXPORT -------------------------------
@app.command()
def export(
    ctx: typer.Context,
    out_path: str = typer.Option("consolidated_marks_data.xlsx", "--out", "-o", help="Output file"),
    fmt: Optional[str] = typer.Option(None, "--format", "-f", help="xlsx|csv (default: from the file extension)"),
):
    """
    Export the consolidated marks (Register No. x questions).
    """
    store = _open_store(_settings(ctx))
    if not store.sheets:
        rprint("[red]No data available to export.[/red]")
        raise typer.Exit(code=2)
    if fmt is not None and fmt not in EXPORT_FORMATS:
        rprint(f"[red]Unsupported format {fmt!r}; use one of {', '.join(EXPORT_FORMATS)}.[/red]")
        raise typer.Exit(code=2)
    try:
        out = write_export(store.data, out_path, fmt)
    except ValueError as e:
        rprint(f"[red]Export failed:[/red] {e}")
        raise typer.Exit(code=2)
    rprint(f"[green]Wrote:[/green] {out}")


# ------------------------------- MERGE -------------------------------
@app.command()
def merge(
    ctx: typer.Context,
    roster_csv: str = typer.Argument(..., help="Student roster CSV with 'Admission No' and 'Name' columns"),
    out_csv: Optional[str] = typer.Option(None, "--out", "-o", help="Merged CSV (default: merged_<roster name>)"),
):
    """
    Write consolidated marks into a roster CSV, matching Admission No to Register No by the last 3 characters.
    """
    settings = _settings(ctx)
    store = _open_store(settings)
    if not store.sheets:
        rprint("[red]No consolidated marks found. Process some mark-sheets first.[/red]")
        raise typer.Exit(code=2)

    src = Path(roster_csv).expanduser()
    try:
        table = parse_roster(
            src.read_bytes(),
            identity_header=settings.identity_header,
            name_header=settings.name_header,
            scan_lines=settings.header_scan_lines,
        )
    except (OSError, RosterError) as e:
        rprint(f"[red]Cannot read roster {roster_csv}:[/red] {e}")
        raise typer.Exit(code=2)

    rows, updated = reconcile(table.rows, store.data, headers=table.headers, identity_header=settings.identity_header)
    out = Path(out_csv).expanduser() if out_csv else src.with_name(f"merged_{src.name}")
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(render_merged_csv(table, rows))

    if updated:
        rprint(f"[green]{updated} student(s) updated.[/green]")
    else:
        rprint("[yellow]No matching students found or no new marks to update.[/yellow]")
    rprint(f"[green]Wrote:[/green] {out}")


# ------------------------------- GUI ---------------------------------
@app.command()
def gui(
    port: int = typer.Option(8501, "--port", help="Port to serve Streamlit GUI"),
    browser: bool = typer.Option(True, "--open-browser/--no-open-browser", help="Open browser automatically"),
):
    """
    Launch the Streamlit GUI.
    """
    app_py = (Path(__file__).resolve().parent / "app_streamlit.py")
    if not app_py.exists():
        rprint(f"[red]Cannot locate app_streamlit.py at {app_py}[/red]")
        raise typer.Exit(code=2)

    cmd = ["streamlit", "run", str(app_py), "--server.port", str(port)]
    if not browser:
        cmd.extend(["--server.headless", "true"])

    rprint(f"[cyan]Launching:[/cyan] {' '.join(cmd)}")
    try:
        subprocess.run(cmd, check=True)
    except FileNotFoundError:
        rprint("[red]Streamlit not found. Install it in your environment (`pip install streamlit`).[/red]")
        raise typer.Exit(code=3)
    except subprocess.CalledProcessError as e:
        rprint(f"[red]Streamlit exited with error:[/red] {e}")
        raise typer.Exit(code=4)


# ------------------------------- MAIN --------------------------------
def app_main() -> None:
    """Entry point for console_scripts."""
    try:
        app()
    except KeyboardInterrupt:
        rprint("\n[red]Interrupted[/red]")
        sys.exit(130)


if __name__ == "__main__":
    app_main()

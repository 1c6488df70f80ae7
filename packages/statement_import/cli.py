"""CLI for the ``statement_import`` package.

This module exposes callable command handlers (``cmd_detect``,
``cmd_preview``, ...) and a Typer-based console interface over them.
Environment variables (notably ``DATABASE_URL``) are loaded from a local
``.env`` using ``python-dotenv`` before any command runs. Business logic lives
in ``statement_import.api`` and related modules; handlers only read files,
call the API and render results with ``rich``.

Every handler returns a process exit code: ``0`` on success, ``1`` on any
error (reported on stderr).
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .errors import CommitError, ParseError, StatementImportError
from .logging_setup import configure_logging
from .models import CommitResult, ImportDecision, Preview

console = Console()
err_console = Console(stderr=True)


def _fail(message: str) -> int:
    err_console.print(f"[red]Error:[/red] {message}")
    return 1


def _read_bytes(path: Path) -> bytes:
    if not path.is_file():
        raise FileNotFoundError(f"file not found: {path}")
    return path.read_bytes()


# ---- Rendering ---------------------------------------------------------------


def _formats_table() -> Table:
    from .api import supported_formats

    table = Table(title="Supported statement formats")
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Shape")
    table.add_column("Bank")
    table.add_column("Dates")
    table.add_column("Numbers")
    table.add_column("Currency")
    for p in supported_formats():
        table.add_row(
            p.key,
            p.name,
            p.shape,
            p.bank or "-",
            p.date_order,
            p.number_convention,
            p.default_currency or "-",
        )
    return table


def _preview_table(preview: Preview) -> Table:
    table = Table(title=f"{preview.filename} · {preview.format_name} · {preview.currency}")
    table.add_column("#", justify="right")
    table.add_column("Date", no_wrap=True)
    table.add_column("Description")
    table.add_column("Amount", justify="right")
    table.add_column("Duplicate")
    table.add_column("Category")
    for i, entry in enumerate(preview.entries, start=1):
        tx = entry.transaction
        style = "green" if tx.direction == "INCOME" else "red"
        suggestion = entry.suggested_category
        table.add_row(
            str(i),
            tx.occurred_on.isoformat(),
            tx.description,
            f"[{style}]{tx.signed_amount:,.2f}[/{style}]",
            f"yes (#{entry.duplicate_of})" if entry.is_duplicate else "",
            str(suggestion.category_id) if suggestion else "",
        )
    return table


def _print_preview_summary(preview: Preview) -> None:
    if preview.date_range is not None:
        start, end = preview.date_range
        console.print(f"Period: {start.isoformat()} → {end.isoformat()}")
    console.print(
        f"Income: {preview.total_income:,.2f}  Expenses: {preview.total_expenses:,.2f}  "
        f"Net: {preview.net_amount:,.2f}"
    )
    console.print(
        f"Entries: {len(preview.entries)}  Duplicates: {preview.duplicates_found}  "
        f"Skipped: {preview.skipped_rows}  Collapsed: {preview.collapsed_rows}"
    )
    for reason, count in sorted(preview.skipped_by_reason.items()):
        console.print(f"  skipped {reason}: {count}")


def _print_commit_result(result: CommitResult) -> None:
    console.print(
        f"[bold]{result.state}[/bold]  imported={result.imported} skipped={result.skipped} "
        f"duplicates={result.duplicates} errored={result.errored}"
    )
    if result.new_balance is not None:
        console.print(f"New balance: {result.new_balance:,.2f}")
    for err in result.errors:
        err_console.print(f"[yellow]row {err.fingerprint[:12]}…:[/yellow] {err.reason}")


# ---- Command handlers --------------------------------------------------------


def cmd_formats() -> int:
    console.print(_formats_table())
    return 0


def cmd_detect(file: Path, *, hint: str | None = None) -> int:
    from .api import detect

    try:
        profile = detect(_read_bytes(file), file.name, hint)
    except (OSError, StatementImportError) as e:
        return _fail(str(e))
    console.print(f"[cyan]{profile.key}[/cyan]\t{profile.name}")
    return 0


def cmd_preview(
    file: Path,
    account_id: int,
    *,
    hint: str | None = None,
    output: Path | None = None,
    database_url: str | None = None,
    statement_year: int | None = None,
) -> int:
    from .api import preview
    from .schemas import PreviewPayload

    try:
        result = preview(
            _read_bytes(file),
            file.name,
            account_id,
            hint,
            database_url=database_url,
            statement_year=statement_year,
        )
    except ParseError as e:
        return _fail(f"{e.stage}: {e.message}")
    except (OSError, RuntimeError, StatementImportError) as e:
        return _fail(str(e))

    console.print(_preview_table(result))
    _print_preview_summary(result)
    if output is not None:
        payload = PreviewPayload.from_preview(result)
        try:
            output.write_text(payload.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            return _fail(f"could not write {output}: {e}")
        console.print(f"Preview written to {output}")
    return 0


def _default_decisions(preview: Preview, *, include_duplicates: bool) -> list[ImportDecision]:
    return [
        ImportDecision(fingerprint=e.fingerprint)
        for e in preview.entries
        if include_duplicates or not e.is_duplicate
    ]


def cmd_commit(
    preview_path: Path,
    account_id: int,
    *,
    decisions_path: Path | None = None,
    include_duplicates: bool = False,
    database_url: str | None = None,
) -> int:
    from .api import commit
    from .schemas import DecisionList, PreviewPayload

    try:
        snapshot = PreviewPayload.model_validate_json(_read_bytes(preview_path)).to_preview()
        if decisions_path is not None:
            payloads = DecisionList.validate_json(_read_bytes(decisions_path))
            decisions = [p.to_decision() for p in payloads]
        else:
            decisions = _default_decisions(snapshot, include_duplicates=include_duplicates)
    except ValidationError as e:
        return _fail(f"invalid JSON payload: {e}")
    except OSError as e:
        return _fail(str(e))

    try:
        result = commit(account_id, decisions, snapshot, database_url=database_url)
    except CommitError as e:
        return _fail(
            f"{e} (state={e.state}, imported={e.imported}, duplicates={e.duplicates}, "
            f"errored={e.errored})"
        )
    except (RuntimeError, StatementImportError) as e:
        return _fail(str(e))

    _print_commit_result(result)
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import bank statement files (CSV, Excel, PDF) into an account ledger. "
        "Loads DATABASE_URL from a local .env before running."
    ),
)

DatabaseUrlOption = Annotated[
    str | None, typer.Option(help="Override DATABASE_URL (falls back to env var).")
]
HintOption = Annotated[
    str | None, typer.Option(help="Format profile key to use (see `formats`).")
]


@app.command("formats")
def formats_cmd() -> None:
    """List the supported statement formats."""

    raise typer.Exit(cmd_formats())


@app.command("detect")
def detect_cmd(
    file: Annotated[Path, typer.Option("--file", help="Statement file to inspect.")],
    hint: HintOption = None,
) -> None:
    """Print the format profile that would read FILE."""

    raise typer.Exit(cmd_detect(file, hint=hint))


@app.command("preview")
def preview_cmd(
    file: Annotated[Path, typer.Option("--file", help="Statement file to preview.")],
    account_id: Annotated[int, typer.Option("--account-id", help="Target account id.")],
    hint: HintOption = None,
    output: Annotated[
        Path | None, typer.Option("--output", help="Write the preview JSON here.")
    ] = None,
    year: Annotated[
        int | None, typer.Option("--year", help="Year for dates printed without one.")
    ] = None,
    database_url: DatabaseUrlOption = None,
) -> None:
    """Parse FILE and show what would be imported; nothing is written."""

    raise typer.Exit(
        cmd_preview(
            file,
            account_id,
            hint=hint,
            output=output,
            database_url=database_url,
            statement_year=year,
        )
    )


@app.command("commit")
def commit_cmd(
    preview_path: Annotated[
        Path, typer.Option("--preview", help="Preview JSON written by `preview --output`.")
    ],
    account_id: Annotated[int, typer.Option("--account-id", help="Target account id.")],
    decisions: Annotated[
        Path | None,
        typer.Option(
            "--decisions",
            help="JSON list of {fingerprint, category_id?, skip?}; default approves all.",
        ),
    ] = None,
    include_duplicates: Annotated[
        bool,
        typer.Option(help="Without --decisions, also approve rows flagged as duplicates."),
    ] = False,
    database_url: DatabaseUrlOption = None,
) -> None:
    """Apply a saved preview to the account ledger."""

    raise typer.Exit(
        cmd_commit(
            preview_path,
            account_id,
            decisions_path=decisions,
            include_duplicates=include_duplicates,
            database_url=database_url,
        )
    )


@app.callback()
def _root(
    log_level: Annotated[
        str | None,
        typer.Option(help="Log level (falls back to STATEMENT_IMPORT_LOG_LEVEL, then INFO)."),
    ] = None,
) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging once.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(log_level)


if __name__ == "__main__":  # pragma: no cover - exercised via the console script
    app()

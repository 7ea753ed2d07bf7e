# ruff: noqa: I001
"""CLI for the ``household_ledger`` package.

This module exposes callable command handlers (``cmd_parse``,
``cmd_import``, ``cmd_reconcile`` and the merge handlers) and a Typer-based
console interface. Environment variables (``DATABASE_URL``,
``OPENAI_API_KEY``) are loaded from a local ``.env`` using ``python-dotenv``
before delegating to command logic. Business logic lives in
``household_ledger.api``, ``household_ledger.reconciliation`` and
``household_ledger.persistence``.

Handlers print ``Error: ...`` to stderr and return a non-zero exit status on
failure; on success they return ``0``.
"""

from __future__ import annotations

import json
import sys
from dataclasses import asdict
from datetime import date, datetime
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from typer.models import OptionInfo

from .errors import LedgerError
from .logging_setup import configure_logging
from .models import MergeResult, ParseResult, ReconciliationResult, TransactionSummary


# ---- Output helpers ----------------------------------------------------------


def _json_default(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, default=_json_default, ensure_ascii=False, indent=2))


def _print_parse_result(result: ParseResult) -> None:
    for tx in result.transactions:
        print(f"{tx.date}\t{tx.type}\t{tx.amount}\t{tx.currency}\t{tx.merchant_raw}")
    print(
        f"# file={result.file_name} source_type={result.source_type} "
        f"total={result.total_rows} valid={result.valid_rows} errors={result.error_rows}",
        file=sys.stderr,
    )


def _summary_line(tx: TransactionSummary) -> str:
    who = tx.p2p_counterparty or tx.merchant_raw
    return f"{tx.id}\t{tx.date.isoformat()}\t{tx.amount}\t{who}"


def _print_reconciliation(result: ReconciliationResult) -> None:
    for m in result.matches:
        ids = ",".join(c.id for c in m.candidates)
        print(
            f"match\t{m.match_type}\t{m.confidence}\t{m.card_transaction.id}\t{ids}\t{m.reason}"
        )
    for w in result.withdrawals:
        ids = ",".join(c.id for c in w.candidates)
        print(f"withdrawal\t{w.match_type}\t{w.confidence}\t{w.withdrawal.id}\t{ids}\t{w.reason}")
    for tx in result.balance_paid:
        print(f"balance_paid\t{_summary_line(tx)}")
    for tx in result.reimbursements:
        print(f"reimbursement\t{_summary_line(tx)}")
    s = result.summary
    print(
        f"# card_p2p={s.total_card_p2p} matched={s.matched_count} "
        f"needs_review={s.needs_review_count} withdrawals={s.withdrawal_count} "
        f"balance_paid={s.balance_paid_count} reimbursements={s.reimbursement_count}",
        file=sys.stderr,
    )


def _report_merge(result: MergeResult) -> int:
    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1
    print(f"ok\t{result.group_id or ''}")
    return 0


def _read_file(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        print(f"Error: File not found: {path}", file=sys.stderr)
    except PermissionError:
        print(f"Error: Permission denied: {path}", file=sys.stderr)
    return None


# ---- Command handlers ----------------------------------------------------------


def cmd_parse(file_path: str, *, mime_type: str | None = None, as_json: bool = False) -> int:
    """Parse a statement or screenshot and print the transactions.

    Writes one line per transaction as ``date\\ttype\\tamount\\tcurrency\\tmerchant``
    (or a JSON document with ``as_json``). Row counts go to stderr.
    """

    from .ingest.engine import parse_file

    path = Path(file_path)
    data = _read_file(path)
    if data is None:
        return 1
    try:
        result = parse_file(path.name, data, mime_type)
    except LedgerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if as_json:
        _print_json(asdict(result))
    else:
        _print_parse_result(result)
    return 0


def cmd_import(
    file_path: str,
    *,
    household_id: str,
    mime_type: str | None = None,
    check_duplicates: bool = True,
    database_url: str | None = None,
) -> int:
    """Parse a file and save its transactions for ``household_id``."""

    from .api import import_file
    from .db.client import session_scope

    path = Path(file_path)
    data = _read_file(path)
    if data is None:
        return 1
    try:
        with session_scope(database_url=database_url) as session:
            outcome = import_file(
                session,
                household_id,
                path.name,
                data,
                mime_type,
                check_duplicates=check_duplicates,
            )
    except LedgerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: import failed: {e}", file=sys.stderr)
        return 1

    if outcome.duplicates is not None:
        for m in outcome.duplicates.matches:
            print(
                f"duplicate\t{m.confidence}\t{m.new_transaction.date}\t"
                f"{m.new_transaction.amount}\t{m.existing.id}\t{m.reason}"
            )
    r = outcome.parse_result
    print(
        f"saved={len(outcome.saved_ids)} duplicates={outcome.skipped_duplicates} "
        f"total={r.total_rows} valid={r.valid_rows} errors={r.error_rows}"
    )
    return 0


def cmd_import_sms(
    file_path: str,
    *,
    household_id: str,
    check_duplicates: bool = True,
    database_url: str | None = None,
) -> int:
    """Import card SMS notifications, one message per blank-line separated block."""

    from .api import import_sms
    from .db.client import session_scope

    path = Path(file_path)
    data = _read_file(path)
    if data is None:
        return 1
    blocks = [b.strip() for b in data.decode("utf-8").split("\n\n") if b.strip()]
    try:
        with session_scope(database_url=database_url) as session:
            outcome = import_sms(
                session, household_id, blocks, check_duplicates=check_duplicates
            )
    except LedgerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: SMS import failed: {e}", file=sys.stderr)
        return 1

    r = outcome.parse_result
    print(
        f"saved={len(outcome.saved_ids)} duplicates={outcome.skipped_duplicates} "
        f"total={r.total_rows} valid={r.valid_rows} errors={r.error_rows}"
    )
    return 0


def cmd_reconcile(
    *,
    household_id: str,
    date_from: date | None = None,
    date_to: date | None = None,
    include_reconciled: bool = False,
    as_json: bool = False,
    database_url: str | None = None,
) -> int:
    """Run P2P reconciliation and print the review queue."""

    from .db.client import session_scope
    from .reconciliation import run_p2p_reconciliation

    try:
        with session_scope(database_url=database_url) as session:
            result = run_p2p_reconciliation(
                session,
                household_id,
                date_from=date_from,
                date_to=date_to,
                include_already_reconciled=include_reconciled,
            )
    except Exception as e:
        print(f"Error: reconciliation failed: {e}", file=sys.stderr)
        return 1

    if as_json:
        _print_json(asdict(result))
    else:
        _print_reconciliation(result)
    return 0


def _run_merge(database_url: str | None, op: Any, *args: Any, **kwargs: Any) -> int:
    from .db.client import session_scope

    try:
        with session_scope(database_url=database_url) as session:
            result = op(session, *args, **kwargs)
    except LedgerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: merge failed: {e}", file=sys.stderr)
        return 1
    return _report_merge(result)


def cmd_merge_p2p(
    *,
    household_id: str,
    card_id: str,
    app_id: str,
    category: str | None = None,
    notes: str | None = None,
    database_url: str | None = None,
) -> int:
    from .persistence import merge_p2p_match

    return _run_merge(
        database_url,
        merge_p2p_match,
        household_id,
        card_id,
        app_id,
        category=category,
        notes=notes,
    )


def cmd_mark_balance_paid(
    *,
    household_id: str,
    tx_id: str,
    category: str | None = None,
    notes: str | None = None,
    database_url: str | None = None,
) -> int:
    from .persistence import mark_as_balance_paid

    return _run_merge(
        database_url, mark_as_balance_paid, household_id, tx_id, category=category, notes=notes
    )


def cmd_merge_withdrawal(
    *,
    household_id: str,
    withdrawal_id: str,
    deposit_id: str,
    database_url: str | None = None,
) -> int:
    from .persistence import merge_withdrawal

    return _run_merge(database_url, merge_withdrawal, household_id, withdrawal_id, deposit_id)


def cmd_apply_reimbursement(
    *,
    household_id: str,
    tx_id: str,
    category: str,
    linked_expense_id: str | None = None,
    notes: str | None = None,
    database_url: str | None = None,
) -> int:
    from .persistence import apply_reimbursement

    return _run_merge(
        database_url,
        apply_reimbursement,
        household_id,
        tx_id,
        category,
        linked_expense_id=linked_expense_id,
        notes=notes,
    )


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Import bank/card statements and wallet screenshots, and reconcile P2P "
        "payments. Loads DATABASE_URL and OPENAI_API_KEY from a local .env."
    ),
)

# Module-level option objects to satisfy ruff B008 (no calls in parameter
# defaults). Typer inspects these when used as default values below.
FILE_ARGUMENT = typer.Argument(..., help="Path to the file", dir_okay=False, file_okay=True)
HOUSEHOLD_OPTION: OptionInfo = typer.Option(
    ...,
    "--household-id",
    envvar="HOUSEHOLD_LEDGER_HOUSEHOLD_ID",
    help="Household scope for every read and write.",
)
DATABASE_URL_OPTION: OptionInfo = typer.Option(
    None, "--database-url", help="Override DATABASE_URL (falls back to env var)."
)
MIME_TYPE_OPTION: OptionInfo = typer.Option(
    None, "--mime-type", help="MIME type of the file; inferred from the extension when omitted."
)
JSON_OPTION: OptionInfo = typer.Option(False, "--json", help="Print JSON instead of TSV.")
DATE_FROM_OPTION: OptionInfo = typer.Option(
    None, "--date-from", formats=["%Y-%m-%d"], help="Earliest date (inclusive)."
)
DATE_TO_OPTION: OptionInfo = typer.Option(
    None, "--date-to", formats=["%Y-%m-%d"], help="Latest date (inclusive)."
)
CATEGORY_OPTION: OptionInfo = typer.Option(None, "--category", help="Category to assign.")
NOTES_OPTION: OptionInfo = typer.Option(None, "--notes", help="Notes to attach.")


@app.command("parse")
def parse_cmd(
    file_path: Annotated[Path, FILE_ARGUMENT],
    *,
    mime_type: str | None = MIME_TYPE_OPTION,
    as_json: bool = JSON_OPTION,
) -> None:
    """Parse a file and print the normalized transactions (nothing is saved)."""

    raise typer.Exit(cmd_parse(str(file_path), mime_type=mime_type, as_json=as_json))


@app.command("import")
def import_cmd(
    file_path: Annotated[Path, FILE_ARGUMENT],
    *,
    household_id: str = HOUSEHOLD_OPTION,
    mime_type: str | None = MIME_TYPE_OPTION,
    check_duplicates: bool = typer.Option(
        True,
        "--check-duplicates/--no-check-duplicates",
        help="Hold back candidates that look like stored transactions.",
    ),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Parse a file and save its transactions."""

    raise typer.Exit(
        cmd_import(
            str(file_path),
            household_id=household_id,
            mime_type=mime_type,
            check_duplicates=check_duplicates,
            database_url=database_url,
        )
    )


@app.command("import-sms")
def import_sms_cmd(
    file_path: Annotated[Path, FILE_ARGUMENT],
    *,
    household_id: str = HOUSEHOLD_OPTION,
    check_duplicates: bool = typer.Option(
        True,
        "--check-duplicates/--no-check-duplicates",
        help="Hold back charges that look like stored transactions.",
    ),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Import card SMS notifications from a text file (blank line between messages)."""

    raise typer.Exit(
        cmd_import_sms(
            str(file_path),
            household_id=household_id,
            check_duplicates=check_duplicates,
            database_url=database_url,
        )
    )


@app.command("reconcile")
def reconcile_cmd(
    *,
    household_id: str = HOUSEHOLD_OPTION,
    date_from: datetime | None = DATE_FROM_OPTION,
    date_to: datetime | None = DATE_TO_OPTION,
    include_reconciled: bool = typer.Option(
        False, "--include-reconciled", help="Include rows that were already reconciled."
    ),
    as_json: bool = JSON_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Compute the P2P review queue (nothing is written)."""

    raise typer.Exit(
        cmd_reconcile(
            household_id=household_id,
            date_from=date_from.date() if date_from else None,
            date_to=date_to.date() if date_to else None,
            include_reconciled=include_reconciled,
            as_json=as_json,
            database_url=database_url,
        )
    )


@app.command("merge-p2p")
def merge_p2p_cmd(
    *,
    household_id: str = HOUSEHOLD_OPTION,
    card_id: str = typer.Option(..., "--card-id", help="Card statement transaction id."),
    app_id: str = typer.Option(..., "--app-id", help="Wallet-app transaction id."),
    category: str | None = CATEGORY_OPTION,
    notes: str | None = NOTES_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Merge a card P2P line with its wallet-app transaction."""

    raise typer.Exit(
        cmd_merge_p2p(
            household_id=household_id,
            card_id=card_id,
            app_id=app_id,
            category=category,
            notes=notes,
            database_url=database_url,
        )
    )


@app.command("mark-balance-paid")
def mark_balance_paid_cmd(
    *,
    household_id: str = HOUSEHOLD_OPTION,
    tx_id: str = typer.Option(..., "--tx-id", help="Wallet-app transaction id."),
    category: str | None = CATEGORY_OPTION,
    notes: str | None = NOTES_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Confirm a wallet payment was made from the app balance."""

    raise typer.Exit(
        cmd_mark_balance_paid(
            household_id=household_id,
            tx_id=tx_id,
            category=category,
            notes=notes,
            database_url=database_url,
        )
    )


@app.command("merge-withdrawal")
def merge_withdrawal_cmd(
    *,
    household_id: str = HOUSEHOLD_OPTION,
    withdrawal_id: str = typer.Option(..., "--withdrawal-id", help="App withdrawal id."),
    deposit_id: str = typer.Option(..., "--deposit-id", help="Bank deposit id."),
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Link an app withdrawal with the bank deposit it produced."""

    raise typer.Exit(
        cmd_merge_withdrawal(
            household_id=household_id,
            withdrawal_id=withdrawal_id,
            deposit_id=deposit_id,
            database_url=database_url,
        )
    )


@app.command("apply-reimbursement")
def apply_reimbursement_cmd(
    *,
    household_id: str = HOUSEHOLD_OPTION,
    tx_id: str = typer.Option(..., "--tx-id", help="Incoming transaction id."),
    category: str = typer.Option(..., "--category", help="Expense category to offset."),
    linked_expense_id: str | None = typer.Option(
        None, "--linked-expense-id", help="Expense this reimbursement offsets."
    ),
    notes: str | None = NOTES_OPTION,
    database_url: str | None = DATABASE_URL_OPTION,
) -> None:
    """Reclassify an incoming payment as a negative expense."""

    raise typer.Exit(
        cmd_apply_reimbursement(
            household_id=household_id,
            tx_id=tx_id,
            category=category,
            linked_expense_id=linked_expense_id,
            notes=notes,
            database_url=database_url,
        )
    )


@app.callback(invoke_without_command=True)
def _root(ctx: typer.Context) -> None:
    """Root command.

    Loads ``.env`` from the current working directory (without overriding any
    already-set environment variables) and configures logging.
    """

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    # Central logging setup so child loggers inherit configuration
    configure_logging()

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


if __name__ == "__main__":  # pragma: no cover
    app()

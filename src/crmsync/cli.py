from __future__ import annotations

import json
import subprocess
import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import typer
from rich import print

from crmsync.config import Settings
from crmsync.core.db import CrmRepository
from crmsync.core.logging import configure_logging, get_logger
from crmsync.core.records import NOTHING_TO_DO_MESSAGE, SyncResult
from crmsync.exceptions import AuthorizationError
from crmsync.services import (
    SyncService,
    authenticate_caller,
    export_summaries,
    open_session,
    run_doctor_checks,
)
from crmsync.sources.email_gmail import GmailConnectFlow

app = typer.Typer(no_args_is_help=True, help="crmsync: inbound email sync for the CRM")

SESSION_TOKEN_OPTION = typer.Option(
    None,
    "--session-token",
    envvar="CRMSYNC_SESSION_TOKEN",
    help="Session token of the calling user",
)


def _load_settings(base_dir: Path | None = None) -> Settings:
    settings = Settings.load(base_dir=base_dir)
    settings.ensure_directories()
    return settings


def _reject(exc: AuthorizationError, as_json: bool = False) -> None:
    if as_json:
        typer.echo(json.dumps({"error": "Unauthorized", "detail": str(exc)}))
    else:
        print(f"[red]{exc}[/red]")
    raise typer.Exit(1)


def _print_result(result: SyncResult, correlation_id: str) -> None:
    if not result.accounts and not result.errors and not result.timed_out:
        print(f"[green]{NOTHING_TO_DO_MESSAGE}[/green]")
        return

    colour = "green" if result.errors == 0 else "yellow"
    print(f"[{colour}]Sync finished[/{colour}]. correlation_id={correlation_id}")
    if result.timed_out:
        print("[yellow]Deadline reached, counts are partial[/yellow]")
    print(f"- total_messages: {result.total_messages}")
    print(f"- new_summaries: {result.new_summaries}")
    print(f"- errors: {result.errors}")
    for account in result.accounts:
        print(
            f"  * {account.email}: fetched={account.messages_fetched} "
            f"new={account.new_summaries} errors={account.errors}"
        )


@app.command("init")
def init_command(
    base_dir: Path | None = typer.Option(None, help="Project root (defaults to the current directory)"),
) -> None:
    settings = _load_settings(base_dir=base_dir)
    with CrmRepository(settings.db_path) as repository:
        executed = repository.migrate()
    print(f"[green]Initialized[/green]. DB: {settings.db_path}")
    print(f"Migrations: {', '.join(executed) if executed else 'none pending'}")


@app.command("session")
def session_command(
    user: str = typer.Option(..., help="User id to open a session for"),
    org: str | None = typer.Option(None, help="Active organization id"),
) -> None:
    settings = _load_settings()
    with CrmRepository(settings.db_path) as repository:
        repository.migrate()
        token = open_session(
            repository,
            user_id=user,
            org_id=org,
            ttl=timedelta(hours=settings.session_ttl_hours),
        )
    print(f"[green]Session opened[/green] for {user} ({settings.session_ttl_hours}h)")
    typer.echo(token)


@app.command("connect")
def connect_command(session_token: str | None = SESSION_TOKEN_OPTION) -> None:
    settings = _load_settings()
    with CrmRepository(settings.db_path) as repository:
        repository.migrate()
        try:
            context = authenticate_caller(repository, session_token)
        except AuthorizationError as exc:
            _reject(exc)

        try:
            mailbox = GmailConnectFlow(settings.google_client_secret_path).authorize()
        except Exception as exc:  # noqa: BLE001
            print(f"[red]Gmail OAuth error[/red]: {exc.__class__.__name__}: {exc}")
            raise typer.Exit(1)

        account_id = repository.upsert_email_account(
            user_id=context.user_id,
            org_id=context.org_id,
            provider="gmail",
            email_address=mailbox.email_address,
            access_token=mailbox.access_token,
            refresh_token=mailbox.refresh_token,
            token_expires_at=mailbox.token_expires_at,
            sync_enabled=True,
        )
    print(f"[green]Connected[/green] {mailbox.email_address} (account id {account_id})")


@app.command("sync")
def sync_command(
    session_token: str | None = SESSION_TOKEN_OPTION,
    deadline_seconds: float | None = typer.Option(
        None,
        min=1,
        help="Stop starting new work after this many seconds and report partial counts",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the SyncResult as JSON"),
) -> None:
    correlation_id = uuid.uuid4().hex
    settings = _load_settings()
    configure_logging(settings.logs_dir, correlation_id=correlation_id, console=not as_json)
    logger = get_logger("crmsync.sync", correlation_id)

    with CrmRepository(settings.db_path) as repository:
        repository.migrate()
        try:
            context = authenticate_caller(repository, session_token)
        except AuthorizationError as exc:
            logger.warning("Sync rejected: %s", exc)
            _reject(exc, as_json=as_json)

        deadline = None
        if deadline_seconds is not None:
            deadline = datetime.now(timezone.utc) + timedelta(seconds=deadline_seconds)

        service = SyncService(settings=settings, repository=repository, logger=logger)
        result = service.sync(context, correlation_id=correlation_id, deadline=deadline)

    if as_json:
        typer.echo(json.dumps(result.to_dict(), ensure_ascii=False))
    else:
        _print_result(result, correlation_id)


@app.command("export")
def export_command(
    session_token: str | None = SESSION_TOKEN_OPTION,
    format: str = typer.Option("xlsx,csv", help="Comma separated formats: xlsx,csv"),
    out: Path | None = typer.Option(None, help="Export directory"),
) -> None:
    formats = [item.strip().lower() for item in format.split(",") if item.strip()]
    supported = {"xlsx", "csv"}
    unknown = [item for item in formats if item not in supported]
    if unknown:
        raise typer.BadParameter(f"Unsupported formats: {unknown}")

    settings = _load_settings()
    out_dir = (out or settings.exports_dir).resolve()

    with CrmRepository(settings.db_path) as repository:
        repository.migrate()
        try:
            context = authenticate_caller(repository, session_token)
        except AuthorizationError as exc:
            _reject(exc)
        files = export_summaries(
            repository=repository,
            user_id=context.user_id,
            formats=formats,
            out_dir=out_dir,
        )

    print("[green]Export finished[/green]")
    for file_path in files:
        print(f"- {file_path}")


@app.command("doctor")
def doctor_command() -> None:
    settings = _load_settings()
    checks = run_doctor_checks(settings)

    print("Doctor results:")
    for check in checks:
        status = check["status"].upper()
        print(f"- [{status}] {check['check']}: {check['detail']}")


@app.command("tests")
def tests_command() -> None:
    result = subprocess.run([sys.executable, "-m", "pytest", "-q"], check=False)
    if result.returncode != 0:
        raise typer.Exit(result.returncode)
    print("[green]All tests passed[/green]")


if __name__ == "__main__":
    app()

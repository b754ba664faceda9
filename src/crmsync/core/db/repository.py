from __future__ import annotations

import json
import secrets
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from crmsync.core.records import EmailAccount, EmailSummary, SyncContext

from .migrations import apply_migrations, connect_db, pending_migrations

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CrmRepository:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.connection = connect_db(db_path)

    def close(self) -> None:
        self.connection.close()

    def __enter__(self) -> CrmRepository:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.close()

    def migrate(self) -> list[str]:
        return apply_migrations(self.connection, MIGRATIONS_DIR)

    def pending_migrations(self) -> list[str]:
        return [path.name for path in pending_migrations(self.connection, MIGRATIONS_DIR)]

    @staticmethod
    def _to_json(payload: dict[str, Any] | list[Any] | None) -> str | None:
        if payload is None:
            return None
        return json.dumps(payload, ensure_ascii=False)

    @staticmethod
    def _from_json_list(value: str | None) -> list[Any]:
        if not value:
            return []
        loaded = json.loads(value)
        return loaded if isinstance(loaded, list) else []

    def _fetch_id(self, query: str, params: tuple[Any, ...]) -> int:
        row = self.connection.execute(query, params).fetchone()
        if row is None:
            raise RuntimeError(f"No id found for query: {query}")
        return int(row["id"])

    # sessions / caller resolution

    def issue_session(self, user_id: str, expires_at: datetime) -> str:
        token = secrets.token_urlsafe(32)
        with self.connection:
            self.connection.execute(
                "INSERT INTO sessions (token, user_id, expires_at) VALUES (?, ?, ?)",
                (token, user_id, to_iso(expires_at)),
            )
        return token

    def set_active_org(self, user_id: str, org_id: str | None) -> None:
        with self.connection:
            self.connection.execute(
                """
                INSERT INTO profiles (user_id, active_org_id)
                VALUES (?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    active_org_id = excluded.active_org_id,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (user_id, org_id),
            )

    def resolve_session(self, token: str, now: datetime) -> SyncContext | None:
        row = self.connection.execute(
            """
            SELECT s.user_id, s.expires_at, p.active_org_id
            FROM sessions s
            LEFT JOIN profiles p ON p.user_id = s.user_id
            WHERE s.token = ?
            """,
            (token,),
        ).fetchone()
        if row is None:
            return None
        expires_at = from_iso(row["expires_at"])
        if expires_at is None or expires_at <= now:
            return None
        return SyncContext(user_id=row["user_id"], org_id=row["active_org_id"])

    # email accounts (credential store)

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> EmailAccount:
        return EmailAccount(
            id=int(row["id"]),
            user_id=row["user_id"],
            org_id=row["org_id"],
            provider=row["provider"],
            email_address=row["email_address"],
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            token_expires_at=from_iso(row["token_expires_at"]),
            sync_enabled=bool(row["sync_enabled"]),
            last_synced_at=from_iso(row["last_synced_at"]),
        )

    def upsert_email_account(
        self,
        user_id: str,
        org_id: str | None,
        provider: str,
        email_address: str,
        access_token: str,
        refresh_token: str | None,
        token_expires_at: datetime,
        sync_enabled: bool = True,
    ) -> int:
        with self.connection:
            self.connection.execute(
                """
                INSERT INTO email_accounts (
                    user_id, org_id, provider, email_address, access_token,
                    refresh_token, token_expires_at, sync_enabled
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, email_address) DO UPDATE SET
                    org_id = excluded.org_id,
                    provider = excluded.provider,
                    access_token = excluded.access_token,
                    refresh_token = COALESCE(excluded.refresh_token, email_accounts.refresh_token),
                    token_expires_at = excluded.token_expires_at,
                    sync_enabled = excluded.sync_enabled,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (
                    user_id,
                    org_id,
                    provider,
                    email_address,
                    access_token,
                    refresh_token,
                    to_iso(token_expires_at),
                    int(sync_enabled),
                ),
            )
        return self._fetch_id(
            "SELECT id FROM email_accounts WHERE user_id = ? AND email_address = ?",
            (user_id, email_address),
        )

    def get_email_account(self, account_id: int) -> EmailAccount | None:
        row = self.connection.execute(
            "SELECT * FROM email_accounts WHERE id = ?",
            (account_id,),
        ).fetchone()
        return self._row_to_account(row) if row is not None else None

    def list_sync_enabled_accounts(self, user_id: str) -> list[EmailAccount]:
        rows = self.connection.execute(
            """
            SELECT * FROM email_accounts
            WHERE user_id = ? AND sync_enabled = 1
            ORDER BY id
            """,
            (user_id,),
        ).fetchall()
        return [self._row_to_account(row) for row in rows]

    def update_account_tokens(
        self,
        account_id: int,
        access_token: str,
        token_expires_at: datetime,
        refresh_token: str | None = None,
    ) -> None:
        with self.connection:
            self.connection.execute(
                """
                UPDATE email_accounts
                SET access_token = ?,
                    token_expires_at = ?,
                    refresh_token = COALESCE(?, refresh_token),
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (access_token, to_iso(token_expires_at), refresh_token, account_id),
            )

    def mark_account_synced(self, account_id: int, synced_at: datetime) -> None:
        with self.connection:
            self.connection.execute(
                """
                UPDATE email_accounts
                SET last_synced_at = ?, updated_at = CURRENT_TIMESTAMP
                WHERE id = ?
                """,
                (to_iso(synced_at), account_id),
            )

    # entity lookups; org_id uses IS so that a NULL org matches NULL rows

    def find_contact_by_email(self, context: SyncContext, email: str) -> sqlite3.Row | None:
        return self.connection.execute(
            """
            SELECT id, first_name, last_name, email FROM contacts
            WHERE user_id = ? AND org_id IS ? AND email = ?
            ORDER BY id
            LIMIT 1
            """,
            (context.user_id, context.org_id, email),
        ).fetchone()

    def find_latest_deal(self, context: SyncContext) -> sqlite3.Row | None:
        return self.connection.execute(
            """
            SELECT id, title FROM deals
            WHERE user_id = ? AND org_id IS ?
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """,
            (context.user_id, context.org_id),
        ).fetchone()

    def find_latest_investor(self, context: SyncContext) -> sqlite3.Row | None:
        return self.connection.execute(
            """
            SELECT id, name FROM investors
            WHERE user_id = ? AND org_id IS ?
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """,
            (context.user_id, context.org_id),
        ).fetchone()

    # email summaries

    def existing_summary_message_ids(self, user_id: str, message_ids: Iterable[str]) -> set[str]:
        candidates = list(dict.fromkeys(message_ids))
        if not candidates:
            return set()
        placeholders = ", ".join("?" for _ in candidates)
        rows = self.connection.execute(
            f"""
            SELECT provider_message_id FROM email_summaries
            WHERE user_id = ? AND provider_message_id IN ({placeholders})
            """,
            (user_id, *candidates),
        ).fetchall()
        return {row["provider_message_id"] for row in rows}

    def insert_email_summary(self, summary: EmailSummary) -> int:
        with self.connection:
            cursor = self.connection.execute(
                """
                INSERT INTO email_summaries (
                    user_id, org_id, email_account_id, provider_message_id, thread_id,
                    subject, from_address, to_addresses, date, snippet,
                    ai_summary, ai_sentiment, ai_action_items, ai_suggested_stage,
                    contact_id, deal_id, investor_id, is_read
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    summary.user_id,
                    summary.org_id,
                    summary.email_account_id,
                    summary.provider_message_id,
                    summary.thread_id,
                    summary.subject,
                    summary.from_address,
                    self._to_json(summary.to_addresses),
                    to_iso(summary.date),
                    summary.snippet,
                    summary.ai_summary,
                    summary.ai_sentiment,
                    self._to_json(summary.ai_action_items),
                    summary.ai_suggested_stage,
                    summary.contact_id,
                    summary.deal_id,
                    summary.investor_id,
                    int(summary.is_read),
                ),
            )
        return int(cursor.lastrowid)

    def _row_to_summary(self, row: sqlite3.Row) -> EmailSummary:
        return EmailSummary(
            id=int(row["id"]),
            user_id=row["user_id"],
            org_id=row["org_id"],
            email_account_id=int(row["email_account_id"]),
            provider_message_id=row["provider_message_id"],
            thread_id=row["thread_id"],
            subject=row["subject"],
            from_address=row["from_address"],
            to_addresses=self._from_json_list(row["to_addresses"]),
            date=from_iso(row["date"]),
            snippet=row["snippet"],
            ai_summary=row["ai_summary"] or "",
            ai_sentiment=row["ai_sentiment"],
            ai_action_items=self._from_json_list(row["ai_action_items"]),
            ai_suggested_stage=row["ai_suggested_stage"],
            contact_id=row["contact_id"],
            deal_id=row["deal_id"],
            investor_id=row["investor_id"],
            is_read=bool(row["is_read"]),
        )

    def list_email_summaries(self, user_id: str) -> list[EmailSummary]:
        rows = self.connection.execute(
            "SELECT * FROM email_summaries WHERE user_id = ? ORDER BY id",
            (user_id,),
        ).fetchall()
        return [self._row_to_summary(row) for row in rows]

    def fetch_summary_export_rows(self, user_id: str) -> list[dict[str, Any]]:
        rows = self.connection.execute(
            """
            SELECT
                es.id AS summary_id,
                ea.email_address AS account_email,
                es.provider_message_id,
                es.thread_id,
                es.date,
                es.from_address,
                es.to_addresses,
                es.subject,
                es.snippet,
                es.ai_summary,
                es.ai_sentiment,
                es.ai_action_items,
                es.ai_suggested_stage,
                es.contact_id,
                trim(coalesce(c.first_name, '') || ' ' || coalesce(c.last_name, '')) AS contact_name,
                es.deal_id,
                d.title AS deal_title,
                es.investor_id,
                i.name AS investor_name,
                es.is_read
            FROM email_summaries es
            JOIN email_accounts ea ON ea.id = es.email_account_id
            LEFT JOIN contacts c ON c.id = es.contact_id
            LEFT JOIN deals d ON d.id = es.deal_id
            LEFT JOIN investors i ON i.id = es.investor_id
            WHERE es.user_id = ?
            ORDER BY COALESCE(es.date, es.created_at) DESC, es.id DESC
            """,
            (user_id,),
        ).fetchall()
        return [dict(row) for row in rows]

    # run audit

    def start_sync_run(self, correlation_id: str, user_id: str, started_at: str) -> int:
        with self.connection:
            self.connection.execute(
                """
                INSERT INTO sync_runs (correlation_id, user_id, started_at, status)
                VALUES (?, ?, ?, 'running')
                ON CONFLICT(correlation_id) DO UPDATE SET
                    user_id = excluded.user_id,
                    started_at = excluded.started_at,
                    status = 'running',
                    finished_at = NULL,
                    stats_json = NULL,
                    error_text = NULL
                """,
                (correlation_id, user_id, started_at),
            )
        return self._fetch_id(
            "SELECT id FROM sync_runs WHERE correlation_id = ?",
            (correlation_id,),
        )

    def finish_sync_run(
        self,
        correlation_id: str,
        finished_at: str,
        status: str,
        stats: dict[str, Any] | None,
        error_text: str | None,
    ) -> None:
        with self.connection:
            self.connection.execute(
                """
                UPDATE sync_runs
                SET finished_at = ?, status = ?, stats_json = ?, error_text = ?
                WHERE correlation_id = ?
                """,
                (finished_at, status, self._to_json(stats), error_text, correlation_id),
            )

    def fetch_counts(self) -> dict[str, int]:
        tables = [
            "email_accounts",
            "email_summaries",
            "contacts",
            "deals",
            "investors",
            "sync_runs",
        ]
        counts: dict[str, int] = {}
        for table in tables:
            row = self.connection.execute(f"SELECT COUNT(*) AS cnt FROM {table}").fetchone()
            counts[table] = int(row["cnt"])
        return counts

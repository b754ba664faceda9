from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from crmsync.config import Settings
from crmsync.core.db import CrmRepository
from crmsync.core.records import EmailAccount, SyncContext
from crmsync.exceptions import CredentialRefreshError, SummarizationServiceError
from crmsync.summarize import StructuredSummary

NOW = datetime(2026, 2, 10, 12, 0, tzinfo=timezone.utc)

ENV_VARS = [
    "CRMSYNC_HOME",
    "CRMSYNC_DATA_DIR",
    "CRMSYNC_DB_PATH",
    "CRMSYNC_LOG_DIR",
    "CRMSYNC_EXPORT_DIR",
    "CRMSYNC_SESSION_TOKEN",
    "CRMSYNC_SYNC_BATCH_SIZE",
    "CRMSYNC_TOKEN_REFRESH_MARGIN_SEC",
    "CRMSYNC_SUMMARIZER_URL",
    "CRMSYNC_SUMMARIZER_TIMEOUT_SEC",
    "CRMSYNC_SUMMARIZER_MAX_TOKENS",
    "CRMSYNC_SESSION_TTL_HOURS",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_TOKEN_URI",
    "GOOGLE_OAUTH_CLIENT_SECRET_PATH",
    "NOVITA_API_KEY",
    "NOVITA_MODEL",
    "OPENAI_API_KEY",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("crmsync.config.load_dotenv", lambda override=False: False)


@pytest.fixture()
def repository(tmp_path: Path):
    db_path = tmp_path / "crmsync.sqlite3"
    repo = CrmRepository(db_path)
    repo.migrate()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    root = tmp_path / "project"
    root.mkdir(parents=True, exist_ok=True)
    s = Settings.load(base_dir=root)
    s.ensure_directories()
    return s


@pytest.fixture()
def test_logger() -> logging.Logger:
    logger = logging.getLogger("crmsync-test")
    logger.handlers.clear()
    logger.addHandler(logging.NullHandler())
    logger.setLevel(logging.INFO)
    return logger


@pytest.fixture()
def context() -> SyncContext:
    return SyncContext(user_id="user-1", org_id="org-1")


def make_detail(
    message_id: str,
    subject: str = "Hello",
    from_header: str = "Jane Doe <jane@example.com>",
    to: str = "me@example.com",
    date: str = "Mon, 09 Feb 2026 10:00:00 +0000",
    snippet: str = "Quick question about next week",
) -> dict[str, Any]:
    return {
        "id": message_id,
        "threadId": f"thread-{message_id}",
        "snippet": snippet,
        "internalDate": "1770631200000",
        "payload": {
            "headers": [
                {"name": "Subject", "value": subject},
                {"name": "From", "value": from_header},
                {"name": "To", "value": to},
                {"name": "Date", "value": date},
            ]
        },
    }


@pytest.fixture()
def gmail_detail():
    return make_detail


class _FakeRequest:
    def __init__(self, result: Any):
        self._result = result

    def execute(self) -> Any:
        if isinstance(self._result, Exception):
            raise self._result
        return self._result


class FakeMessagesResource:
    def __init__(self, gmail: FakeGmail, access_token: str):
        self.gmail = gmail
        self.access_token = access_token

    def list(self, userId: str, maxResults: int) -> _FakeRequest:  # noqa: N803
        self.gmail.list_calls.append((self.access_token, maxResults))
        if self.access_token in self.gmail.list_errors:
            return _FakeRequest(self.gmail.list_errors[self.access_token])
        ids = list(self.gmail.mailboxes.get(self.access_token, {}))[:maxResults]
        if not ids:
            return _FakeRequest({"resultSizeEstimate": 0})
        return _FakeRequest({"messages": [{"id": message_id} for message_id in ids]})

    def get(self, userId: str, id: str, format: str, metadataHeaders: list[str]) -> _FakeRequest:  # noqa: A002,N803
        self.gmail.get_calls.append((self.access_token, id, format, tuple(metadataHeaders)))
        return _FakeRequest(self.gmail.mailboxes[self.access_token][id])


class FakeGmailService:
    def __init__(self, messages_resource: FakeMessagesResource):
        self._messages = messages_resource

    def users(self) -> FakeGmailService:
        return self

    def messages(self) -> FakeMessagesResource:
        return self._messages


class FakeGmail:
    """Stand-in for the Gmail API, one mailbox per access token."""

    def __init__(self):
        self.mailboxes: dict[str, OrderedDict[str, Any]] = {}
        self.list_errors: dict[str, Exception] = {}
        self.list_calls: list[tuple[str, int]] = []
        self.get_calls: list[tuple[str, str, str, tuple[str, ...]]] = []

    def add_message(self, access_token: str, detail: dict[str, Any] | Exception, message_id: str | None = None) -> None:
        mailbox = self.mailboxes.setdefault(access_token, OrderedDict())
        key = message_id or detail["id"]
        mailbox[key] = detail

    def service_factory(self, access_token: str) -> FakeGmailService:
        return FakeGmailService(FakeMessagesResource(self, access_token))


@pytest.fixture()
def fake_gmail() -> FakeGmail:
    return FakeGmail()


class FakeSummarizer:
    def __init__(self):
        self.calls: list[dict[str, Any]] = []
        self.failing_subjects: set[str] = set()

    def summarize(
        self,
        subject: str,
        preview: str,
        sender: str,
        contact_name: str | None = None,
        deal_title: str | None = None,
    ) -> StructuredSummary:
        self.calls.append(
            {
                "subject": subject,
                "preview": preview,
                "sender": sender,
                "contact_name": contact_name,
                "deal_title": deal_title,
            }
        )
        if subject in self.failing_subjects:
            raise SummarizationServiceError(f"service unavailable for {subject!r}")
        return StructuredSummary(
            summary=f"Summary of {subject}",
            sentiment="positive",
            action_items=("Reply by Friday",),
            suggested_stage="qualified",
        )


@pytest.fixture()
def fake_summarizer() -> FakeSummarizer:
    return FakeSummarizer()


class FakeTokenManager:
    def __init__(self):
        self.failing_accounts: set[str] = set()
        self.calls: list[str] = []

    def ensure_access_token(self, account: EmailAccount) -> str:
        self.calls.append(account.email_address)
        if account.email_address in self.failing_accounts:
            raise CredentialRefreshError(account.email_address, "invalid_grant")
        return account.access_token


@pytest.fixture()
def fake_token_manager() -> FakeTokenManager:
    return FakeTokenManager()


class Seeder:
    def __init__(self, repository: CrmRepository):
        self.repository = repository

    def account(
        self,
        email: str,
        access_token: str,
        user_id: str = "user-1",
        org_id: str | None = "org-1",
        expires_at: datetime | None = None,
        refresh_token: str | None = "refresh-token",
        sync_enabled: bool = True,
    ) -> int:
        return self.repository.upsert_email_account(
            user_id=user_id,
            org_id=org_id,
            provider="gmail",
            email_address=email,
            access_token=access_token,
            refresh_token=refresh_token,
            token_expires_at=expires_at or NOW + timedelta(hours=1),
            sync_enabled=sync_enabled,
        )

    def contact(
        self,
        email: str,
        first_name: str = "Jane",
        last_name: str = "Doe",
        user_id: str = "user-1",
        org_id: str | None = "org-1",
    ) -> int:
        with self.repository.connection:
            cursor = self.repository.connection.execute(
                "INSERT INTO contacts (user_id, org_id, first_name, last_name, email) VALUES (?, ?, ?, ?, ?)",
                (user_id, org_id, first_name, last_name, email),
            )
        return int(cursor.lastrowid)

    def deal(
        self,
        title: str,
        created_at: str = "2026-01-01 00:00:00",
        user_id: str = "user-1",
        org_id: str | None = "org-1",
    ) -> int:
        with self.repository.connection:
            cursor = self.repository.connection.execute(
                "INSERT INTO deals (user_id, org_id, title, created_at) VALUES (?, ?, ?, ?)",
                (user_id, org_id, title, created_at),
            )
        return int(cursor.lastrowid)

    def investor(
        self,
        name: str,
        created_at: str = "2026-01-01 00:00:00",
        user_id: str = "user-1",
        org_id: str | None = "org-1",
    ) -> int:
        with self.repository.connection:
            cursor = self.repository.connection.execute(
                "INSERT INTO investors (user_id, org_id, name, created_at) VALUES (?, ?, ?, ?)",
                (user_id, org_id, name, created_at),
            )
        return int(cursor.lastrowid)


@pytest.fixture()
def seed(repository: CrmRepository) -> Seeder:
    return Seeder(repository)


@pytest.fixture()
def now() -> datetime:
    return NOW

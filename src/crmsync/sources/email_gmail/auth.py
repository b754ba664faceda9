from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from crmsync.config import DEFAULT_GOOGLE_TOKEN_URI
from crmsync.core.db import CrmRepository
from crmsync.core.records import EmailAccount
from crmsync.exceptions import CredentialRefreshError

SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.metadata",
]
REFRESH_MARGIN = timedelta(minutes=5)
DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenLifecycleManager:
    def __init__(
        self,
        repository: CrmRepository,
        client_id: str | None,
        client_secret: str | None,
        token_uri: str = DEFAULT_GOOGLE_TOKEN_URI,
        refresh_margin: timedelta = REFRESH_MARGIN,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_uri = token_uri
        self.refresh_margin = refresh_margin
        self.clock = clock

    def needs_refresh(self, account: EmailAccount) -> bool:
        if not account.access_token or account.token_expires_at is None:
            return True
        return account.token_expires_at <= self.clock() + self.refresh_margin

    def ensure_access_token(self, account: EmailAccount) -> str:
        """Valid access token for the rest of the run.

        Refreshes at most once. On failure raises CredentialRefreshError and
        leaves the stored token and expiry untouched.
        """
        if not self.needs_refresh(account):
            return account.access_token

        if not account.refresh_token:
            raise CredentialRefreshError(account.email_address, "no refresh token stored")
        if not self.client_id or not self.client_secret:
            raise CredentialRefreshError(account.email_address, "OAuth client credentials are not configured")

        credentials = Credentials(
            token=None,
            refresh_token=account.refresh_token,
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
        )
        try:
            credentials.refresh(Request())
        except GoogleAuthError as exc:
            raise CredentialRefreshError(account.email_address, str(exc)) from exc

        if not credentials.token:
            raise CredentialRefreshError(account.email_address, "token endpoint returned no access token")

        if credentials.expiry is not None:
            # google-auth reports expiry as naive UTC
            expires_at = credentials.expiry.replace(tzinfo=timezone.utc)
        else:
            expires_at = self.clock() + DEFAULT_TOKEN_LIFETIME

        rotated_refresh_token = None
        if credentials.refresh_token and credentials.refresh_token != account.refresh_token:
            rotated_refresh_token = credentials.refresh_token

        self.repository.update_account_tokens(
            account_id=account.id,
            access_token=credentials.token,
            token_expires_at=expires_at,
            refresh_token=rotated_refresh_token,
        )
        account.access_token = credentials.token
        account.token_expires_at = expires_at
        if rotated_refresh_token:
            account.refresh_token = rotated_refresh_token

        logger.info("Access token refreshed for %s, expires at %s", account.email_address, expires_at.isoformat())
        return credentials.token


@dataclass(slots=True)
class ConnectedMailbox:
    email_address: str
    access_token: str
    refresh_token: str | None
    token_expires_at: datetime


class GmailConnectFlow:
    """Interactive OAuth consent for connecting a new mailbox."""

    def __init__(self, client_secret_path: Path):
        self.client_secret_path = client_secret_path

    def _load_client_config(self) -> dict:
        if not self.client_secret_path.exists():
            raise FileNotFoundError(f"OAuth client secret not found: {self.client_secret_path}")
        try:
            with self.client_secret_path.open("r", encoding="utf-8-sig") as fh:
                return json.load(fh)
        except json.JSONDecodeError as exc:
            raise ValueError("Invalid OAuth client secret JSON. Download it again from Google Cloud Console.") from exc

    def authorize(self) -> ConnectedMailbox:
        from google_auth_oauthlib.flow import InstalledAppFlow
        from googleapiclient.discovery import build

        flow = InstalledAppFlow.from_client_config(self._load_client_config(), SCOPES)
        creds = flow.run_local_server(port=0, access_type="offline", prompt="consent")

        service = build("gmail", "v1", credentials=creds, cache_discovery=False)
        profile = service.users().getProfile(userId="me").execute()

        expires_at = (
            creds.expiry.replace(tzinfo=timezone.utc)
            if creds.expiry is not None
            else _utcnow() + DEFAULT_TOKEN_LIFETIME
        )
        return ConnectedMailbox(
            email_address=profile["emailAddress"],
            access_token=creds.token,
            refresh_token=creds.refresh_token,
            token_expires_at=expires_at,
        )

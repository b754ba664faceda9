from __future__ import annotations

from datetime import datetime, timedelta, timezone

from crmsync.core.db import CrmRepository
from crmsync.core.records import SyncContext
from crmsync.exceptions import AuthorizationError


def authenticate_caller(
    repository: CrmRepository,
    session_token: str | None,
    now: datetime | None = None,
) -> SyncContext:
    if not session_token:
        raise AuthorizationError("Unauthorized: no session token supplied")
    context = repository.resolve_session(session_token, now or datetime.now(timezone.utc))
    if context is None:
        raise AuthorizationError("Unauthorized: session is unknown or expired")
    return context


def open_session(
    repository: CrmRepository,
    user_id: str,
    org_id: str | None,
    ttl: timedelta,
    now: datetime | None = None,
) -> str:
    if org_id is not None:
        repository.set_active_org(user_id, org_id)
    expires_at = (now or datetime.now(timezone.utc)) + ttl
    return repository.issue_session(user_id, expires_at)

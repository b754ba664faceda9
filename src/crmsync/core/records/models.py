from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

SENTIMENTS = ("positive", "neutral", "negative", "urgent")
PIPELINE_STAGES = ("lead", "qualified", "proposal", "negotiation", "closed_won", "closed_lost")


@dataclass(frozen=True, slots=True)
class SyncContext:
    """Who a run acts for. Passed explicitly into every lookup and write."""

    user_id: str
    org_id: str | None = None


@dataclass(slots=True)
class EmailAccount:
    id: int
    user_id: str
    org_id: str | None
    provider: str
    email_address: str
    access_token: str | None
    refresh_token: str | None
    token_expires_at: datetime | None
    sync_enabled: bool = True
    last_synced_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class EntityMatch:
    contact_id: int | None = None
    deal_id: int | None = None
    investor_id: int | None = None
    contact_name: str | None = None
    deal_title: str | None = None


@dataclass(slots=True)
class EmailSummary:
    user_id: str
    org_id: str | None
    email_account_id: int
    provider_message_id: str
    thread_id: str | None
    subject: str | None
    from_address: str
    to_addresses: list[str] = field(default_factory=list)
    date: datetime | None = None
    snippet: str | None = None
    ai_summary: str = ""
    ai_sentiment: str = "neutral"
    ai_action_items: list[str] = field(default_factory=list)
    ai_suggested_stage: str | None = None
    contact_id: int | None = None
    deal_id: int | None = None
    investor_id: int | None = None
    is_read: bool = False
    id: int | None = None

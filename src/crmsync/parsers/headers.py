from __future__ import annotations

import re
from datetime import datetime, timezone
from email.utils import getaddresses

from bs4 import BeautifulSoup
from dateutil import parser as dt_parser

EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
_DATE_DEFAULTS = (datetime(2000, 1, 1), datetime(2001, 2, 2))


def extract_sender_address(value: str | None) -> str | None:
    """Single address out of a From header.

    Accepts ``Display Name <address>`` and a bare address. Returns None when
    nothing address-shaped is present.
    """
    if not value or not value.strip():
        return None

    for _, address in getaddresses([value]):
        candidate = address.strip()
        if EMAIL_PATTERN.fullmatch(candidate):
            return candidate

    match = EMAIL_PATTERN.search(value)
    return match.group(0) if match else None


def split_recipients(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def extract_recipient_addresses(recipients: list[str]) -> list[str]:
    addresses: list[str] = []
    seen: set[str] = set()
    for _, address in getaddresses(recipients):
        candidate = address.strip()
        if EMAIL_PATTERN.fullmatch(candidate) and candidate not in seen:
            seen.add(candidate)
            addresses.append(candidate)
    return addresses


def clean_preview(snippet: str | None) -> str:
    # Gmail snippets arrive HTML-escaped (&#39;, &amp;, ...)
    if not snippet:
        return ""
    text = BeautifulSoup(snippet, "html.parser").get_text(" ")
    return " ".join(text.split())


def parse_message_date(value: str | None, internal_date_ms: str | int | None = None) -> datetime | None:
    if value:
        try:
            parsed = dt_parser.parse(value, default=_DATE_DEFAULTS[0])
            # a header missing its date fields is filled from the default; treat it as unparseable
            if parsed.date() != dt_parser.parse(value, default=_DATE_DEFAULTS[1]).date():
                parsed = None
        except (ValueError, OverflowError):
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed

    if internal_date_ms:
        try:
            return datetime.fromtimestamp(int(internal_date_ms) / 1000, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            return None
    return None

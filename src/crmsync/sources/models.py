from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from crmsync.parsers import extract_recipient_addresses, extract_sender_address


@dataclass(slots=True)
class MailMessage:
    """Metadata of one provider-side email. Lives for a single sync pass."""

    message_id: str
    thread_id: str | None
    subject: str | None
    from_header: str | None
    to: list[str] = field(default_factory=list)
    date: datetime | None = None
    snippet: str = ""

    @property
    def sender(self) -> str | None:
        return extract_sender_address(self.from_header)

    @property
    def recipients(self) -> list[str]:
        return extract_recipient_addresses(self.to)

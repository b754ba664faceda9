from __future__ import annotations

from crmsync.core.db import CrmRepository
from crmsync.core.records import EntityMatch, SyncContext

from .strategy import MatchStrategy, recent_deal_strategy, recent_investor_strategy


class EntityMatcher:
    def __init__(
        self,
        repository: CrmRepository,
        deal_strategy: MatchStrategy | None = None,
        investor_strategy: MatchStrategy | None = None,
    ):
        self.repository = repository
        self.deal_strategy = deal_strategy or recent_deal_strategy(repository)
        self.investor_strategy = investor_strategy or recent_investor_strategy(repository)

    def match(self, context: SyncContext, sender: str, subject: str, preview: str) -> EntityMatch:
        contact_id = None
        contact_name = None
        contact = self.repository.find_contact_by_email(context, sender)
        if contact is not None:
            contact_id = int(contact["id"])
            full_name = " ".join(part for part in (contact["first_name"], contact["last_name"]) if part)
            contact_name = full_name or None

        deal = self.deal_strategy.match(context, subject, preview)
        investor = self.investor_strategy.match(context, subject, preview)

        return EntityMatch(
            contact_id=contact_id,
            deal_id=deal.id if deal else None,
            investor_id=investor.id if investor else None,
            contact_name=contact_name,
            deal_title=deal.label if deal else None,
        )

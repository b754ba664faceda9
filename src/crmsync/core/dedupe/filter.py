from __future__ import annotations

from typing import Iterable

from crmsync.core.db import CrmRepository


class DedupFilter:
    def __init__(self, repository: CrmRepository):
        self.repository = repository

    def new_message_ids(self, user_id: str, candidate_ids: Iterable[str]) -> list[str]:
        """Candidates with no stored summary for ``user_id``, in input order.

        One membership query for the whole candidate set; an empty set does
        not touch the database.
        """
        candidates = list(dict.fromkeys(candidate_ids))
        if not candidates:
            return []
        existing = self.repository.existing_summary_message_ids(user_id, candidates)
        return [message_id for message_id in candidates if message_id not in existing]

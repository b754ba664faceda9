from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Iterable

from crmsync.core.db import CrmRepository
from crmsync.core.records import SyncContext

DEAL_KEYWORDS = ("deal", "proposal", "contract", "quote", "order", "sale")
INVESTOR_KEYWORDS = ("invest", "funding", "round", "capital", "valuation", "pitch")


@dataclass(frozen=True, slots=True)
class MatchedEntity:
    id: int
    label: str | None = None


class MatchStrategy(ABC):
    """Links a message to at most one entity of a single kind."""

    @abstractmethod
    def match(self, context: SyncContext, subject: str, preview: str) -> MatchedEntity | None:
        ...


class KeywordRecencyStrategy(MatchStrategy):
    """Any keyword hit in subject or preview links the most recently created entity.

    The entity's own title and participants are not
    inspected, so an unrelated entity can be attached.
    """

    def __init__(
        self,
        keywords: Iterable[str],
        lookup: Callable[[SyncContext], sqlite3.Row | None],
        label_column: str | None = None,
    ):
        self.keywords = tuple(keyword.lower() for keyword in keywords)
        self.lookup = lookup
        self.label_column = label_column

    def has_keyword(self, subject: str, preview: str) -> bool:
        haystacks = (subject.lower(), preview.lower())
        return any(keyword in text for keyword in self.keywords for text in haystacks)

    def match(self, context: SyncContext, subject: str, preview: str) -> MatchedEntity | None:
        if not self.has_keyword(subject, preview):
            return None
        row = self.lookup(context)
        if row is None:
            return None
        label = row[self.label_column] if self.label_column else None
        return MatchedEntity(id=int(row["id"]), label=label)


def recent_deal_strategy(repository: CrmRepository) -> KeywordRecencyStrategy:
    return KeywordRecencyStrategy(DEAL_KEYWORDS, repository.find_latest_deal, label_column="title")


def recent_investor_strategy(repository: CrmRepository) -> KeywordRecencyStrategy:
    return KeywordRecencyStrategy(INVESTOR_KEYWORDS, repository.find_latest_investor, label_column="name")

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

NOTHING_TO_DO_MESSAGE = "No email accounts with sync enabled"


@dataclass(frozen=True, slots=True)
class AccountSyncResult:
    email: str
    messages_fetched: int = 0
    new_summaries: int = 0
    errors: int = 0

    def with_fetched(self, count: int) -> AccountSyncResult:
        return replace(self, messages_fetched=self.messages_fetched + count)

    def with_summary(self) -> AccountSyncResult:
        return replace(self, new_summaries=self.new_summaries + 1)

    def with_error(self) -> AccountSyncResult:
        return replace(self, errors=self.errors + 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "messages_fetched": self.messages_fetched,
            "new_summaries": self.new_summaries,
            "errors": self.errors,
        }


@dataclass(frozen=True, slots=True)
class SyncResult:
    """Aggregate report of one run.

    Totals are derived from the per-account entries, except ``run_errors``
    which counts failures that happened before any account was reached.
    """

    accounts: tuple[AccountSyncResult, ...] = ()
    run_errors: int = 0
    timed_out: bool = False

    @property
    def total_messages(self) -> int:
        return sum(account.messages_fetched for account in self.accounts)

    @property
    def new_summaries(self) -> int:
        return sum(account.new_summaries for account in self.accounts)

    @property
    def errors(self) -> int:
        return self.run_errors + sum(account.errors for account in self.accounts)

    def with_account(self, account_result: AccountSyncResult) -> SyncResult:
        return replace(self, accounts=self.accounts + (account_result,))

    def with_run_error(self) -> SyncResult:
        return replace(self, run_errors=self.run_errors + 1)

    def as_timed_out(self) -> SyncResult:
        return replace(self, timed_out=True)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": True,
            "total_messages": self.total_messages,
            "new_summaries": self.new_summaries,
            "errors": self.errors,
            "timed_out": self.timed_out,
            "account_results": [account.to_dict() for account in self.accounts],
        }
        if not self.accounts and not self.run_errors and not self.timed_out:
            payload["message"] = NOTHING_TO_DO_MESSAGE
        return payload

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from crmsync.config import Settings
from crmsync.core.db import CrmRepository
from crmsync.core.dedupe import DedupFilter
from crmsync.core.records import (
    AccountSyncResult,
    EmailAccount,
    EmailSummary,
    SyncContext,
    SyncResult,
)
from crmsync.exceptions import CredentialRefreshError
from crmsync.matching import EntityMatcher
from crmsync.sources.email_gmail import GmailMessageFetcher, TokenLifecycleManager
from crmsync.sources.models import MailMessage
from crmsync.summarize import (
    ChatCompletionClient,
    FallbackSummary,
    SummarizationClient,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncService:
    def __init__(
        self,
        settings: Settings,
        repository: CrmRepository,
        logger: logging.Logger | logging.LoggerAdapter,
        token_manager: TokenLifecycleManager | None = None,
        fetcher: GmailMessageFetcher | None = None,
        dedup_filter: DedupFilter | None = None,
        matcher: EntityMatcher | None = None,
        summarizer: SummarizationClient | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.settings = settings
        self.repository = repository
        self.logger = logger
        self.clock = clock
        self.batch_size = settings.sync_batch_size
        self.token_manager = token_manager or TokenLifecycleManager(
            repository=repository,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            token_uri=settings.google_token_uri,
            refresh_margin=timedelta(seconds=settings.token_refresh_margin_sec),
            clock=clock,
        )
        self.fetcher = fetcher or GmailMessageFetcher()
        self.dedup_filter = dedup_filter or DedupFilter(repository)
        self.matcher = matcher or EntityMatcher(repository)
        self.summarizer = summarizer or SummarizationClient(
            ChatCompletionClient(
                api_url=settings.summarizer_url,
                api_key=settings.summarizer_api_key,
                model=settings.summarizer_model,
                timeout_sec=settings.summarizer_timeout_sec,
            ),
            max_tokens=settings.summarizer_max_tokens,
        )

    def _deadline_passed(self, deadline: datetime | None) -> bool:
        return deadline is not None and self.clock() >= deadline

    def sync(
        self,
        context: SyncContext,
        correlation_id: str,
        deadline: datetime | None = None,
    ) -> SyncResult:
        """One pass over every sync-enabled account of ``context.user_id``.

        Never raises: account and message failures end up as counts in the
        returned SyncResult.
        """
        self._record_run_start(context, correlation_id)
        result = SyncResult()

        try:
            accounts = self.repository.list_sync_enabled_accounts(context.user_id)
        except Exception as exc:  # noqa: BLE001
            self.logger.error("Listing email accounts failed: %s", exc)
            result = result.with_run_error()
            self._record_run_finish(correlation_id, result, error_text=str(exc))
            return result

        if not accounts:
            self.logger.info("No email accounts with sync enabled for user %s", context.user_id)
            self._record_run_finish(correlation_id, result)
            return result

        for account in accounts:
            if self._deadline_passed(deadline):
                self.logger.warning("Deadline reached before account %s", account.email_address)
                result = result.as_timed_out()
                break

            account_result, interrupted = self._sync_account(context, account, deadline)
            result = result.with_account(account_result)
            self.logger.info(
                "Account %s: fetched=%s new=%s errors=%s",
                account.email_address,
                account_result.messages_fetched,
                account_result.new_summaries,
                account_result.errors,
            )
            if interrupted:
                result = result.as_timed_out()
                break

        self._record_run_finish(correlation_id, result)
        return result

    def _sync_account(
        self,
        context: SyncContext,
        account: EmailAccount,
        deadline: datetime | None,
    ) -> tuple[AccountSyncResult, bool]:
        account_result = AccountSyncResult(email=account.email_address)
        interrupted = False

        try:
            access_token = self.token_manager.ensure_access_token(account)
        except CredentialRefreshError as exc:
            self.logger.warning("Skipping account %s: %s", account.email_address, exc)
            return account_result.with_error(), interrupted
        except Exception as exc:  # noqa: BLE001
            self.logger.error("Token handling failed for %s: %s", account.email_address, exc)
            return account_result.with_error(), interrupted

        try:
            messages = self.fetcher.fetch_recent(access_token, self.batch_size)
            account_result = account_result.with_fetched(len(messages))

            pending = set(
                self.dedup_filter.new_message_ids(
                    context.user_id,
                    [message.message_id for message in messages],
                )
            )
            self.logger.info(
                "Account %s: %s fetched, %s not seen before",
                account.email_address,
                len(messages),
                len(pending),
            )

            for message in messages:
                if message.message_id not in pending:
                    continue
                if self._deadline_passed(deadline):
                    self.logger.warning("Deadline reached while syncing %s", account.email_address)
                    interrupted = True
                    break
                pending.discard(message.message_id)
                account_result = self._process_message(context, account, message, account_result)

            self.repository.mark_account_synced(account.id, self.clock())
        except Exception as exc:  # noqa: BLE001
            self.logger.error("Account sync failed for %s: %s", account.email_address, exc)
            account_result = account_result.with_error()

        return account_result, interrupted

    def _process_message(
        self,
        context: SyncContext,
        account: EmailAccount,
        message: MailMessage,
        account_result: AccountSyncResult,
    ) -> AccountSyncResult:
        try:
            sender = message.sender
            if sender is None:
                self.logger.info("Skipping message %s: no sender address in %r", message.message_id, message.from_header)
                return account_result

            subject = message.subject or ""
            match = self.matcher.match(context, sender, subject, message.snippet)

            summary = self.summarizer.summarize(
                subject=subject,
                preview=message.snippet,
                sender=sender,
                contact_name=match.contact_name,
                deal_title=match.deal_title,
            )
            if isinstance(summary, FallbackSummary):
                self.logger.warning("Unstructured summarizer output for message %s, storing fallback", message.message_id)

            self.repository.insert_email_summary(
                EmailSummary(
                    user_id=context.user_id,
                    org_id=context.org_id,
                    email_account_id=account.id,
                    provider_message_id=message.message_id,
                    thread_id=message.thread_id,
                    subject=message.subject,
                    from_address=sender,
                    to_addresses=message.recipients,
                    date=message.date,
                    snippet=message.snippet,
                    ai_summary=summary.summary,
                    ai_sentiment=summary.sentiment,
                    ai_action_items=list(summary.action_items),
                    ai_suggested_stage=summary.suggested_stage,
                    contact_id=match.contact_id,
                    deal_id=match.deal_id,
                    investor_id=match.investor_id,
                )
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.error("Message processing failed for %s: %s", message.message_id, exc)
            return account_result.with_error()

        return account_result.with_summary()

    def _record_run_start(self, context: SyncContext, correlation_id: str) -> None:
        try:
            self.repository.start_sync_run(
                correlation_id=correlation_id,
                user_id=context.user_id,
                started_at=self.clock().isoformat(),
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Could not record sync run start: %s", exc)

    def _record_run_finish(
        self,
        correlation_id: str,
        result: SyncResult,
        error_text: str | None = None,
    ) -> None:
        if result.timed_out:
            status = "timed_out"
        elif result.errors:
            status = "completed_with_errors"
        else:
            status = "success"
        try:
            self.repository.finish_sync_run(
                correlation_id=correlation_id,
                finished_at=self.clock().isoformat(),
                status=status,
                stats=result.to_dict(),
                error_text=error_text,
            )
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Could not record sync run finish: %s", exc)

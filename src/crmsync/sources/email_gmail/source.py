from __future__ import annotations

import logging
from typing import Any, Callable

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from crmsync.exceptions import MessageFetchError
from crmsync.parsers import clean_preview, parse_message_date, split_recipients
from crmsync.sources.models import MailMessage

METADATA_HEADERS = ["Subject", "From", "To", "Date"]
DEFAULT_BATCH_SIZE = 50

logger = logging.getLogger(__name__)


def build_gmail_service(access_token: str) -> Any:
    credentials = Credentials(token=access_token)
    return build("gmail", "v1", credentials=credentials, cache_discovery=False)


class GmailMessageFetcher:
    def __init__(self, service_factory: Callable[[str], Any] = build_gmail_service):
        self.service_factory = service_factory

    @staticmethod
    def _extract_headers(payload: dict[str, Any]) -> dict[str, str]:
        headers = payload.get("headers", [])
        result: dict[str, str] = {}
        for item in headers:
            name = item.get("name")
            if name:
                result[name.lower()] = item.get("value", "")
        return result

    def _list_message_ids(self, messages_resource: Any, max_results: int) -> list[str]:
        try:
            response = messages_resource.list(userId="me", maxResults=max_results).execute()
        except HttpError as exc:
            raise MessageFetchError(f"Gmail list failed: {exc}") from exc
        return [item["id"] for item in response.get("messages", [])[:max_results] if item.get("id")]

    def _to_message(self, detail: dict[str, Any]) -> MailMessage:
        headers = self._extract_headers(detail.get("payload", {}))
        return MailMessage(
            message_id=detail["id"],
            thread_id=detail.get("threadId"),
            subject=headers.get("subject") or None,
            from_header=headers.get("from") or None,
            to=split_recipients(headers.get("to")),
            date=parse_message_date(headers.get("date"), detail.get("internalDate")),
            snippet=clean_preview(detail.get("snippet")),
        )

    def fetch_recent(self, access_token: str, max_results: int = DEFAULT_BATCH_SIZE) -> list[MailMessage]:
        """Up to ``max_results`` messages, in provider order.

        Ids are listed first, then metadata is fetched one message at a time;
        a message whose metadata cannot be fetched is left out.
        """
        service = self.service_factory(access_token)
        messages_resource = service.users().messages()

        message_ids = self._list_message_ids(messages_resource, max_results)
        if not message_ids:
            return []

        result: list[MailMessage] = []
        for message_id in message_ids:
            try:
                detail = messages_resource.get(
                    userId="me",
                    id=message_id,
                    format="metadata",
                    metadataHeaders=METADATA_HEADERS,
                ).execute()
                result.append(self._to_message(detail))
            except Exception as exc:  # noqa: BLE001
                logger.debug("Skipping message %s: %s", message_id, exc)

        return result

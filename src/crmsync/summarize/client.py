from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from crmsync.core.records import PIPELINE_STAGES, SENTIMENTS

from .completion import ChatCompletionClient

FALLBACK_SUMMARY_CHARS = 200
CODE_FENCE_PATTERN = re.compile(r"```(?:json)?", flags=re.IGNORECASE)

SYSTEM_PROMPT = (
    "You are a CRM assistant. Analyze emails and extract structured insights. "
    "Always respond with a single JSON object and nothing else."
)


@dataclass(frozen=True, slots=True)
class StructuredSummary:
    summary: str
    sentiment: str
    action_items: tuple[str, ...] = ()
    suggested_stage: str | None = None


@dataclass(frozen=True, slots=True)
class FallbackSummary:
    """Raw service text that could not be read as a structured summary."""

    raw_text: str

    @property
    def summary(self) -> str:
        return self.raw_text[:FALLBACK_SUMMARY_CHARS]

    @property
    def sentiment(self) -> str:
        return "neutral"

    @property
    def action_items(self) -> tuple[str, ...]:
        return ()

    @property
    def suggested_stage(self) -> str | None:
        return None


SummarizationResult = StructuredSummary | FallbackSummary


def _extract_json_object(text: str) -> dict[str, Any] | None:
    """First JSON object embedded in ``text``; braces in surrounding prose are skipped."""
    cleaned = CODE_FENCE_PATTERN.sub("", text)
    decoder = json.JSONDecoder()
    start = cleaned.find("{")
    while start != -1:
        try:
            payload, _ = decoder.raw_decode(cleaned, start)
        except (ValueError, RecursionError):
            payload = None
        if isinstance(payload, dict):
            return payload
        start = cleaned.find("{", start + 1)
    return None


def _first_present(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


def parse_summary_response(raw_text: str | None) -> SummarizationResult:
    """Read the service's reply; never raises.

    Prose and code fences around the JSON object are tolerated. Anything else
    that does not fit the expected shape becomes a FallbackSummary.
    """
    text = raw_text or ""
    payload = _extract_json_object(text)
    if payload is None:
        return FallbackSummary(text)

    summary = payload.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        return FallbackSummary(text)

    sentiment = payload.get("sentiment")
    if not isinstance(sentiment, str) or sentiment.strip().lower() not in SENTIMENTS:
        return FallbackSummary(text)

    action_items = _first_present(payload, "actionItems", "action_items")
    if action_items is None:
        action_items = []
    if not isinstance(action_items, list) or not all(isinstance(item, str) for item in action_items):
        return FallbackSummary(text)

    stage = _first_present(payload, "suggestedStage", "suggested_stage")
    suggested_stage = None
    if isinstance(stage, str) and stage.strip().lower() in PIPELINE_STAGES:
        suggested_stage = stage.strip().lower()

    return StructuredSummary(
        summary=summary.strip(),
        sentiment=sentiment.strip().lower(),
        action_items=tuple(item.strip() for item in action_items if item.strip()),
        suggested_stage=suggested_stage,
    )


def build_user_prompt(
    subject: str,
    preview: str,
    sender: str,
    contact_name: str | None = None,
    deal_title: str | None = None,
) -> str:
    lines = [
        "Analyze this email.",
        "",
        f"From: {sender}",
        f"Subject: {subject}",
        f"Preview: {preview}",
    ]
    if contact_name:
        lines.append(f"Contact: {contact_name}")
    if deal_title:
        lines.append(f"Related deal: {deal_title}")
    lines.extend(
        [
            "",
            "Respond with this JSON structure:",
            "{",
            '  "summary": "1-2 sentence summary of the email",',
            f'  "sentiment": one of {", ".join(SENTIMENTS)},',
            '  "actionItems": ["action item", ...],',
            f'  "suggestedStage": one of {", ".join(PIPELINE_STAGES)} or null',
            "}",
        ]
    )
    return "\n".join(lines)


class SummarizationClient:
    def __init__(
        self,
        completion_client: ChatCompletionClient,
        max_tokens: int = 512,
        temperature: float = 0.3,
    ):
        self.completion_client = completion_client
        self.max_tokens = max_tokens
        self.temperature = temperature

    def summarize(
        self,
        subject: str,
        preview: str,
        sender: str,
        contact_name: str | None = None,
        deal_title: str | None = None,
    ) -> SummarizationResult:
        """Transport failures raise SummarizationServiceError; bad output does not."""
        raw_text = self.completion_client.complete(
            SYSTEM_PROMPT,
            build_user_prompt(subject, preview, sender, contact_name, deal_title),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        return parse_summary_response(raw_text)

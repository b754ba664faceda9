from __future__ import annotations

import pytest
import requests

from crmsync.exceptions import SummarizationServiceError
from crmsync.summarize import (
    ChatCompletionClient,
    FallbackSummary,
    StructuredSummary,
    SummarizationClient,
    parse_summary_response,
)

VALID_JSON = (
    '{"summary": "Jane asks for a call about pricing.", "sentiment": "Positive", '
    '"actionItems": ["Schedule call"], "suggestedStage": "proposal"}'
)


def test_structured_response_is_parsed() -> None:
    result = parse_summary_response(VALID_JSON)

    assert result == StructuredSummary(
        summary="Jane asks for a call about pricing.",
        sentiment="positive",
        action_items=("Schedule call",),
        suggested_stage="proposal",
    )


@pytest.mark.parametrize(
    "raw",
    [
        f"```json\n{VALID_JSON}\n```",
        f"Here is the analysis:\n{VALID_JSON}\nHope this helps.",
        f"```\n{VALID_JSON}\n```",
        f"{VALID_JSON}\nNote: keys follow {{camelCase}}.",
        f"Result for {{email}}:\n{VALID_JSON}",
    ],
)
def test_json_is_found_inside_fences_and_prose(raw: str) -> None:
    result = parse_summary_response(raw)

    assert isinstance(result, StructuredSummary)
    assert result.suggested_stage == "proposal"


def test_unknown_stage_becomes_none() -> None:
    raw = '{"summary": "Ok", "sentiment": "neutral", "actionItems": [], "suggestedStage": "won"}'

    result = parse_summary_response(raw)

    assert isinstance(result, StructuredSummary)
    assert result.suggested_stage is None


def test_snake_case_keys_are_accepted() -> None:
    raw = '{"summary": "Ok", "sentiment": "urgent", "action_items": ["Reply"], "suggested_stage": "lead"}'

    result = parse_summary_response(raw)

    assert result == StructuredSummary(summary="Ok", sentiment="urgent", action_items=("Reply",), suggested_stage="lead")


@pytest.mark.parametrize(
    "raw",
    [
        "The email is about a meeting next week.",
        '{"summary": "Ok", "sentiment": "ecstatic", "actionItems": []}',
        '{"summary": "Ok", "sentiment": "neutral", "actionItems": "call back"}',
        '{"sentiment": "neutral"}',
        '{"summary": "Ok", "sentiment": "neutral",',
        "[1, 2, 3]",
        "",
    ],
)
def test_unusable_output_becomes_fallback(raw: str) -> None:
    result = parse_summary_response(raw)

    assert isinstance(result, FallbackSummary)
    assert result.sentiment == "neutral"
    assert result.action_items == ()
    assert result.suggested_stage is None


def test_fallback_summary_is_truncated() -> None:
    result = parse_summary_response("x" * 500)

    assert result.summary == "x" * 200


def test_parse_never_raises_on_none() -> None:
    assert isinstance(parse_summary_response(None), FallbackSummary)


class FakeCompletionClient:
    def __init__(self, reply: str):
        self.reply = reply
        self.prompts: list[tuple[str, str]] = []

    def complete(self, system_prompt: str, user_prompt: str, max_tokens: int = 1024, temperature: float = 0.3) -> str:
        self.prompts.append((system_prompt, user_prompt))
        return self.reply


def test_summarize_includes_match_context_in_prompt() -> None:
    completion = FakeCompletionClient(VALID_JSON)

    result = SummarizationClient(completion).summarize(
        subject="Pricing",
        preview="Can we talk?",
        sender="jane@example.com",
        contact_name="Jane Doe",
        deal_title="Acme renewal",
    )

    assert isinstance(result, StructuredSummary)
    _, user_prompt = completion.prompts[0]
    assert "From: jane@example.com" in user_prompt
    assert "Contact: Jane Doe" in user_prompt
    assert "Related deal: Acme renewal" in user_prompt


def test_summarize_without_context_omits_lines() -> None:
    completion = FakeCompletionClient("not json")

    result = SummarizationClient(completion).summarize(subject="Hi", preview="", sender="a@example.com")

    assert result == FallbackSummary("not json")
    _, user_prompt = completion.prompts[0]
    assert "Contact:" not in user_prompt
    assert "Related deal:" not in user_prompt


class FakeResponse:
    def __init__(self, payload, status_code: int = 200):  # noqa: ANN001
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self):  # noqa: ANN201
        return self.payload


class FakeSession:
    def __init__(self, response: FakeResponse | None = None, error: Exception | None = None):
        self.response = response
        self.error = error
        self.requests: list[dict] = []

    def post(self, url, json, headers, timeout):  # noqa: ANN001,ANN201,A002
        self.requests.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


def _client(session: FakeSession, api_key: str | None = "secret") -> ChatCompletionClient:
    return ChatCompletionClient(
        api_url="https://llm.example.com/v1/chat/completions",
        api_key=api_key,
        model="test-model",
        timeout_sec=5,
        session=session,
    )


def test_completion_posts_chat_request() -> None:
    session = FakeSession(FakeResponse({"choices": [{"message": {"content": "  hello  "}}]}))

    content = _client(session).complete("system", "user", max_tokens=64)

    assert content == "hello"
    request = session.requests[0]
    assert request["headers"]["Authorization"] == "Bearer secret"
    assert request["json"]["model"] == "test-model"
    assert request["json"]["max_tokens"] == 64
    assert [message["role"] for message in request["json"]["messages"]] == ["system", "user"]


def test_completion_without_choices_is_empty() -> None:
    session = FakeSession(FakeResponse({"choices": []}))

    assert _client(session).complete("system", "user") == ""


@pytest.mark.parametrize(
    "session",
    [
        FakeSession(error=requests.ConnectionError("connection refused")),
        FakeSession(error=requests.Timeout("read timed out")),
        FakeSession(FakeResponse({}, status_code=503)),
    ],
)
def test_transport_failures_raise(session: FakeSession) -> None:
    with pytest.raises(SummarizationServiceError):
        _client(session).complete("system", "user")


def test_missing_api_key_raises_before_request() -> None:
    session = FakeSession(FakeResponse({}))

    with pytest.raises(SummarizationServiceError):
        _client(session, api_key=None).complete("system", "user")
    assert session.requests == []

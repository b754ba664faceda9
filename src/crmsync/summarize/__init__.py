from .client import (
    FALLBACK_SUMMARY_CHARS,
    FallbackSummary,
    StructuredSummary,
    SummarizationClient,
    SummarizationResult,
    parse_summary_response,
)
from .completion import ChatCompletionClient

__all__ = [
    "ChatCompletionClient",
    "SummarizationClient",
    "SummarizationResult",
    "StructuredSummary",
    "FallbackSummary",
    "FALLBACK_SUMMARY_CHARS",
    "parse_summary_response",
]

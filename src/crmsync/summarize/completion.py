from __future__ import annotations

from typing import Any

import requests

from crmsync.exceptions import SummarizationServiceError


class ChatCompletionClient:
    """Minimal client for an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        api_url: str,
        api_key: str | None,
        model: str,
        timeout_sec: float = 30.0,
        session: requests.Session | None = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.3,
    ) -> str:
        if not self.api_key:
            raise SummarizationServiceError("No AI API key configured. Set NOVITA_API_KEY in environment.")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        try:
            response = self.session.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout_sec,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as exc:
            raise SummarizationServiceError(f"Summarization request failed: {exc}") from exc

        return self._extract_content(data)

    @staticmethod
    def _extract_content(data: Any) -> str:
        if not isinstance(data, dict):
            return ""
        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return ""
        message = choices[0].get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        return content.strip() if isinstance(content, str) else ""

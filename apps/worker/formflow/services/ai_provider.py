"""Chat-completion provider behind the qualification analyzer.

Only OpenAI is wired up. Provider problems surface as AIProviderError with
the provider's own message, which ends up on the dead letter for the
analysis stage.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from formflow.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
OPENAI_TIMEOUT_SECONDS = 60.0


class AIProviderError(Exception):
    """The provider rejected the request or returned an unusable body."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class ChatMessage:
    role: str  # 'system', 'user', 'assistant'
    content: str


@dataclass
class ChatResponse:
    content: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class AIProvider(ABC):
    @abstractmethod
    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1500,
    ) -> ChatResponse:
        """Send a chat completion request."""


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return f"HTTP {response.status_code}"


def _parse_completion(data: Any, requested_model: str) -> ChatResponse:
    try:
        message = data["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as exc:
        raise AIProviderError("Completion response has no choices") from exc
    usage = data.get("usage") or {}
    return ChatResponse(
        content=message.get("content") or "",
        model=data.get("model") or requested_model,
        prompt_tokens=usage.get("prompt_tokens", 0),
        completion_tokens=usage.get("completion_tokens", 0),
        total_tokens=usage.get("total_tokens", 0),
    )


class OpenAIProvider(AIProvider):
    """OpenAI chat completions over httpx, retried on transient failures."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4o-mini",
        *,
        base_url: str = OPENAI_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 1500,
    ) -> ChatResponse:
        model = model or self.default_model
        payload = {
            "model": model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        async with httpx.AsyncClient(
            timeout=OPENAI_TIMEOUT_SECONDS, transport=self._transport
        ) as client:
            response = await request_with_retries(
                lambda: client.post(
                    f"{self.base_url}/chat/completions", headers=headers, json=payload
                )
            )

        if response.status_code >= 400:
            raise AIProviderError(_error_message(response), status_code=response.status_code)
        try:
            data = response.json()
        except ValueError as exc:
            raise AIProviderError("Completion response is not JSON") from exc

        result = _parse_completion(data, model)
        logger.debug("Chat completion used %s tokens (model=%s)", result.total_tokens, result.model)
        return result

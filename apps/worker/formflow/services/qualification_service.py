"""Qualification analysis of completed intake forms.

Turns raw form answers into a plain text block and asks the AI provider for
an agent-facing qualification summary.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from formflow.core.config import settings
from formflow.core.errors import AnalysisFailure
from formflow.services.ai_provider import AIProvider, ChatMessage, OpenAIProvider

logger = logging.getLogger(__name__)

_QUESTION_PREFIX = re.compile(r"^q\d+_")

BUYER_SYSTEM_PROMPT = """You are an assistant to a residential real estate agent.
You read a prospective BUYER's intake questionnaire and write a concise
qualification summary for the agent.

Cover, when the answers allow it:
- Budget and financing readiness (pre-approval, cash, down payment)
- Timeline and urgency
- Target areas, property type and must-have features
- Motivation and any red flags or open questions for the first call

Write short paragraphs or bullets. Do not invent facts that are not in the answers."""

SELLER_SYSTEM_PROMPT = """You are an assistant to a residential real estate agent.
You read a prospective SELLER's intake questionnaire and write a concise
qualification summary for the agent.

Cover, when the answers allow it:
- Property details and condition
- Price expectations and mortgage/equity position
- Timeline and reason for selling
- Motivation and any red flags or open questions for the listing appointment

Write short paragraphs or bullets. Do not invent facts that are not in the answers."""


@dataclass
class AnalysisResult:
    summary: str
    model: str


class QualificationAnalyzer(Protocol):
    async def summarize(self, text: str, *, client_type: str = "buyer") -> AnalysisResult: ...


def clean_answer_key(key: str) -> str:
    return _QUESTION_PREFIX.sub("", key).replace("_", " ").lower()


def answer_to_text(answer: Any) -> str:
    if isinstance(answer, dict):
        parts = [str(v).strip() for v in answer.values() if v not in (None, "")]
        return " ".join(p for p in parts if p)
    if isinstance(answer, list):
        return ", ".join(str(item) for item in answer if item not in (None, ""))
    return str(answer).strip()


def format_answers_for_analysis(
    answers: dict[str, Any],
    client_type: str,
    submitted_at: datetime | None = None,
) -> str:
    """
    Render answers as the analyzer's input block.

    Only entries shaped like {"answer": value} with a non-empty answer are
    included, in the order the form service returned them.
    """
    lines = [f"=== {client_type.upper()} FORM SUBMISSION ===", ""]
    for key, value in answers.items():
        if not isinstance(value, dict):
            continue
        answer = value.get("answer")
        if not answer:
            continue
        text = answer_to_text(answer)
        if text:
            lines.append(f"{clean_answer_key(str(key))}: {text}")
    if submitted_at is not None:
        lines.append("")
        lines.append(f"Submission Time: {submitted_at.isoformat()}")
    return "\n".join(lines)


class AIQualificationAnalyzer:
    """Analyzer backed by a chat-completion provider."""

    def __init__(self, provider: AIProvider, model: str | None = None):
        self.provider = provider
        self.model = model or settings.AI_MODEL

    async def summarize(self, text: str, *, client_type: str = "buyer") -> AnalysisResult:
        system_prompt = SELLER_SYSTEM_PROMPT if client_type == "seller" else BUYER_SYSTEM_PROMPT
        messages = [
            ChatMessage(role="system", content=system_prompt),
            ChatMessage(role="user", content=text),
        ]
        try:
            response = await self.provider.chat(messages, model=self.model, temperature=0.3)
        except Exception as exc:
            raise AnalysisFailure(f"{type(exc).__name__}: {exc}") from exc

        summary = (response.content or "").strip()
        if not summary:
            raise AnalysisFailure("Analyzer returned an empty summary")
        logger.info(
            "Qualification summary generated (%s tokens, model=%s)",
            response.total_tokens,
            response.model,
        )
        return AnalysisResult(summary=summary, model=response.model or self.model)


class UnconfiguredAnalyzer:
    """Stand-in used when no AI key is configured; every call fails fast."""

    model = "none"

    async def summarize(self, text: str, *, client_type: str = "buyer") -> AnalysisResult:
        raise AnalysisFailure("OPENAI_API_KEY is not configured")


def build_analyzer() -> QualificationAnalyzer:
    if not settings.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set; submissions will be processed without summaries")
        return UnconfiguredAnalyzer()
    return AIQualificationAnalyzer(
        OpenAIProvider(settings.OPENAI_API_KEY, default_model=settings.AI_MODEL)
    )

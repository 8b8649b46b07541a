"""Structured logging helpers (PII-safe)."""

import logging
from typing import Any


def build_log_context(
    *,
    form_id: str | None = None,
    submission_id: str | None = None,
    client_id: str | None = None,
    workflow_id: str | None = None,
    stage: str | None = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict."""
    context: dict[str, Any] = {}
    if form_id:
        context["form_id"] = form_id
    if submission_id:
        context["submission_id"] = submission_id
    if client_id:
        context["client_id"] = client_id
    if workflow_id:
        context["workflow_id"] = workflow_id
    if stage:
        context["stage"] = stage
    return context


def mask_email(email: str | None) -> str:
    if not email:
        return ""
    local, _, domain = email.partition("@")
    prefix = local[:3] if local else ""
    return f"{prefix}...@{domain}" if domain else f"{prefix}..."


def configure_logging(level: str = "INFO") -> None:
    """Configure process-wide logging for the worker."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

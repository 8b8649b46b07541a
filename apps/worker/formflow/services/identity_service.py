"""Client identity extraction and routing for form submissions.

Form field keys differ between form versions, so each identity field is
probed through an ordered list of known keys. The first non-empty answer wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from formflow.core.errors import UnresolvableIdentity
from formflow.db.models import Client
from formflow.schemas.intake import ClientIdentity, Submission
from formflow.services import client_service
from formflow.utils.normalization import normalize_email, normalize_name, phone_or_raw

logger = logging.getLogger(__name__)

NAME_KEYS = ("2", "q2_name", "q1_name", "name")
EMAIL_KEYS = ("3", "q3_email", "q1_email", "email")
PHONE_KEYS = ("4", "q3_phone", "q4_phone", "phone")


@dataclass
class ResolvedIdentity:
    """Identity of a submission plus the existing client it routes to, if any."""

    identity: ClientIdentity
    client: Client | None

    @property
    def is_new(self) -> bool:
        return self.client is None


def _flatten(answer: Any) -> str | None:
    """Flatten JotForm compound answers ({"first", "last"}, {"full"}, ...) to text."""
    if answer is None:
        return None
    if isinstance(answer, dict):
        if answer.get("full"):
            return str(answer["full"]).strip() or None
        if "area" in answer or "phone" in answer:
            parts = [answer.get("area"), answer.get("phone")]
        else:
            parts = [answer.get(k) for k in ("prefix", "first", "middle", "last", "suffix")]
            if not any(parts):
                parts = list(answer.values())
        text = " ".join(str(p).strip() for p in parts if p not in (None, ""))
        return text or None
    if isinstance(answer, list):
        text = " ".join(str(p).strip() for p in answer if p not in (None, ""))
        return text or None
    text = str(answer).strip()
    return text or None


def _probe(answers: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        entry = answers.get(key)
        if entry is None:
            continue
        value = entry.get("answer") if isinstance(entry, dict) and "answer" in entry else entry
        text = _flatten(value)
        if text:
            return text
    return None


def extract_identity(answers: dict[str, Any]) -> ClientIdentity:
    """Extract normalized email, name and phone from submission answers."""
    return ClientIdentity(
        email=normalize_email(_probe(answers, EMAIL_KEYS)),
        name=normalize_name(_probe(answers, NAME_KEYS)),
        # Phone is informational; unparseable numbers are kept as typed
        phone=phone_or_raw(_probe(answers, PHONE_KEYS)),
    )


def resolve_identity(db: Session, submission: Submission, client_type: str) -> ResolvedIdentity:
    """
    Route a submission to an existing client or a new one.

    Raises UnresolvableIdentity when no email can be found; such submissions
    are skipped permanently.
    """
    identity = extract_identity(submission.answers)
    if not identity.email:
        raise UnresolvableIdentity(submission.id)
    client = client_service.get_client_by_email(db, identity.email, client_type)
    return ResolvedIdentity(identity=identity, client=client)

"""Client persistence for intake and onboarding."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from formflow.core.config import settings
from formflow.db import store
from formflow.db.enums import ClientStatus
from formflow.db.models import Client
from formflow.db.store import Collection
from formflow.schemas.intake import ClientIdentity
from formflow.utils.normalization import normalize_email


def get_client(db: Session, client_id: uuid.UUID) -> Client | None:
    return store.get(db, Collection.CLIENTS, client_id)


def get_client_by_email(db: Session, email: str, client_type: str) -> Client | None:
    """Indexed lookup on (email, client_type)."""
    normalized = normalize_email(email)
    if not normalized:
        return None
    return db.scalars(
        select(Client).where(Client.email == normalized, Client.client_type == client_type)
    ).first()


def create_client(
    db: Session,
    identity: ClientIdentity,
    client_type: str,
    *,
    agent_id: str | None = None,
    status: ClientStatus = ClientStatus.SURVEY_SENT,
    form_data: dict[str, Any] | None = None,
    ai_summary: str | None = None,
) -> Client:
    doc: dict[str, Any] = {
        "email": normalize_email(identity.email),
        "name": identity.name,
        "phone": identity.phone,
        "client_type": client_type,
        "agent_id": agent_id or settings.DEFAULT_AGENT_ID,
        "status": status.value,
        "form_data": form_data or {},
        "ai_summary": ai_summary,
    }
    if status == ClientStatus.FORM_COMPLETED:
        doc["completed_at"] = datetime.now(timezone.utc)
    client_id = store.create(db, Collection.CLIENTS, doc)
    return store.get(db, Collection.CLIENTS, client_id)


def record_form_completion(
    db: Session,
    client: Client,
    identity: ClientIdentity,
    form_data: dict[str, Any],
    ai_summary: str | None,
) -> Client:
    """Store new answers on an existing client and mark the form completed."""
    patch: dict[str, Any] = {
        "form_data": form_data,
        "status": ClientStatus.FORM_COMPLETED.value,
        "completed_at": datetime.now(timezone.utc),
    }
    if ai_summary:
        patch["ai_summary"] = ai_summary
    if identity.name and not client.name:
        patch["name"] = identity.name
    if identity.phone and not client.phone:
        patch["phone"] = identity.phone
    return store.update(db, Collection.CLIENTS, client.id, patch)


def upsert_client_from_submission(
    db: Session,
    existing: Client | None,
    identity: ClientIdentity,
    client_type: str,
    form_data: dict[str, Any],
    ai_summary: str | None,
) -> Client:
    if existing is None:
        return create_client(
            db,
            identity,
            client_type,
            status=ClientStatus.FORM_COMPLETED,
            form_data=form_data,
            ai_summary=ai_summary,
        )
    return record_form_completion(db, existing, identity, form_data, ai_summary)


def upsert_onboarding_client(
    db: Session,
    identity: ClientIdentity,
    client_type: str,
    agent_id: str | None = None,
) -> Client:
    """Create the client for an onboarding survey, or refresh its contact details."""
    existing = get_client_by_email(db, identity.email or "", client_type)
    if existing is None:
        return create_client(db, identity, client_type, agent_id=agent_id)
    patch: dict[str, Any] = {}
    if identity.name:
        patch["name"] = identity.name
    if identity.phone:
        patch["phone"] = identity.phone
    if agent_id:
        patch["agent_id"] = agent_id
    if not patch:
        return existing
    return store.update(db, Collection.CLIENTS, existing.id, patch)

"""Client records created and updated by form intake."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Index, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from formflow.db.base import Base, JsonType
from formflow.db.enums import ClientStatus


class Client(Base):
    """
    A buyer or seller lead.

    Unique per (email, client_type): the same person can be both a buyer and a
    seller, and each namespace is tracked separately. Never deleted here.
    """

    __tablename__ = "clients"
    __table_args__ = (
        UniqueConstraint("email", "client_type", name="uq_client_email_type"),
        Index("idx_clients_agent", "agent_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    client_type: Mapped[str] = mapped_column(String(20), nullable=False)
    agent_id: Mapped[str] = mapped_column(String(100), nullable=False)

    form_data: Mapped[dict] = mapped_column(JsonType, default=dict, nullable=False)
    ai_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(30), default=ClientStatus.SURVEY_SENT.value, nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

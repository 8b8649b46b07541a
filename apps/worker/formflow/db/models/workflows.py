"""Per-client onboarding workflow."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from formflow.db.base import Base, JsonType
from formflow.db.enums import WorkflowStatus


class Workflow(Base):
    """
    Ordered step state machine tracking a client from survey to completion.

    steps is a list of {"name", "status", "completed_at"} dicts in
    WORKFLOW_STEP_ORDER. JSON columns are replaced, never mutated in place.
    """

    __tablename__ = "workflows"
    __table_args__ = (
        Index("idx_workflows_client", "client_id", "created_at"),
        Index("idx_workflows_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    client_type: Mapped[str] = mapped_column(String(20), nullable=False)
    agent_id: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(30), default=WorkflowStatus.IN_PROGRESS.value, nullable=False
    )

    steps: Mapped[list] = mapped_column(JsonType, default=list, nullable=False)
    emails_sent: Mapped[list] = mapped_column(JsonType, default=list, nullable=False)
    documents_generated: Mapped[list] = mapped_column(JsonType, default=list, nullable=False)

    form_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    submission_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    form_response: Mapped[dict | None] = mapped_column(JsonType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

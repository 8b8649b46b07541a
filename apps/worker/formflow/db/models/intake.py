"""Models owned by the polling/intake pipeline."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from formflow.db.base import Base, JsonType
from formflow.db.enums import DeadLetterStatus


class QualificationAnalysis(Base):
    """
    AI qualification summary for one submission.

    submission_id is the idempotency key of the whole pipeline: the unique
    constraint backs up the application-level check against worker races.
    Immutable once created.
    """

    __tablename__ = "qualification_analyses"
    __table_args__ = (
        UniqueConstraint("submission_id", name="uq_analysis_submission"),
        Index("idx_analyses_client", "client_id", "created_at"),
        Index("idx_analyses_email", "client_email"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    submission_id: Mapped[str] = mapped_column(String(64), nullable=False)
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False
    )
    client_email: Mapped[str] = mapped_column(String(320), nullable=False)
    client_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_type: Mapped[str] = mapped_column(String(20), nullable=False)
    agent_id: Mapped[str] = mapped_column(String(100), nullable=False)
    form_data: Mapped[dict] = mapped_column(JsonType, default=dict, nullable=False)
    ai_summary: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)


class PollingCursor(Base):
    """Per-form watermark: every submission created at or before it is processed."""

    __tablename__ = "polling_cursors"

    form_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_processed_time: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )


class FailedSubmission(Base):
    """
    Dead letter for a submission whose processing stopped at a stage.

    One row per (submission, stage); recurrences bump attempts and reopen.
    payload keeps the raw submission so it can be re-driven.
    """

    __tablename__ = "failed_submissions"
    __table_args__ = (
        UniqueConstraint("submission_id", "stage", name="uq_failed_submission_stage"),
        Index("idx_failed_submissions_status", "status", "last_seen_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    submission_id: Mapped[str] = mapped_column(String(64), nullable=False)
    form_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    client_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    stage: Mapped[str] = mapped_column(String(30), nullable=False)
    error_class: Mapped[str] = mapped_column(String(100), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict | None] = mapped_column(JsonType, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=DeadLetterStatus.OPEN.value, nullable=False
    )
    first_seen_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

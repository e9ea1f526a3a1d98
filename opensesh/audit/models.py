"""Persisted audit rows."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from opensesh.storage.database import Base


class ExecutionAuditRecord(Base):
    """
    One executed action.

    IMMUTABILITY: append-only. Rows are hash-chained so that editing or
    removing any row breaks verification for every later row.
    """
    __tablename__ = "execution_audit"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    sequence_num: Mapped[int] = mapped_column(Integer, nullable=False, unique=True, index=True)

    thread_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    plan_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    plan_step_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    action_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    execution_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    user_approved: Mapped[bool] = mapped_column(Boolean, nullable=False)
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    executed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    prev_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

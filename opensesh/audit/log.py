"""Audit Log - append-only record of executed actions.

Every entry is hash-chained:

- prev_hash: entry_hash of the previous entry (GENESIS_HASH for the first)
- entry_hash: SHA256 over prev_hash and the entry's immutable fields
- sequence: monotonic counter starting at 1

Entries are kept in memory for queries and, when a session maker is given,
written to the ``execution_audit`` table. There is no update or delete.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from opensesh.events import EventBus, EventTopic
from opensesh.execution.models import (
    ActionType,
    ExecutionAction,
    ExecutionAuditEntry,
    ExecutionMode,
)
from opensesh.plans.models import utcnow

from .models import ExecutionAuditRecord

if TYPE_CHECKING:
    from opensesh.settings_store import SettingsStore

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64


def _timestamp(value: datetime) -> str:
    """UTC ISO timestamp without offset, stable across database round trips."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat()


def compute_entry_hash(
    prev_hash: str,
    sequence: int,
    thread_id: str,
    action_id: str,
    action_type: str,
    execution_mode: str,
    user_approved: bool,
    success: bool,
    executed_at: datetime,
    error: str | None = None,
    action: dict | None = None,
) -> str:
    content = "|".join([
        prev_hash,
        str(sequence),
        thread_id,
        action_id,
        action_type,
        execution_mode,
        str(user_approved),
        str(success),
        _timestamp(executed_at),
        error or "",
    ])
    # Include a digest of the action snapshot, not the full content
    if action:
        action_hash = hashlib.sha256(json.dumps(action, sort_keys=True, default=str).encode()).hexdigest()[:16]
        content += f"|{action_hash}"
    return hashlib.sha256(content.encode()).hexdigest()


def _entry_hash(entry: ExecutionAuditEntry) -> str:
    return compute_entry_hash(
        prev_hash=entry.prev_hash,
        sequence=entry.sequence,
        thread_id=entry.thread_id,
        action_id=entry.action_id,
        action_type=entry.action_type.value,
        execution_mode=entry.execution_mode.value,
        user_approved=entry.user_approved,
        success=entry.success,
        executed_at=entry.executed_at,
        error=entry.error,
        action=entry.action,
    )


def verify_entries(entries: list[ExecutionAuditEntry]) -> tuple[bool, list[dict[str, Any]]]:
    """Recompute the chain and report violations.

    Violations:
    - {"type": "sequence_gap", "expected": N, "actual": M}
    - {"type": "chain_break", "sequence": N, "expected_prev": ..., "actual_prev": ...}
    - {"type": "hash_mismatch", "sequence": N, "expected": ..., "actual": ...}
    """
    violations = []
    expected_prev = GENESIS_HASH
    expected_seq = 1
    for entry in entries:
        if entry.sequence != expected_seq:
            violations.append({"type": "sequence_gap", "expected": expected_seq, "actual": entry.sequence})
        if entry.prev_hash != expected_prev:
            violations.append({
                "type": "chain_break",
                "sequence": entry.sequence,
                "expected_prev": expected_prev,
                "actual_prev": entry.prev_hash,
            })
        computed = _entry_hash(entry)
        if computed != entry.entry_hash:
            violations.append({
                "type": "hash_mismatch",
                "sequence": entry.sequence,
                "expected": computed,
                "actual": entry.entry_hash,
            })
        expected_prev = entry.entry_hash
        expected_seq = entry.sequence + 1
    return not violations, violations


def _from_record(row: ExecutionAuditRecord) -> ExecutionAuditEntry:
    executed_at = row.executed_at
    if executed_at.tzinfo is None:
        executed_at = executed_at.replace(tzinfo=timezone.utc)
    return ExecutionAuditEntry(
        id=row.id,
        sequence=row.sequence_num,
        thread_id=row.thread_id,
        action_id=row.action_id,
        action_type=ActionType(row.action_type),
        action=row.action,
        execution_mode=ExecutionMode(row.execution_mode),
        user_approved=row.user_approved,
        success=row.success,
        executed_at=executed_at,
        prev_hash=row.prev_hash,
        entry_hash=row.entry_hash,
        plan_id=row.plan_id,
        plan_step_id=row.plan_step_id,
        approved_by=row.approved_by,
        error=row.error,
    )


class AuditLog:
    """Append-only, hash-chained log of executed actions."""

    def __init__(
        self,
        settings_store: SettingsStore | None = None,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self.settings_store = settings_store
        self.session_maker = session_maker
        self.bus = bus
        self._entries: list[ExecutionAuditEntry] = []
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        if self.settings_store is None:
            return True
        return self.settings_store.get_execution_settings().enable_audit_log

    async def restore(self) -> int:
        """Load persisted entries so the chain continues across restarts."""
        if self.session_maker is None:
            return 0
        async with self._lock:
            async with self.session_maker() as db:
                result = await db.execute(
                    select(ExecutionAuditRecord).order_by(ExecutionAuditRecord.sequence_num)
                )
                self._entries = [_from_record(row) for row in result.scalars().all()]
        logger.info(f"[AuditLog] Restored {len(self._entries)} audit entries")
        return len(self._entries)

    async def record(
        self,
        action: ExecutionAction,
        mode: ExecutionMode,
        user_approved: bool,
        success: bool,
        error: str | None = None,
    ) -> ExecutionAuditEntry | None:
        """Append one entry. Returns None when audit logging is disabled."""
        if not self.enabled:
            return None

        async with self._lock:
            prev_hash = self._entries[-1].entry_hash if self._entries else GENESIS_HASH
            sequence = len(self._entries) + 1
            snapshot = action.to_dict()
            executed_at = action.executed_at or utcnow()
            entry_hash = compute_entry_hash(
                prev_hash=prev_hash,
                sequence=sequence,
                thread_id=action.thread_id,
                action_id=action.id,
                action_type=action.type.value,
                execution_mode=mode.value,
                user_approved=user_approved,
                success=success,
                executed_at=executed_at,
                error=error,
                action=snapshot,
            )
            entry = ExecutionAuditEntry(
                id=str(uuid.uuid4()),
                sequence=sequence,
                thread_id=action.thread_id,
                action_id=action.id,
                action_type=action.type,
                action=snapshot,
                execution_mode=mode,
                user_approved=user_approved,
                success=success,
                executed_at=executed_at,
                prev_hash=prev_hash,
                entry_hash=entry_hash,
                plan_id=action.plan_id,
                plan_step_id=action.plan_step_id,
                approved_by=action.approved_by,
                error=error,
            )
            self._entries.append(entry)
            await self._persist(entry)

        logger.info(
            f"[AuditLog] #{entry.sequence} {action.type.value} {action.id} "
            f"mode={mode.value} approved={user_approved} success={success}"
        )
        if self.bus is not None:
            self.bus.publish(EventTopic.audit, entry.thread_id, entry)
        return entry

    async def _persist(self, entry: ExecutionAuditEntry) -> None:
        if self.session_maker is None:
            return
        try:
            async with self.session_maker() as db:
                db.add(ExecutionAuditRecord(
                    id=entry.id,
                    sequence_num=entry.sequence,
                    thread_id=entry.thread_id,
                    plan_id=entry.plan_id,
                    plan_step_id=entry.plan_step_id,
                    action_id=entry.action_id,
                    action_type=entry.action_type.value,
                    action=entry.action,
                    execution_mode=entry.execution_mode.value,
                    user_approved=entry.user_approved,
                    approved_by=entry.approved_by,
                    success=entry.success,
                    error=entry.error,
                    executed_at=entry.executed_at,
                    prev_hash=entry.prev_hash,
                    entry_hash=entry.entry_hash,
                ))
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"[AuditLog] Failed to persist audit entry #{entry.sequence}: {e}")

    # Queries

    def all(self) -> list[ExecutionAuditEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def for_thread(self, thread_id: str) -> list[ExecutionAuditEntry]:
        return [e for e in self._entries if e.thread_id == thread_id]

    def for_plan(self, plan_id: str) -> list[ExecutionAuditEntry]:
        return [e for e in self._entries if e.plan_id == plan_id]

    def between(self, start: datetime | None = None, end: datetime | None = None) -> list[ExecutionAuditEntry]:
        """Entries executed in ``[start, end]``; either bound may be open. Naive bounds are UTC."""
        if start is not None and start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        if end is not None and end.tzinfo is None:
            end = end.replace(tzinfo=timezone.utc)
        return [
            e for e in self._entries
            if (start is None or e.executed_at >= start) and (end is None or e.executed_at <= end)
        ]

    def verify_chain(self) -> tuple[bool, list[dict[str, Any]]]:
        return verify_entries(self._entries)

    async def verify_persisted_chain(self) -> tuple[bool, list[dict[str, Any]]]:
        if self.session_maker is None:
            return True, []
        async with self.session_maker() as db:
            result = await db.execute(
                select(ExecutionAuditRecord).order_by(ExecutionAuditRecord.sequence_num)
            )
            entries = [_from_record(row) for row in result.scalars().all()]
        return verify_entries(entries)

    def stats(self) -> dict[str, Any]:
        by_mode = Counter(e.execution_mode.value for e in self._entries)
        by_type = Counter(e.action_type.value for e in self._entries)
        succeeded = sum(1 for e in self._entries if e.success)
        return {
            "total_entries": len(self._entries),
            "succeeded": succeeded,
            "failed": len(self._entries) - succeeded,
            "user_approved": sum(1 for e in self._entries if e.user_approved),
            "by_mode": dict(by_mode),
            "by_action_type": dict(by_type),
            "latest_sequence": self._entries[-1].sequence if self._entries else 0,
            "latest_hash": self._entries[-1].entry_hash if self._entries else GENESIS_HASH,
        }

"""Audit Module - tamper-evident record of executed actions."""

from .log import GENESIS_HASH, AuditLog, compute_entry_hash, verify_entries
from .models import ExecutionAuditRecord

__all__ = [
    "GENESIS_HASH",
    "AuditLog",
    "compute_entry_hash",
    "verify_entries",
    "ExecutionAuditRecord",
]

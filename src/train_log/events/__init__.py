"""Audit events for the transaction feed."""

from train_log.events.publisher import AuditFeed
from train_log.events.types import AuditAction, AuditEvent

__all__ = ["AuditAction", "AuditEvent", "AuditFeed"]

"""Shared utility functions and models for the PU Connect client core."""

from pu_connect.utils.audit import AuditEvent, log_audit_event

__all__ = [
    "AuditEvent",
    "log_audit_event",
]

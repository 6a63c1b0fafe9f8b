"""
Structured Audit Logging Utility.

Every account-level state change (registration, profile self-heal,
sign-out) is logged as one structured JSON object through the injected
``StructuredLogger``.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field

from pu_connect.logger import StructuredLogger

__all__ = ["AuditEvent", "log_audit_event"]

# Flat scalar values only; nested structures belong in their own model.
DetailValue = Union[str, int, float, bool, None]


class AuditEvent(BaseModel):
    """Schema-validated representation of a single audit trail entry."""

    timestamp: str
    action: str
    entity_type: str
    entity_id: str
    user_id: str
    details: dict[str, DetailValue] = Field(default_factory=dict)


def log_audit_event(
    logger: StructuredLogger,
    action: str,
    entity_type: str,
    entity_id: str,
    user_id: str,
    details: Optional[dict[str, DetailValue]] = None,
) -> AuditEvent:
    """Validate and log a structured JSON audit event.

    Args:
        logger: The logger instance to write to.
        action: What happened (e.g. ``"SIGN_UP"``, ``"PROFILE_SELF_HEAL"``).
        entity_type: Type of entity affected (e.g. ``"Profile"``).
        entity_id: Primary key of the affected entity.
        user_id: ID of the user who performed the action.
        details: Optional additional context.

    Returns:
        The validated event, for callers that want to inspect it.
    """
    event = AuditEvent(
        timestamp=datetime.now(timezone.utc).isoformat(),
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        details=details or {},
    )
    logger.info("AUDIT: %s", json.dumps(event.model_dump(), default=str))
    return event

# Overview: Best-effort audit fact recording, decoupled from business transactions.

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditLog

logger = logging.getLogger(__name__)

ACTION_CREATE = "CREATE"
ACTION_UPDATE = "UPDATE"
ACTION_APPROVE = "APPROVE"
ACTION_REJECT = "REJECT"
ACTION_DELETE = "DELETE"
ACTION_PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
ACTION_STOCK_MOVEMENT = "STOCK_MOVEMENT"

"""
Audit invariants

- Audit rows are appended AFTER the business transaction has committed.
- A failed audit write is logged and swallowed; it never undoes the
  business change it describes.
- Callers pass plain JSON-able details (no ORM objects, no Decimals).
"""


def record(
    *,
    actor_id: int | None,
    action: str,
    entity_type: str,
    entity_id: int,
    details: dict | None = None,
) -> AuditLog | None:
    """Append one audit fact in its own short transaction."""
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=_jsonable(details or {}),
    )
    try:
        db.session.add(entry)
        db.session.commit()
        return entry
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Audit write failed: %s %s %s", action, entity_type, entity_id)
        return None


def list_entries(*, entity_type: str, entity_id: int) -> list[AuditLog]:
    return (
        db.session.query(AuditLog)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(AuditLog.id)
        .all()
    )


def _jsonable(value):
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from app.db import Base
from app.models import AuditActorType, AuditLog

logger = logging.getLogger("app.audit")


def _entity_ref(entity: Base | None) -> tuple[str | None, str | None]:
    if entity is None:
        return None, None
    entity_id = getattr(entity, "id", None)
    return entity.__tablename__, (str(entity_id) if entity_id is not None else None)


def record_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str | int,
    action: str,
    entity: Base | None = None,
    success: bool = True,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    """Persist an audit row in its own commit.

    Runs after the business transaction has been committed, so a failed audit
    write is logged and swallowed instead of undoing the attendance or leave
    change it describes.
    """
    entity_type, entity_id = _entity_ref(entity)
    fields = {
        "request_id": request_id,
        "action": action,
        "actor_type": actor_type.value,
        "actor_id": str(actor_id),
        "entity_type": entity_type,
        "entity_id": entity_id,
        "success": success,
    }

    db.add(
        AuditLog(
            ts_utc=datetime.now(timezone.utc),
            actor_type=actor_type,
            actor_id=str(actor_id),
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            success=success,
            details=details or {},
        )
    )
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("audit_log_write_failed", extra=fields)
        return

    logger.info("audit_event", extra={**fields, "details": details or {}})

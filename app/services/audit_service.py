from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import AuditLog, AuthEvent

logger = logging.getLogger(__name__)


def log_auth_event(
    db: Session,
    *,
    attempted_username: str,
    success: bool,
    ip: str | None,
    user_agent: str | None,
    principal_id: int | None = None,
    failure_reason: str | None = None,
) -> None:
    db.add(
        AuthEvent(
            attempted_username=attempted_username,
            success=success,
            failure_reason=failure_reason,
            principal_id=principal_id,
            ip=ip,
            user_agent=user_agent,
        )
    )
    if not success:
        logger.warning(
            'Login rejected',
            extra={'attempted_username': attempted_username, 'failure_reason': failure_reason, 'ip': ip},
        )


def log_audit(
    db: Session,
    *,
    actor_principal_id: int | None,
    action: str,
    ip: str | None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    metadata: dict | None = None,
) -> AuditLog:
    entry = AuditLog(
        actor_principal_id=actor_principal_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        ip=ip,
        meta=metadata or {},
    )
    db.add(entry)
    return entry


def audit_trail(db: Session, *, entity_type: str, entity_id: int, limit: int = 50) -> list[dict]:
    rows = db.execute(
        select(AuditLog)
        .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
        .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
        .limit(limit)
    ).scalars().all()
    return [
        {
            'action': row.action,
            'actor_principal_id': row.actor_principal_id,
            'metadata': row.meta,
            'created_at': row.created_at,
        }
        for row in rows
    ]

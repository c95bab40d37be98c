# Overview: Service-layer operations for audit logging; encapsulates business logic and database work.

"""
Audit Log Invariants

- Append-only. Rows are written inside the same DB transaction as the change
  they describe; callers own the commit.
- Action names are dotted and prefixed by area: auth., member., membership.,
  user. Retention cleanup (maintenance_service) keys off the prefix.
- Client context (IP, user agent) is captured automatically when called
  inside a request.
"""

from __future__ import annotations

from typing import Any

from flask import has_request_context, request

from ..extensions import db
from ..models import AuditLog
from registry.time_utils import utcnow


def append_audit_log(
    *,
    action: str,
    actor_user_id: int | None = None,
    target_type: str | None = None,
    target_id: int | str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog:
    ip_address = None
    user_agent = None
    if has_request_context():
        ip_address = request.remote_addr
        user_agent = request.headers.get("User-Agent")

    entry = AuditLog(
        actor_user_id=actor_user_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        details=metadata,
        ip_address=ip_address,
        user_agent=user_agent[:512] if user_agent else None,
        occurred_at=utcnow(),
    )
    db.session.add(entry)
    return entry


def list_audit_logs(
    *,
    action_prefix: str | None = None,
    target_type: str | None = None,
    target_id: int | str | None = None,
    limit: int = 200,
) -> list[AuditLog]:
    query = db.session.query(AuditLog)
    if action_prefix:
        query = query.filter(AuditLog.action.like(f"{action_prefix}%"))
    if target_type:
        query = query.filter(AuditLog.target_type == target_type)
    if target_id is not None:
        query = query.filter(AuditLog.target_id == str(target_id))
    return query.order_by(AuditLog.occurred_at.desc(), AuditLog.id.desc()).limit(limit).all()

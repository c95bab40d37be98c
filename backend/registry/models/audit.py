from __future__ import annotations

from ..extensions import db
from registry.time_utils import to_utc_z


class AuditLog(db.Model):
    """
    Administrative and security audit trail.

    Action names are dotted and prefixed by area (auth., member., membership.,
    user.); maintenance_service applies retention per prefix.

    IMMUTABLE: Never update. Rows are only removed by retention cleanup.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_action_occurred", "action", "occurred_at"),
        db.Index("ix_audit_logs_target", "target_type", "target_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Nullable for system actions (webhooks, imports run from the CLI)
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    action = db.Column(db.String(64), nullable=False)
    target_type = db.Column(db.String(32), nullable=True)
    target_id = db.Column(db.String(64), nullable=True)

    # "metadata" is reserved on declarative models
    details = db.Column("metadata", db.JSON, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_user_id": self.actor_user_id,
            "action": self.action,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "metadata": self.details,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class PaymentWebhookEvent(db.Model):
    """Processed payment-provider event ids, for replay protection."""
    __tablename__ = "payment_webhook_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    provider_event_id = db.Column(db.String(255), nullable=False, unique=True)
    event_type = db.Column(db.String(64), nullable=False)
    received_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

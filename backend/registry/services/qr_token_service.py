# Overview: Service-layer operations for attendance QR tokens; encapsulates business logic and database work.

from __future__ import annotations

import secrets

from ..extensions import db
from ..models import User


def generate_qr_token() -> str:
    """32 random bytes, base64url without padding (43 characters)."""
    return secrets.token_urlsafe(32)


def ensure_user_has_qr_token(user_id: int) -> str:
    """
    Return the user's QR token, issuing one if the user has none yet.

    The conditional UPDATE only fills a NULL column, so two concurrent callers
    both end up reading the same token.
    """
    user = db.session.get(User, user_id)
    if user is None:
        raise ValueError("User not found")
    if user.qr_token:
        return user.qr_token

    db.session.query(User).filter(
        User.id == user_id,
        User.qr_token.is_(None),
    ).update({User.qr_token: generate_qr_token()}, synchronize_session=False)
    db.session.commit()

    db.session.refresh(user)
    return user.qr_token


def regenerate_qr_token(user_id: int) -> str:
    """Replace the user's token; previously printed codes stop working."""
    user = db.session.get(User, user_id)
    if user is None:
        raise ValueError("User not found")
    user.qr_token = generate_qr_token()
    db.session.commit()
    return user.qr_token


def verify_qr_token(token: str | None) -> User | None:
    if not token or not token.strip():
        return None
    return db.session.query(User).filter_by(qr_token=token.strip()).first()

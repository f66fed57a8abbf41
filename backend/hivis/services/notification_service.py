# Overview: Fire-and-forget member notifications; never part of a points unit of work.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Notification, User


KIND_TIER_UPGRADE = "tier_upgrade"
KIND_POINTS_EARNED = "points_earned"
KIND_PUNCH_CARD = "punch_card"
KIND_STREAK_REWARD = "streak_reward"
KIND_REDEMPTION = "redemption"
KIND_REFERRAL = "referral"
KIND_ANNOUNCEMENT = "announcement"

SINKS_EXTENSION_KEY = "hivis_notification_sinks"


@dataclass(frozen=True)
class PendingNotification:
    """Notification decided inside a unit of work, sent after it commits."""
    user_id: int
    title: str
    message: str
    kind: str


def register_sink(app, sink) -> None:
    """
    Attach an external dispatcher (push, email, ...).

    sink(user_id, title, message, kind) is called after the in-app inbox row
    is written. Exceptions are logged and swallowed.
    """
    app.extensions.setdefault(SINKS_EXTENSION_KEY, []).append(sink)


def notify(user_id: int, title: str, message: str, kind: str) -> bool:
    """
    Write an inbox notification and fan out to registered sinks.

    Returns False on failure; never raises, so callers can fire it after a
    points commit without risking the award.
    """
    ok = True
    try:
        db.session.add(Notification(user_id=user_id, title=title, message=message, kind=kind))
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.warning("Failed to store %s notification for user %s", kind, user_id, exc_info=True)
        ok = False

    for sink in current_app.extensions.get(SINKS_EXTENSION_KEY, []):
        try:
            sink(user_id, title, message, kind)
        except Exception:
            current_app.logger.warning("Notification sink %r failed for user %s", sink, user_id, exc_info=True)
            ok = False
    return ok


def dispatch(pending: list[PendingNotification]) -> int:
    """Send notifications collected during a committed unit of work; returns how many succeeded."""
    sent = 0
    for n in pending:
        if notify(n.user_id, n.title, n.message, n.kind):
            sent += 1
    return sent


def list_notifications(user_id: int, limit: int = 50) -> list[dict]:
    rows = (
        db.session.query(Notification)
        .filter_by(user_id=user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )
    return [n.to_dict() for n in rows]


def mark_read(notification_id: int, user_id: int) -> bool:
    n = db.session.query(Notification).filter_by(id=notification_id, user_id=user_id).first()
    if not n:
        return False
    n.is_read = True
    db.session.commit()
    return True


def broadcast(title: str, message: str, kind: str, user_ids: list[int] | None = None) -> int:
    """Admin announcement to the given members, or to everyone when user_ids is None."""
    q = db.session.query(User.id)
    if user_ids is not None:
        q = q.filter(User.id.in_(user_ids))
    ids = [row.id for row in q.order_by(User.id).all()]
    sent = dispatch([PendingNotification(user_id=i, title=title, message=message, kind=kind) for i in ids])
    current_app.logger.info("Broadcast %r to %s member(s)", title, sent)
    return sent

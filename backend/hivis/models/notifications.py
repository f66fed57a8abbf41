from __future__ import annotations

from ..extensions import db
from hivis.time_utils import to_utc_z


class Notification(db.Model):
    """
    In-app inbox message for a member.

    Written by the default notification sink after the points unit of work
    has committed, so a failed insert here never undoes an award.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    kind = db.Column(db.String(32), nullable=False)  # tier_upgrade, points_earned, punch_card, streak_reward, redemption, referral
    is_read = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
            "kind": self.kind,
            "is_read": self.is_read,
            "created_at": to_utc_z(self.created_at),
        }

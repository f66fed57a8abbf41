from __future__ import annotations

from ..extensions import db
from hivis.time_utils import to_utc_z, to_iso_date


TIER_APPRENTICE = "apprentice"
TIER_TRADIE = "tradie"
TIER_FOREMAN = "foreman"

# Ordered lowest -> highest; tiers only ever move right.
TIER_ORDER = [TIER_APPRENTICE, TIER_TRADIE, TIER_FOREMAN]


class User(db.Model):
    """
    Loyalty member.

    The loyalty columns (total_points, loyalty_tier, punch_card_progress,
    current_streak, streak_reward_earned, last_purchase_date) are a cache over
    the points ledger. They are written only by award_service and
    redemption_service; profile code must never touch them.

    version_id enables optimistic locking so two concurrent awards for the
    same member cannot both commit a stale read-modify-write of total_points.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_suburb_points", "suburb", "total_points"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    first_name = db.Column(db.String(128), nullable=True)
    last_name = db.Column(db.String(128), nullable=True)
    suburb = db.Column(db.String(128), nullable=True, index=True)
    is_admin = db.Column(db.Boolean, nullable=False, default=False)

    # Matching keys for external transactions
    card_number = db.Column(db.String(64), nullable=True, unique=True)
    phone_number = db.Column(db.String(32), nullable=True, index=True)

    # Loyalty state (ledger-derived)
    total_points = db.Column(db.Integer, nullable=False, default=0)
    loyalty_tier = db.Column(db.String(16), nullable=False, default=TIER_APPRENTICE)
    punch_card_progress = db.Column(db.Integer, nullable=False, default=0)
    current_streak = db.Column(db.Integer, nullable=False, default=0)
    streak_reward_earned = db.Column(db.Boolean, nullable=False, default=False)
    last_purchase_date = db.Column(db.Date, nullable=True)

    # Referral state
    referral_code = db.Column(db.String(6), nullable=True, unique=True)
    referred_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    referral_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) if parts else self.email

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "suburb": self.suburb,
            "is_admin": self.is_admin,
            "card_number": self.card_number,
            "total_points": self.total_points,
            "loyalty_tier": self.loyalty_tier,
            "punch_card_progress": self.punch_card_progress,
            "current_streak": self.current_streak,
            "streak_reward_earned": self.streak_reward_earned,
            "last_purchase_date": to_iso_date(self.last_purchase_date),
            "referral_code": self.referral_code,
            "referred_by": self.referred_by,
            "referral_count": self.referral_count,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

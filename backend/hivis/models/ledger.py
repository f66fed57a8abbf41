from __future__ import annotations

from ..extensions import db
from hivis.time_utils import to_utc_z


TYPE_PURCHASE = "purchase"
TYPE_REDEMPTION = "redemption"
TYPE_BONUS = "bonus"
VALID_TRANSACTION_TYPES = {TYPE_PURCHASE, TYPE_REDEMPTION, TYPE_BONUS}


class PointsTransaction(db.Model):
    """
    Append-only ledger of point events.

    TRANSACTION TYPES:
    - purchase: points earned from a matched purchase or scan
    - redemption: points spent on a catalog reward (negative)
    - bonus: punch card, streak and referral bonuses (>= 0)

    IMMUTABLE: Records are never deleted. The only mutation ever applied is
    the one-way claim transition is_redeemed False -> True (with redeemed_at),
    done by redemption_service.validate_and_claim.

    users.total_points must always equal SUM(points) for the member.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)  # purchase, redemption, bonus
    points = db.Column(db.Integer, nullable=False)  # Positive for earned, negative for spent
    description = db.Column(db.Text, nullable=False)

    machine_id = db.Column(db.String(64), nullable=True)
    external_transaction_id = db.Column(db.String(128), nullable=True, index=True)
    amount = db.Column(db.Integer, nullable=True)  # cents, audit copy
    card_number = db.Column(db.String(64), nullable=True)
    is_auto_generated = db.Column(db.Boolean, nullable=False, default=False)

    # Claimable reward token (redemptions and non-point streak rewards)
    redemption_code = db.Column(db.String(64), nullable=True, unique=True)
    is_redeemed = db.Column(db.Boolean, nullable=False, default=False)
    redeemed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    user = db.relationship("User", backref=db.backref("transactions", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "points": self.points,
            "description": self.description,
            "machine_id": self.machine_id,
            "external_transaction_id": self.external_transaction_id,
            "amount": self.amount,
            "card_number": self.card_number,
            "is_auto_generated": self.is_auto_generated,
            "redemption_code": self.redemption_code,
            "is_redeemed": self.is_redeemed,
            "redeemed_at": to_utc_z(self.redeemed_at),
            "created_at": to_utc_z(self.created_at),
        }


class ExternalTransaction(db.Model):
    """
    Raw purchase event from a vending/POS source, pending attribution.

    external_id is unique across all sources and is the idempotence key for
    intake. is_processed flips False -> True exactly once, either by the
    automatic matcher or by an admin manual match. Rows are never deleted.
    """
    __tablename__ = "external_transactions"
    __table_args__ = (
        db.UniqueConstraint("external_id", name="uq_external_transactions_external_id"),
        db.Index("ix_external_transactions_processed", "is_processed", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    external_id = db.Column(db.String(128), nullable=False)
    source = db.Column(db.String(32), nullable=False, default="manual")

    machine_id = db.Column(db.String(64), nullable=False)
    card_number = db.Column(db.String(64), nullable=True, index=True)
    phone_number = db.Column(db.String(32), nullable=True)
    amount = db.Column(db.Integer, nullable=False)  # cents
    product_name = db.Column(db.String(255), nullable=False)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False)

    is_processed = db.Column(db.Boolean, nullable=False, default=False)
    matched_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    matched_user = db.relationship("User", backref=db.backref("external_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "external_id": self.external_id,
            "source": self.source,
            "machine_id": self.machine_id,
            "card_number": self.card_number,
            "phone_number": self.phone_number,
            "amount": self.amount,
            "product_name": self.product_name,
            "timestamp": to_utc_z(self.timestamp),
            "is_processed": self.is_processed,
            "matched_user_id": self.matched_user_id,
            "processed_at": to_utc_z(self.processed_at),
            "created_at": to_utc_z(self.created_at),
        }

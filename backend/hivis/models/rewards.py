from __future__ import annotations

from ..extensions import db
from hivis.time_utils import to_utc_z


CATEGORY_DRINK = "drink"
CATEGORY_SNACK = "snack"
CATEGORY_BONUS = "bonus"
VALID_REWARD_CATEGORIES = {CATEGORY_DRINK, CATEGORY_SNACK, CATEGORY_BONUS}


class Reward(db.Model):
    """
    Catalog item members can buy with points.

    Static configuration: rows are seeded/edited by admins, never by the
    points engine. Deactivated rewards stay for ledger descriptions.
    """
    __tablename__ = "rewards"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    points_cost = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(16), nullable=False)  # drink, snack, bonus
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "points_cost": self.points_cost,
            "category": self.category,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }

# Overview: Reward catalog, point redemption and single-use claim of redemption codes.

"""
Reward Redemption

Two steps, performed by different people:

1. redeem(user_id, reward_id): the member spends points. One ledger entry
   (type=redemption, negative points, unique claim code) and the balance
   decrement commit together.
2. validate_and_claim(code): an operator at the machine consumes the code.
   The is_redeemed flip is a conditional UPDATE (compare-and-set), so two
   operators validating the same code at once get exactly one success.

Redemption never re-evaluates tier: spending points does not demote.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import PointsTransaction, Reward, User
from ..models.ledger import TYPE_REDEMPTION
from ..models.rewards import CATEGORY_DRINK, CATEGORY_SNACK, CATEGORY_BONUS
from hivis.time_utils import utcnow, to_utc_z
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import post_entry, get_by_redemption_code
from .loyalty_policy import LoyaltyPolicy
from .notification_service import PendingNotification, dispatch, KIND_REDEMPTION
from .redemption_codes import generate_unique_code


DEFAULT_REWARDS = [
    {"name": "Free Small Drink", "description": "Any 250ml-375ml can or bottle", "points_cost": 100, "category": CATEGORY_DRINK},
    {"name": "Free Snack", "description": "Any chips, bar or biscuit pack", "points_cost": 150, "category": CATEGORY_SNACK},
    {"name": "Free Large Drink", "description": "Any 600ml-750ml drink", "points_cost": 200, "category": CATEGORY_DRINK},
    {"name": "Smoko Combo", "description": "One large drink and one snack", "points_cost": 300, "category": CATEGORY_BONUS},
]


class RedemptionError(Exception):
    """Base class for redemption failures."""


class RewardNotFoundError(RedemptionError):
    pass


class InsufficientPointsError(RedemptionError):
    def __init__(self, available: int, required: int):
        super().__init__(f"Insufficient points: {available} available, {required} required")
        self.available = available
        self.required = required


class CodeNotFoundError(RedemptionError):
    """Unknown redemption code."""


class AlreadyClaimedError(RedemptionError):
    """Code exists but was already consumed."""


@dataclass
class RedeemResult:
    redemption_code: str
    transaction_id: int
    reward_name: str
    points_spent: int
    total_points: int

    def to_dict(self) -> dict:
        return {
            "redemption_code": self.redemption_code,
            "transaction_id": self.transaction_id,
            "reward_name": self.reward_name,
            "points_spent": self.points_spent,
            "total_points": self.total_points,
        }


@dataclass
class ClaimResult:
    user_id: int
    customer_name: str
    reward: str
    redeemed_at: datetime

    def to_dict(self) -> dict:
        return {
            "valid": True,
            "user_id": self.user_id,
            "customer_name": self.customer_name,
            "reward": self.reward,
            "redeemed_at": to_utc_z(self.redeemed_at),
        }


def list_rewards(include_inactive: bool = False) -> list[Reward]:
    q = db.session.query(Reward)
    if not include_inactive:
        q = q.filter(Reward.is_active.is_(True))
    return q.order_by(Reward.points_cost.asc(), Reward.id.asc()).all()


def redeem(user_id: int, reward_id: int, policy: LoyaltyPolicy | None = None) -> RedeemResult:
    """
    Spend points on a catalog reward and issue a claim code.

    Raises:
        RewardNotFoundError: reward missing or inactive
        InsufficientPointsError: balance below cost (no state change)
        RedemptionError: unknown member
    """
    policy = policy or LoyaltyPolicy.from_config(current_app.config)

    def _op():
        reward = db.session.query(Reward).filter_by(id=reward_id, is_active=True).first()
        if not reward:
            raise RewardNotFoundError(f"Reward {reward_id} not found")

        user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
        if not user:
            raise RedemptionError(f"User {user_id} not found")

        balance = user.total_points or 0
        if balance < reward.points_cost:
            raise InsufficientPointsError(balance, reward.points_cost)

        code = generate_unique_code(policy.redemption_code_prefix, timestamped=True)
        entry = post_entry(
            user,
            type=TYPE_REDEMPTION,
            points=-reward.points_cost,
            description=f"Redeemed: {reward.name}",
            redemption_code=code,
        )
        db.session.commit()
        return RedeemResult(
            redemption_code=code,
            transaction_id=entry.id,
            reward_name=reward.name,
            points_spent=reward.points_cost,
            total_points=user.total_points,
        ), reward.name

    try:
        result, reward_name = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "User %s redeemed %s for %s points (code %s)",
        user_id, reward_name, result.points_spent, result.redemption_code,
    )
    dispatch([PendingNotification(
        user_id=user_id,
        title="Reward Redeemed!",
        message=f"Your {reward_name} is ready! Show code {result.redemption_code} at any Hi-Vis vending machine.",
        kind=KIND_REDEMPTION,
    )])
    return result


def validate_and_claim(code: str) -> ClaimResult:
    """
    Consume a redemption or streak code at the point of sale.

    Raises:
        CodeNotFoundError: no ledger entry carries this code
        AlreadyClaimedError: the code was consumed before (or concurrently)
    """
    code = (code or "").strip()
    if not code:
        raise CodeNotFoundError("Invalid redemption code")

    def _op():
        entry = get_by_redemption_code(code)
        if not entry:
            raise CodeNotFoundError("Invalid redemption code")
        if entry.is_redeemed:
            raise AlreadyClaimedError("Code already used")

        now = utcnow()
        # Compare-and-set: only one caller can move is_redeemed from False to True.
        result = db.session.execute(
            update(PointsTransaction)
            .where(
                PointsTransaction.redemption_code == code,
                PointsTransaction.is_redeemed.is_(False),
            )
            .values(is_redeemed=True, redeemed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise AlreadyClaimedError("Code already used")
        db.session.commit()
        return entry.user_id, entry.description, now

    try:
        user_id, description, redeemed_at = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    user = db.session.get(User, user_id)
    current_app.logger.info("Claimed code %s for user %s", code, user_id)
    return ClaimResult(
        user_id=user_id,
        customer_name=user.display_name if user else "",
        reward=description,
        redeemed_at=redeemed_at,
    )


def seed_default_rewards(rewards: list[dict] | None = None) -> int:
    """Insert catalog rewards that don't exist yet (matched by name). Returns count added."""
    added = 0
    for item in rewards or DEFAULT_REWARDS:
        exists = db.session.query(Reward.id).filter_by(name=item["name"]).first()
        if exists:
            continue
        db.session.add(Reward(
            name=item["name"],
            description=item.get("description"),
            points_cost=item["points_cost"],
            category=item.get("category", CATEGORY_DRINK),
            is_active=item.get("is_active", True),
        ))
        added += 1
    db.session.commit()
    return added

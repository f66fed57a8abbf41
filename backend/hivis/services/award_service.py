# Overview: Points award engine; the single writer of earned points and the loyalty state derived from them.

"""
Points Award Engine

WHY: Every way a member earns points (matched vending purchase, admin manual
match, QR scan, referral) funnels through here so the side effects of an
award are identical no matter where it came from.

One award is one DB transaction:
1. purchase ledger entry + balance increment (ledger_service.post_entry)
2. tier promotion check (upward only)
3. punch card progress; on completion a bonus entry, reset, tier re-check
4. daily streak; at the threshold a claimable zero-point streak reward
5. monthly season accumulation + suburb re-rank

Notifications are collected during the unit of work and dispatched only
after commit. The engine has no idempotence key of its own: callers that
replay external events must guard with the external transaction's
is_processed flag (see matcher_service).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from flask import current_app

from ..extensions import db
from ..models import User
from ..models.ledger import TYPE_PURCHASE, TYPE_BONUS
from hivis.time_utils import business_date, utcnow
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import post_entry
from .loyalty_policy import LoyaltyPolicy, promoted_tier
from .notification_service import (
    PendingNotification,
    dispatch,
    KIND_POINTS_EARNED,
    KIND_PUNCH_CARD,
    KIND_STREAK_REWARD,
    KIND_TIER_UPGRADE,
)
from .redemption_codes import generate_unique_code
from . import season_service


PUNCH_CARD_DESCRIPTION = "Punch card completed"
STREAK_REWARD_DESCRIPTION = "Streak reward: free item"


class AwardError(Exception):
    """Raised when an award request is invalid (unknown member, negative points)."""


@dataclass
class AwardResult:
    user_id: int
    points_earned: int
    bonus_points: int
    total_points: int
    previous_tier: str
    loyalty_tier: str
    punch_card_progress: int
    punch_card_completed: bool
    current_streak: int
    streak_reward_code: str | None
    transaction_id: int | None
    bonus_transaction_ids: list[int] = field(default_factory=list)
    monthly_points: int | None = None
    monthly_rank: int | None = None
    notifications: list[PendingNotification] = field(default_factory=list)

    @property
    def tier_upgraded(self) -> bool:
        return self.previous_tier != self.loyalty_tier

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "points_earned": self.points_earned,
            "bonus_points": self.bonus_points,
            "total_points": self.total_points,
            "previous_tier": self.previous_tier,
            "loyalty_tier": self.loyalty_tier,
            "tier_upgraded": self.tier_upgraded,
            "punch_card_progress": self.punch_card_progress,
            "punch_card_completed": self.punch_card_completed,
            "current_streak": self.current_streak,
            "streak_reward_code": self.streak_reward_code,
            "transaction_id": self.transaction_id,
            "bonus_transaction_ids": self.bonus_transaction_ids,
            "monthly_points": self.monthly_points,
            "monthly_rank": self.monthly_rank,
        }


def current_policy() -> LoyaltyPolicy:
    return LoyaltyPolicy.from_config(current_app.config)


def prepare_season(now: datetime | None = None, policy: LoyaltyPolicy | None = None):
    """
    Make sure this month's season exists before a unit of work starts.

    Season rotation commits on its own, so it must run before the award's
    transaction, never inside it.
    """
    policy = policy or current_policy()
    today = business_date(now or utcnow(), policy.timezone)
    return season_service.ensure_current_season(today)


def _evaluate_tier(user: User, policy: LoyaltyPolicy, pending: list[PendingNotification]) -> None:
    new_tier = promoted_tier(user.loyalty_tier, user.total_points or 0, policy)
    if not new_tier:
        return
    current_app.logger.info(
        "User %s promoted %s -> %s at %s points",
        user.id, user.loyalty_tier, new_tier, user.total_points,
    )
    user.loyalty_tier = new_tier
    pending.append(PendingNotification(
        user_id=user.id,
        title="Tier Upgrade!",
        message=f"Congratulations! You've been promoted to {new_tier.capitalize()}. New rewards unlocked!",
        kind=KIND_TIER_UPGRADE,
    ))


def _advance_streak(user: User, today: date) -> int:
    last = user.last_purchase_date
    if last == today:
        streak = user.current_streak or 1
    elif last is not None and last == today - timedelta(days=1):
        streak = (user.current_streak or 0) + 1
    else:
        streak = 1
    user.current_streak = streak
    user.last_purchase_date = today
    return streak


def apply_award(
    user_id: int,
    points_earned: int,
    description: str,
    *,
    season,
    policy: LoyaltyPolicy,
    now: datetime,
    external_transaction_id: str | None = None,
    machine_id: str | None = None,
    amount: int | None = None,
    card_number: str | None = None,
    is_auto_generated: bool = False,
) -> AwardResult:
    """
    Steps 1-5 of an award inside the caller's unit of work (no commit).

    Public for callers that must bundle the award with their own writes in
    one transaction (matcher_service marks the external row processed).
    Everyone else should call award().
    """
    if isinstance(points_earned, bool) or not isinstance(points_earned, int) or points_earned < 0:
        raise AwardError("points_earned must be a non-negative integer")

    user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
    if not user:
        raise AwardError(f"User {user_id} not found")

    pending: list[PendingNotification] = []
    previous_tier = user.loyalty_tier
    bonus_ids: list[int] = []
    bonus_points = 0

    purchase = post_entry(
        user,
        type=TYPE_PURCHASE,
        points=points_earned,
        description=description,
        machine_id=machine_id,
        external_transaction_id=external_transaction_id,
        amount=amount,
        card_number=card_number,
        is_auto_generated=is_auto_generated,
        occurred_at=now,
    )
    _evaluate_tier(user, policy, pending)

    # Punch card
    progress = (user.punch_card_progress or 0) + 1
    punch_completed = progress >= policy.punch_card_target
    if punch_completed:
        bonus = post_entry(
            user,
            type=TYPE_BONUS,
            points=policy.punch_card_bonus_points,
            description=PUNCH_CARD_DESCRIPTION,
            occurred_at=now,
        )
        bonus_ids.append(bonus.id)
        bonus_points += policy.punch_card_bonus_points
        progress = 0
        pending.append(PendingNotification(
            user_id=user.id,
            title="Punch Card Complete!",
            message=f"You filled your punch card and earned {policy.punch_card_bonus_points} bonus points.",
            kind=KIND_PUNCH_CARD,
        ))
        _evaluate_tier(user, policy, pending)
    user.punch_card_progress = progress

    # Daily streak
    today = business_date(now, policy.timezone)
    streak = _advance_streak(user, today)
    streak_code = None
    if streak >= policy.streak_reward_days and not user.streak_reward_earned:
        user.streak_reward_earned = True
        streak_code = generate_unique_code(policy.streak_code_prefix)
        reward = post_entry(
            user,
            type=TYPE_BONUS,
            points=0,
            description=STREAK_REWARD_DESCRIPTION,
            redemption_code=streak_code,
            occurred_at=now,
        )
        bonus_ids.append(reward.id)
        pending.append(PendingNotification(
            user_id=user.id,
            title="Streak Reward Unlocked!",
            message=f"{streak} days in a row! Show code {streak_code} at any Hi-Vis machine for a free item.",
            kind=KIND_STREAK_REWARD,
        ))

    # Season accumulation counts every point-earning entry of this award
    monthly = season_service.record_monthly_points(user.id, user.suburb, points_earned + bonus_points, season)

    pending.insert(0, PendingNotification(
        user_id=user.id,
        title="Points Earned!",
        message=f"You earned {points_earned} points. {description}",
        kind=KIND_POINTS_EARNED,
    ))

    db.session.flush()
    return AwardResult(
        user_id=user.id,
        points_earned=points_earned,
        bonus_points=bonus_points,
        total_points=user.total_points,
        previous_tier=previous_tier,
        loyalty_tier=user.loyalty_tier,
        punch_card_progress=user.punch_card_progress,
        punch_card_completed=punch_completed,
        current_streak=user.current_streak,
        streak_reward_code=streak_code,
        transaction_id=purchase.id,
        bonus_transaction_ids=bonus_ids,
        monthly_points=monthly.points,
        monthly_rank=monthly.rank,
        notifications=pending,
    )


def award(
    user_id: int,
    points_earned: int,
    description: str,
    *,
    external_transaction_id: str | None = None,
    machine_id: str | None = None,
    amount: int | None = None,
    card_number: str | None = None,
    is_auto_generated: bool = False,
    now: datetime | None = None,
    policy: LoyaltyPolicy | None = None,
) -> AwardResult:
    """
    Award purchase points to a member as one atomic unit, then notify.

    Raises:
        AwardError: unknown member or invalid points
    """
    policy = policy or current_policy()
    now = now or utcnow()
    season = prepare_season(now, policy)
    season_id = season.id

    def _op():
        season_row = season_service.get_season(season_id)
        result = apply_award(
            user_id,
            points_earned,
            description,
            season=season_row,
            policy=policy,
            now=now,
            external_transaction_id=external_transaction_id,
            machine_id=machine_id,
            amount=amount,
            card_number=card_number,
            is_auto_generated=is_auto_generated,
        )
        db.session.commit()
        return result

    try:
        result = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Awarded %s (+%s bonus) points to user %s; balance %s",
        result.points_earned, result.bonus_points, result.user_id, result.total_points,
    )
    dispatch(result.notifications)
    return result


def apply_bonus(
    user_id: int,
    points: int,
    description: str,
    *,
    season,
    policy: LoyaltyPolicy,
    now: datetime,
    title: str,
    message: str,
    kind: str,
) -> tuple[int, list[PendingNotification]]:
    """
    Credit a non-purchase bonus inside the caller's unit of work.

    Counts toward tier and the monthly season, but not toward punch card or
    streak. Returns (ledger entry id, notifications to send after commit).
    """
    if isinstance(points, bool) or not isinstance(points, int) or points < 0:
        raise AwardError("bonus points must be a non-negative integer")

    user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
    if not user:
        raise AwardError(f"User {user_id} not found")

    pending = [PendingNotification(user_id=user.id, title=title, message=message, kind=kind)]
    entry = post_entry(user, type=TYPE_BONUS, points=points, description=description, occurred_at=now)
    _evaluate_tier(user, policy, pending)
    season_service.record_monthly_points(user.id, user.suburb, points, season)
    return entry.id, pending


def grant_bonus(
    user_id: int,
    points: int,
    description: str,
    *,
    title: str,
    message: str,
    kind: str,
    now: datetime | None = None,
    policy: LoyaltyPolicy | None = None,
) -> int:
    """Standalone bonus credit; commits, then notifies. Returns the entry id."""
    policy = policy or current_policy()
    now = now or utcnow()
    season_id = prepare_season(now, policy).id

    def _op():
        result = apply_bonus(
            user_id, points, description,
            season=season_service.get_season(season_id),
            policy=policy, now=now, title=title, message=message, kind=kind,
        )
        db.session.commit()
        return result

    try:
        entry_id, pending = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise
    current_app.logger.info("Granted %s bonus points to user %s (%s)", points, user_id, description)
    dispatch(pending)
    return entry_id


def reset_streak_rewards(user_ids: list[int] | None = None) -> int:
    """
    Re-arm the streak reward so members can earn it again.

    streak_reward_earned is never cleared by the engine itself; an operator
    runs this (CLI or admin API) when a new reward cycle starts. Existing
    streak codes stay claimable. Returns the number of members reset.
    """
    def _op():
        q = db.session.query(User).filter(User.streak_reward_earned.is_(True))
        if user_ids is not None:
            if not user_ids:
                return 0
            q = q.filter(User.id.in_(user_ids))
        users = lock_for_update(q).all()
        for user in users:
            user.streak_reward_earned = False
        db.session.commit()
        return len(users)

    count = run_with_retry(_op)
    current_app.logger.info("Reset streak reward flag for %s member(s)", count)
    return count

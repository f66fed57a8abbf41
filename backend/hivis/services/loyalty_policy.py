"""
Loyalty Policy
==============

Single source of truth for the program's numeric rules: tier thresholds,
punch card target/bonus, streak reward threshold and referral bonuses.

- No DB access (pure rules).
- Built from Flask config once per call site and passed into the award
  engine, so tests and tools can inject their own thresholds.
- Non-punitive: tiers are never lowered.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Mapping

from ..models.users import TIER_APPRENTICE, TIER_TRADIE, TIER_FOREMAN, TIER_ORDER


@dataclass(frozen=True)
class LoyaltyPolicy:
    tradie_points: int = 500
    foreman_points: int = 1000
    punch_card_target: int = 10
    punch_card_bonus_points: int = 100
    streak_reward_days: int = 3
    referrer_bonus_points: int = 50
    referee_bonus_points: int = 25
    timezone: str = "Australia/Sydney"
    redemption_code_prefix: str = "HIVIS"
    streak_code_prefix: str = "STREAK"

    def __post_init__(self):
        if not (0 < self.tradie_points < self.foreman_points):
            raise ValueError("tier thresholds must satisfy 0 < tradie < foreman")
        if self.punch_card_target < 1:
            raise ValueError("punch_card_target must be >= 1")
        if self.streak_reward_days < 1:
            raise ValueError("streak_reward_days must be >= 1")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "LoyaltyPolicy":
        return cls(
            tradie_points=int(config.get("TIER_TRADIE_POINTS", 500)),
            foreman_points=int(config.get("TIER_FOREMAN_POINTS", 1000)),
            punch_card_target=int(config.get("PUNCH_CARD_TARGET", 10)),
            punch_card_bonus_points=int(config.get("PUNCH_CARD_BONUS_POINTS", 100)),
            streak_reward_days=int(config.get("STREAK_REWARD_DAYS", 3)),
            referrer_bonus_points=int(config.get("REFERRER_BONUS_POINTS", 50)),
            referee_bonus_points=int(config.get("REFEREE_BONUS_POINTS", 25)),
            timezone=config.get("LOYALTY_TIMEZONE", "Australia/Sydney"),
            redemption_code_prefix=config.get("REDEMPTION_CODE_PREFIX", "HIVIS"),
            streak_code_prefix=config.get("STREAK_CODE_PREFIX", "STREAK"),
        )

    def tier_for_points(self, total_points: int) -> str:
        if total_points >= self.foreman_points:
            return TIER_FOREMAN
        if total_points >= self.tradie_points:
            return TIER_TRADIE
        return TIER_APPRENTICE

    def to_dict(self) -> dict:
        return asdict(self)


def tier_rank(tier: str | None) -> int:
    """Position in TIER_ORDER; unknown/None counts as the entry tier."""
    try:
        return TIER_ORDER.index(tier or TIER_APPRENTICE)
    except ValueError:
        return 0


def promoted_tier(current: str | None, total_points: int, policy: LoyaltyPolicy) -> str | None:
    """
    Tier the member should move to, or None if no promotion.

    Only strictly higher tiers are returned; a balance below the current
    tier's threshold (after a redemption) never demotes.
    """
    target = policy.tier_for_points(total_points)
    if tier_rank(target) > tier_rank(current):
        return target
    return None


def next_tier_progress(current: str | None, total_points: int, policy: LoyaltyPolicy) -> dict:
    """Read model for clients: how far the member is from the next tier."""
    thresholds = {TIER_TRADIE: policy.tradie_points, TIER_FOREMAN: policy.foreman_points}
    rank = tier_rank(current)
    if rank >= len(TIER_ORDER) - 1:
        return {"current_tier": TIER_ORDER[-1], "next_tier": None, "points_to_next_tier": None, "is_top_tier": True}
    next_tier = TIER_ORDER[rank + 1]
    return {
        "current_tier": TIER_ORDER[rank],
        "next_tier": next_tier,
        "points_to_next_tier": max(0, thresholds[next_tier] - total_points),
        "is_top_tier": False,
    }

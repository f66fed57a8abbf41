# Overview: Member referral codes and the one-time referral bonus.

from __future__ import annotations

import secrets
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User
from hivis.time_utils import utcnow
from .award_service import apply_bonus, current_policy, prepare_season
from .concurrency import lock_for_update, run_with_retry
from .loyalty_policy import LoyaltyPolicy
from .notification_service import dispatch, KIND_REFERRAL
from .redemption_codes import CODE_ALPHABET
from . import season_service


REFERRAL_CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 10


class ReferralError(Exception):
    """User-facing referral rejection (invalid, own or second code)."""


def _new_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))


def get_or_create_referral_code(user_id: int) -> str:
    """Member's shareable code; assigned on first request."""
    user = db.session.get(User, user_id)
    if not user:
        raise ReferralError(f"User {user_id} not found")
    if user.referral_code:
        return user.referral_code

    for _ in range(MAX_CODE_ATTEMPTS):
        code = _new_code()
        if db.session.query(User.id).filter_by(referral_code=code).first():
            continue
        user.referral_code = code
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            user = db.session.get(User, user_id)
            if user.referral_code:
                return user.referral_code
            continue
        return code
    raise ReferralError("Could not generate a referral code")


def apply_referral_code(
    user_id: int,
    code: str,
    *,
    now: datetime | None = None,
    policy: LoyaltyPolicy | None = None,
) -> dict:
    """
    Redeem a friend's referral code once per member.

    Both bonuses, referred_by and the referrer's count commit together.

    Raises:
        ReferralError: unknown member, already referred, invalid or own code
    """
    policy = policy or current_policy()
    now = now or utcnow()
    code = (code or "").strip().upper()
    if not code:
        raise ReferralError("Invalid referral code")
    season_id = prepare_season(now, policy).id

    def _op():
        referee = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
        if not referee:
            raise ReferralError(f"User {user_id} not found")
        if referee.referred_by:
            raise ReferralError("You have already used a referral code")

        referrer = lock_for_update(db.session.query(User).filter_by(referral_code=code)).first()
        if not referrer:
            raise ReferralError("Invalid referral code")
        if referrer.id == referee.id:
            raise ReferralError("Cannot use your own referral code")

        referee.referred_by = referrer.id
        referrer.referral_count = (referrer.referral_count or 0) + 1

        season = season_service.get_season(season_id)
        _, pending_referrer = apply_bonus(
            referrer.id, policy.referrer_bonus_points, "Referral bonus - Friend joined",
            season=season, policy=policy, now=now,
            title="Referral Bonus!",
            message=f"A friend joined with your code. You earned {policy.referrer_bonus_points} points.",
            kind=KIND_REFERRAL,
        )
        _, pending_referee = apply_bonus(
            referee.id, policy.referee_bonus_points, "Welcome bonus - Used referral code",
            season=season, policy=policy, now=now,
            title="Welcome Bonus!",
            message=f"Thanks for joining through a friend. You earned {policy.referee_bonus_points} points.",
            kind=KIND_REFERRAL,
        )
        db.session.commit()
        return referrer.id, pending_referrer + pending_referee

    try:
        referrer_id, pending = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info("User %s used referral code of user %s", user_id, referrer_id)
    dispatch(pending)
    return {
        "referrer_id": referrer_id,
        "referrer_bonus": policy.referrer_bonus_points,
        "referee_bonus": policy.referee_bonus_points,
    }

# Overview: Member profiles, card linking and direct QR scans.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User
from ..validation import ConflictError, ValidationError, coerce_int
from .award_service import AwardResult, award, current_policy
from .loyalty_policy import next_tier_progress
from .points_service import SCAN_POINTS, parse_machine_qr, points_for_amount


class UserNotFoundError(Exception):
    pass


# Profile fields a member may set; loyalty state is never writable here.
PROFILE_FIELDS = ("first_name", "last_name", "suburb", "phone_number")


def _clean(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise UserNotFoundError(f"User {user_id} not found")
    return user


def create_user(
    email: str,
    *,
    first_name: str | None = None,
    last_name: str | None = None,
    suburb: str | None = None,
    card_number: str | None = None,
    phone_number: str | None = None,
    is_admin: bool = False,
) -> User:
    """
    Register a member with zeroed loyalty state.

    Raises:
        ValidationError: missing email
        ConflictError: email or card already registered
    """
    email = _clean(email)
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    email = email.lower()
    card_number = _clean(card_number)

    if db.session.query(User.id).filter_by(email=email).first():
        raise ConflictError("Email already registered")
    if card_number and db.session.query(User.id).filter_by(card_number=card_number).first():
        raise ConflictError("Card number already linked to another member")

    user = User(
        email=email,
        first_name=_clean(first_name),
        last_name=_clean(last_name),
        suburb=_clean(suburb),
        card_number=card_number,
        phone_number=_clean(phone_number),
        is_admin=bool(is_admin),
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Email or card number already registered")
    current_app.logger.info("Registered member %s (%s)", user.id, email)
    return user


def update_profile(user_id: int, fields: dict) -> User:
    user = get_user(user_id)
    unknown = set(fields) - set(PROFILE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")
    for name in PROFILE_FIELDS:
        if name in fields:
            setattr(user, name, _clean(fields[name]))
    db.session.commit()
    return user


def get_profile(user_id: int) -> dict:
    """Member dict plus progress toward the next tier."""
    user = get_user(user_id)
    policy = current_policy()
    return {
        **user.to_dict(),
        "tier_progress": next_tier_progress(user.loyalty_tier, user.total_points or 0, policy),
        "punch_card_target": policy.punch_card_target,
        "streak_reward_days": policy.streak_reward_days,
    }


def link_card(user_id: int, card_number: str) -> User:
    """
    Attach a vending card so future external transactions match this member.

    A card belongs to at most one member. Passing the member's current card
    is a no-op.

    Raises:
        ValidationError: blank card number
        ConflictError: card linked to someone else
    """
    card_number = _clean(card_number)
    if not card_number:
        raise ValidationError("cardNumber is required")

    user = get_user(user_id)
    if user.card_number == card_number:
        return user

    owner = db.session.query(User).filter_by(card_number=card_number).first()
    if owner and owner.id != user.id:
        raise ConflictError("Card number already linked to another member")

    user.card_number = card_number
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Card number already linked to another member")
    current_app.logger.info("Linked card %s to user %s", card_number, user_id)
    return user


def record_scan(
    user_id: int,
    qr_data: str,
    amount=None,
    *,
    now: datetime | None = None,
) -> AwardResult:
    """
    Member scanned a machine QR code after a purchase.

    Flat SCAN_POINTS per scan, or 10 points per whole dollar when the
    amount (cents) is known. Goes through the same award engine as matched
    vending purchases.
    """
    machine_id = parse_machine_qr(qr_data)
    get_user(user_id)

    if amount is None or amount == "":
        points = SCAN_POINTS
        amount_cents = None
    else:
        amount_cents = coerce_int("amount", amount)
        points = points_for_amount(amount_cents)

    return award(
        user_id,
        points,
        f"QR Purchase from {machine_id}",
        machine_id=machine_id,
        amount=amount_cents,
        now=now,
    )

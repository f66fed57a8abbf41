# Overview: Attribute external purchase events to members and hand them to the award engine.

"""
Matcher

WHY: An external transaction must credit points at most once, whether it is
matched automatically on intake, re-matched by a retried sync, or matched by
an admin from the unprocessed queue.

LOOKUP ORDER:
1. Exact card_number (linked loyalty card)
2. Exact phone_number
3. Otherwise unmatched: row stays is_processed=False for manual resolution

IDEMPOTENCE: The is_processed flip is a conditional UPDATE executed in the
same DB transaction as the award. A row that is already processed (or gets
processed by a concurrent caller first) is a no-op, never a second award.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import ExternalTransaction, User
from hivis.time_utils import utcnow
from .award_service import AwardResult, apply_award, current_policy, prepare_season
from .concurrency import run_with_retry
from .loyalty_policy import LoyaltyPolicy
from .notification_service import dispatch
from .points_service import point_value
from . import season_service


REASON_ALREADY_PROCESSED = "already_processed"
REASON_NO_IDENTIFIER = "no_identifier"
REASON_NO_MEMBER = "no_member"


class MatchError(Exception):
    """Raised for unknown external transactions or members."""


@dataclass
class MatchResult:
    external_transaction_id: int
    matched: bool
    user_id: int | None = None
    reason: str | None = None
    points_awarded: int = 0
    award: AwardResult | None = None

    @property
    def already_processed(self) -> bool:
        return self.reason == REASON_ALREADY_PROCESSED

    def to_dict(self) -> dict:
        return {
            "external_transaction_id": self.external_transaction_id,
            "matched": self.matched,
            "user_id": self.user_id,
            "reason": self.reason,
            "points_awarded": self.points_awarded,
            "award": self.award.to_dict() if self.award else None,
        }


def find_member(card_number: str | None, phone_number: str | None) -> User | None:
    if card_number:
        user = db.session.query(User).filter_by(card_number=card_number).first()
        if user:
            return user
    if phone_number:
        return (
            db.session.query(User)
            .filter_by(phone_number=phone_number)
            .order_by(User.id.asc())
            .first()
        )
    return None


def _award_and_mark(
    ext: ExternalTransaction,
    user_id: int,
    *,
    manual: bool,
    now: datetime,
    policy: LoyaltyPolicy,
) -> MatchResult:
    ext_id = ext.id
    external_id = ext.external_id
    points = point_value(ext.product_name)
    if manual:
        description = f"Manual match: {ext.product_name} from {ext.machine_id}"
    else:
        description = f"Auto-purchase: {ext.product_name} from {ext.machine_id}"
    award_kwargs = dict(
        external_transaction_id=external_id,
        machine_id=ext.machine_id,
        amount=ext.amount,
        card_number=ext.card_number,
        is_auto_generated=not manual,
    )
    season_id = prepare_season(now, policy).id

    def _op():
        claimed = db.session.execute(
            update(ExternalTransaction)
            .where(ExternalTransaction.id == ext_id, ExternalTransaction.is_processed.is_(False))
            .values(is_processed=True, matched_user_id=user_id, processed_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            db.session.rollback()
            return None
        result = apply_award(
            user_id,
            points,
            description,
            season=season_service.get_season(season_id),
            policy=policy,
            now=now,
            **award_kwargs,
        )
        db.session.commit()
        return result

    try:
        award = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    if award is None:
        current_app.logger.info("External transaction %s already processed; skipping", external_id)
        return MatchResult(ext_id, matched=False, reason=REASON_ALREADY_PROCESSED)

    current_app.logger.info(
        "Matched external transaction %s to user %s (%s points, %s)",
        external_id, user_id, points, "manual" if manual else "auto",
    )
    dispatch(award.notifications)
    return MatchResult(ext_id, matched=True, user_id=user_id, points_awarded=points, award=award)


def match_external_transaction(
    external_transaction_id: int,
    *,
    now: datetime | None = None,
    policy: LoyaltyPolicy | None = None,
) -> MatchResult:
    """
    Automatic matching for one stored external transaction.

    Unmatched is a normal outcome, not an error.
    """
    ext = db.session.get(ExternalTransaction, external_transaction_id)
    if not ext:
        raise MatchError(f"External transaction {external_transaction_id} not found")
    if ext.is_processed:
        return MatchResult(ext.id, matched=False, user_id=ext.matched_user_id, reason=REASON_ALREADY_PROCESSED)

    if not ext.card_number and not ext.phone_number:
        current_app.logger.warning("External transaction %s has no card or phone; queued", ext.external_id)
        return MatchResult(ext.id, matched=False, reason=REASON_NO_IDENTIFIER)

    user = find_member(ext.card_number, ext.phone_number)
    if not user:
        current_app.logger.warning(
            "No member for card %s or phone %s on external transaction %s; queued for manual match",
            ext.card_number, ext.phone_number, ext.external_id,
        )
        return MatchResult(ext.id, matched=False, reason=REASON_NO_MEMBER)

    return _award_and_mark(
        ext, user.id, manual=False, now=now or utcnow(), policy=policy or current_policy(),
    )


def manual_match(
    external_transaction_id: int,
    user_id: int,
    *,
    now: datetime | None = None,
    policy: LoyaltyPolicy | None = None,
) -> MatchResult:
    """
    Admin resolution of a queued transaction; same award path as automatic matching.

    Raises:
        MatchError: unknown transaction or member
    """
    ext = db.session.get(ExternalTransaction, external_transaction_id)
    if not ext:
        raise MatchError(f"External transaction {external_transaction_id} not found")
    if not db.session.get(User, user_id):
        raise MatchError(f"User {user_id} not found")
    if ext.is_processed:
        return MatchResult(ext.id, matched=False, user_id=ext.matched_user_id, reason=REASON_ALREADY_PROCESSED)

    return _award_and_mark(
        ext, user_id, manual=True, now=now or utcnow(), policy=policy or current_policy(),
    )


def get_unprocessed(limit: int | None = None) -> list[ExternalTransaction]:
    """Queue of unattributed transactions, newest first."""
    q = (
        db.session.query(ExternalTransaction)
        .filter(ExternalTransaction.is_processed.is_(False))
        .order_by(ExternalTransaction.created_at.desc(), ExternalTransaction.id.desc())
    )
    if limit:
        q = q.limit(limit)
    return q.all()

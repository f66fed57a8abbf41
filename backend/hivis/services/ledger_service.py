# Overview: Service-layer operations for the points ledger; the only code that pairs a ledger append with a balance change.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import PointsTransaction, User
from ..models.ledger import VALID_TRANSACTION_TYPES
from hivis.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
"""
Points Ledger Invariants (authoritative)

- Append-only: entries are never deleted and never edited, except the one-way
  redemption claim (is_redeemed/redeemed_at).
- users.total_points == SUM(transactions.points) per member, at every commit.
- post_entry() is the single place that appends an entry AND moves the cached
  balance; both land in the caller's DB transaction, so they commit or roll
  back together.
- Ledger order is (created_at, id).
"""


class LedgerError(Exception):
    """Raised when a ledger write would break an invariant."""


def post_entry(
    user: User,
    *,
    type: str,
    points: int,
    description: str,
    machine_id: str | None = None,
    external_transaction_id: str | None = None,
    amount: int | None = None,
    card_number: str | None = None,
    redemption_code: str | None = None,
    is_auto_generated: bool = False,
    occurred_at: datetime | None = None,
) -> PointsTransaction:
    """
    Append a ledger entry and apply its points to the member's cached balance.

    - Caller must hold the member row (lock_for_update) and owns the commit.
    - A negative result balance is refused; redemption checks sufficiency
      first, so hitting this means a caller bug.
    """
    if type not in VALID_TRANSACTION_TYPES:
        raise LedgerError(f"Invalid transaction type: {type}")
    if not isinstance(points, int) or isinstance(points, bool):
        raise LedgerError("points must be an integer")

    new_balance = (user.total_points or 0) + points
    if new_balance < 0:
        raise LedgerError(f"Balance for user {user.id} would become negative ({new_balance})")

    entry = PointsTransaction(
        user_id=user.id,
        type=type,
        points=points,
        description=description,
        machine_id=machine_id,
        external_transaction_id=external_transaction_id,
        amount=amount,
        card_number=card_number,
        redemption_code=redemption_code,
        is_redeemed=False,
        is_auto_generated=is_auto_generated,
        created_at=occurred_at or utcnow(),
    )
    db.session.add(entry)
    user.total_points = new_balance
    db.session.flush()  # assigns entry.id and surfaces version conflicts early
    return entry


def get_user_transactions(user_id: int, limit: int = 20) -> list[PointsTransaction]:
    """Most recent ledger entries first."""
    return (
        db.session.query(PointsTransaction)
        .filter_by(user_id=user_id)
        .order_by(PointsTransaction.created_at.desc(), PointsTransaction.id.desc())
        .limit(limit)
        .all()
    )


def get_by_redemption_code(code: str) -> PointsTransaction | None:
    return db.session.query(PointsTransaction).filter_by(redemption_code=code).first()


def ledger_sum(user_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(PointsTransaction.points), 0))
        .filter(PointsTransaction.user_id == user_id)
        .scalar()
    )
    return int(total or 0)


def find_balance_drift() -> list[dict]:
    """
    Audit: members whose cached total_points disagrees with their ledger.

    Not used on the hot path. Any row returned here is a bug in a writer.
    """
    sums = (
        db.session.query(
            PointsTransaction.user_id.label("user_id"),
            func.sum(PointsTransaction.points).label("ledger_total"),
        )
        .group_by(PointsTransaction.user_id)
        .subquery()
    )
    rows = (
        db.session.query(User, func.coalesce(sums.c.ledger_total, 0))
        .outerjoin(sums, sums.c.user_id == User.id)
        .order_by(User.id)
        .all()
    )
    drift = []
    for user, ledger_total in rows:
        ledger_total = int(ledger_total or 0)
        if (user.total_points or 0) != ledger_total:
            drift.append({
                "user_id": user.id,
                "email": user.email,
                "cached_total": user.total_points,
                "ledger_total": ledger_total,
                "difference": (user.total_points or 0) - ledger_total,
            })
    return drift


def reconcile_balance(user_id: int) -> dict:
    """
    Rewrite a member's cached balance from the ledger.

    Recovery path for a detected consistency failure. Does not touch tier:
    tiers never move down, and a too-low tier is corrected by the next award.
    """
    def _op():
        user = lock_for_update(db.session.query(User).filter_by(id=user_id)).first()
        if not user:
            raise LedgerError(f"User {user_id} not found")
        before = user.total_points or 0
        after = ledger_sum(user_id)
        if before != after:
            current_app.logger.warning(
                "Ledger drift for user %s: cached=%s ledger=%s; rewriting cache",
                user_id, before, after,
            )
            user.total_points = after
        db.session.commit()
        return {"user_id": user_id, "before": before, "after": after, "changed": before != after}

    return run_with_retry(_op)

# Overview: Read-only program totals for the admin dashboard.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import ExternalTransaction, Machine, PointsTransaction, User
from ..models.ledger import TYPE_REDEMPTION
from hivis.time_utils import business_day_start_utc, utcnow


def get_admin_stats(now: datetime | None = None) -> dict:
    """
    Totals across the whole program.

    activeUsersToday counts members with any ledger entry since local
    midnight in the loyalty timezone. activeMachines counts machines
    whose last status report was online.
    """
    now = now or utcnow()
    day_start = business_day_start_utc(now, current_app.config.get("LOYALTY_TIMEZONE", "Australia/Sydney"))

    total_users = db.session.query(func.count(User.id)).scalar() or 0
    total_transactions = db.session.query(func.count(PointsTransaction.id)).scalar() or 0
    points_redeemed = (
        db.session.query(func.coalesce(func.sum(-PointsTransaction.points), 0))
        .filter(PointsTransaction.type == TYPE_REDEMPTION)
        .scalar()
    )
    points_earned = (
        db.session.query(func.coalesce(func.sum(PointsTransaction.points), 0))
        .filter(PointsTransaction.points > 0)
        .scalar()
    )
    active_today = (
        db.session.query(func.count(func.distinct(PointsTransaction.user_id)))
        .filter(PointsTransaction.created_at >= day_start)
        .scalar()
    )
    unprocessed = (
        db.session.query(func.count(ExternalTransaction.id))
        .filter(ExternalTransaction.is_processed.is_(False))
        .scalar()
    )
    active_machines = (
        db.session.query(func.count(Machine.id))
        .filter(Machine.is_online.is_(True))
        .scalar()
    )

    return {
        "total_users": int(total_users),
        "total_transactions": int(total_transactions),
        "points_redeemed": int(points_redeemed or 0),
        "total_points_earned": int(points_earned or 0),
        "active_users_today": int(active_today or 0),
        "unprocessed_transactions": int(unprocessed or 0),
        "active_machines": int(active_machines or 0),
    }

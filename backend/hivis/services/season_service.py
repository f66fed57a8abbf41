# Overview: Monthly seasons, per-suburb monthly ranking and the all-time suburb leaderboard.

"""
Season / Leaderboard Ranker

Two parallel leaderboards exist and callers must pick one explicitly:

- Monthly (seasonal): MonthlyPoints.points per member per season, ranked
  within (season, suburb). Ranks are stored and rewritten after each update.
- All-time: users.total_points, grouped by users.suburb. Computed on read,
  nothing stored.

Ranking is positional: sort by points descending, then by insertion order
(row id), and number 1..n. Tied members get distinct consecutive ranks.
"""

from __future__ import annotations

import calendar
from datetime import date

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import MonthlyPoints, Season, User
from hivis.time_utils import month_bounds
from .concurrency import lock_for_update


UNKNOWN_SUBURB = "Unknown"


class SeasonError(Exception):
    """Raised for season lookup errors."""


def season_name(year: int, month: int) -> str:
    return f"{calendar.month_name[month]} {year}"


def get_current_season() -> Season | None:
    return db.session.query(Season).filter_by(is_active=True).order_by(Season.id.desc()).first()


def get_season(season_id: int) -> Season | None:
    return db.session.get(Season, season_id)


def list_seasons() -> list[Season]:
    return db.session.query(Season).order_by(Season.year.desc(), Season.month.desc()).all()


def ensure_current_season(today: date) -> Season:
    """
    Return the active season for today's month, rotating if needed.

    Rotation (deactivate every other season, activate/create this month's)
    commits as one transaction. Safe to call concurrently: a lost race on the
    (year, month) unique constraint re-reads the winner's row.
    """
    active = get_current_season()
    # Backdated events never rotate a season backwards.
    if active and (active.year, active.month) >= (today.year, today.month):
        return active

    try:
        season = _rotate_to(today.year, today.month)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        season = db.session.query(Season).filter_by(year=today.year, month=today.month).one()
        if not season.is_active:
            season = _rotate_to(today.year, today.month)
            db.session.commit()
    current_app.logger.info("Active season is now %s", season.name)
    return season


def _rotate_to(year: int, month: int) -> Season:
    db.session.execute(
        update(Season)
        .where(Season.is_active.is_(True))
        .where((Season.year != year) | (Season.month != month))
        .values(is_active=False)
    )
    season = db.session.query(Season).filter_by(year=year, month=month).first()
    if season:
        season.is_active = True
    else:
        start, end = month_bounds(year, month)
        season = Season(
            year=year,
            month=month,
            name=season_name(year, month),
            is_active=True,
            start_date=start,
            end_date=end,
        )
        db.session.add(season)
    db.session.flush()
    return season


def record_monthly_points(user_id: int, suburb: str | None, points_delta: int, season: Season) -> MonthlyPoints:
    """
    Upsert the member's season accumulator and re-rank their suburb.

    Runs inside the caller's unit of work (no commit).
    """
    row = lock_for_update(
        db.session.query(MonthlyPoints).filter_by(user_id=user_id, season_id=season.id)
    ).first()
    if row:
        row.points = (row.points or 0) + points_delta
    else:
        row = MonthlyPoints(
            user_id=user_id,
            season_id=season.id,
            points=points_delta,
            suburb=suburb or UNKNOWN_SUBURB,
        )
        db.session.add(row)
    db.session.flush()

    recompute_suburb_ranks(season.id, row.suburb)
    return row


def recompute_suburb_ranks(season_id: int, suburb: str) -> int:
    """Rewrite positional ranks for every row in (season, suburb); returns row count."""
    rows = (
        lock_for_update(
            db.session.query(MonthlyPoints).filter_by(season_id=season_id, suburb=suburb)
        )
        .order_by(MonthlyPoints.points.desc(), MonthlyPoints.id.asc())
        .all()
    )
    for position, row in enumerate(rows, start=1):
        if row.rank != position:
            row.rank = position
    db.session.flush()
    return len(rows)


def get_monthly_leaderboard(season_id: int, suburb: str | None = None) -> list[dict]:
    """Season standings ordered by suburb then rank."""
    if not get_season(season_id):
        raise SeasonError(f"Season {season_id} not found")

    q = (
        db.session.query(MonthlyPoints, User)
        .join(User, User.id == MonthlyPoints.user_id)
        .filter(MonthlyPoints.season_id == season_id)
    )
    if suburb:
        q = q.filter(MonthlyPoints.suburb == suburb)

    rows = q.order_by(MonthlyPoints.suburb.asc(), MonthlyPoints.rank.asc(), MonthlyPoints.id.asc()).all()
    return [
        {
            **mp.to_dict(),
            "user": {
                "id": user.id,
                "first_name": user.first_name,
                "last_name": user.last_name,
                "loyalty_tier": user.loyalty_tier,
            },
        }
        for mp, user in rows
    ]


def get_leaderboard_by_suburb() -> list[dict]:
    """
    All-time leaderboard: members with a suburb, grouped by suburb and ranked
    by total_points. Suburbs are ordered by their combined points.
    """
    users = (
        db.session.query(User)
        .filter(User.suburb.isnot(None), User.suburb != "")
        .order_by(User.total_points.desc(), User.id.asc())
        .all()
    )

    groups: dict[str, list[User]] = {}
    for user in users:
        groups.setdefault(user.suburb, []).append(user)

    boards = []
    for suburb, members in groups.items():
        boards.append({
            "suburb": suburb,
            "total_points": sum(m.total_points or 0 for m in members),
            "users": [
                {
                    "rank": position,
                    "id": m.id,
                    "first_name": m.first_name,
                    "last_name": m.last_name,
                    "loyalty_tier": m.loyalty_tier,
                    "total_points": m.total_points,
                }
                for position, m in enumerate(members, start=1)
            ],
        })

    boards.sort(key=lambda b: (-b["total_points"], b["suburb"]))
    return boards

from __future__ import annotations

from ..extensions import db
from hivis.time_utils import to_utc_z, to_iso_date


class Season(db.Model):
    """
    One calendar month of leaderboard standings.

    Exactly one season is active at a time. Seasons are created lazily by the
    first point-earning event of a new month.
    """
    __tablename__ = "seasons"
    __table_args__ = (
        db.UniqueConstraint("year", "month", name="uq_seasons_year_month"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    year = db.Column(db.Integer, nullable=False)
    month = db.Column(db.Integer, nullable=False)  # 1-12
    name = db.Column(db.String(64), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=False, index=True)
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "year": self.year,
            "month": self.month,
            "name": self.name,
            "is_active": self.is_active,
            "start_date": to_iso_date(self.start_date),
            "end_date": to_iso_date(self.end_date),
            "created_at": to_utc_z(self.created_at),
        }


class MonthlyPoints(db.Model):
    """
    Per (member, season) points accumulator.

    suburb is denormalized at first write so a member moving suburb mid-month
    keeps competing in the cohort they started in. rank is positional within
    (season, suburb) and is rewritten after every update.
    """
    __tablename__ = "monthly_points"
    __table_args__ = (
        db.UniqueConstraint("user_id", "season_id", name="uq_monthly_points_user_season"),
        db.Index("ix_monthly_points_season_suburb", "season_id", "suburb"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    season_id = db.Column(db.Integer, db.ForeignKey("seasons.id"), nullable=False, index=True)
    points = db.Column(db.Integer, nullable=False, default=0)
    suburb = db.Column(db.String(128), nullable=False)
    rank = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    user = db.relationship("User", backref=db.backref("monthly_points", lazy=True))
    season = db.relationship("Season", backref=db.backref("monthly_points", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "season_id": self.season_id,
            "points": self.points,
            "suburb": self.suburb,
            "rank": self.rank,
            "updated_at": to_utc_z(self.updated_at),
        }

# Overview: Pytest coverage for the points award engine (tier, punch card, streak, season, atomicity).

"""
Award Engine Tests

Every award must keep users.total_points equal to the ledger sum, move tiers
only upwards, and leave no partial state behind when any step fails.
"""

from datetime import timedelta

import pytest

from hivis.models import MonthlyPoints, Notification, PointsTransaction, User
from hivis.models.ledger import TYPE_BONUS, TYPE_PURCHASE
from hivis.models.users import TIER_APPRENTICE, TIER_FOREMAN, TIER_TRADIE
from hivis.services import award_service, ledger_service, notification_service, season_service
from hivis.services.award_service import AwardError
from hivis.services.loyalty_policy import LoyaltyPolicy
from hivis.services.notification_service import KIND_TIER_UPGRADE

from conftest import NOW


def _entries(db_session, user_id):
    return (
        db_session.query(PointsTransaction)
        .filter_by(user_id=user_id)
        .order_by(PointsTransaction.id)
        .all()
    )


class TestTierEvaluation:
    def test_scenario_a_upgrade_to_tradie(self, db_session, make_user, sent_notifications):
        """490 + 15 -> 505 flips apprentice to tradie and notifies once."""
        user = make_user(total_points=490)

        result = award_service.award(user.id, 15, "Purchase", now=NOW)

        assert result.total_points == 505
        assert result.previous_tier == TIER_APPRENTICE
        assert result.loyalty_tier == TIER_TRADIE
        assert result.tier_upgraded is True

        upgrades = [n for n in sent_notifications if n["kind"] == KIND_TIER_UPGRADE]
        assert len(upgrades) == 1
        assert upgrades[0]["user_id"] == user.id
        assert db_session.query(Notification).filter_by(user_id=user.id, kind=KIND_TIER_UPGRADE).count() == 1

    def test_no_upgrade_below_threshold(self, db_session, make_user, sent_notifications):
        user = make_user(total_points=100)
        result = award_service.award(user.id, 10, "Purchase", now=NOW)
        assert result.loyalty_tier == TIER_APPRENTICE
        assert not [n for n in sent_notifications if n["kind"] == KIND_TIER_UPGRADE]

    def test_tier_never_demoted(self, db_session, make_user):
        """A foreman whose balance was spent down stays foreman."""
        user = make_user(total_points=10, loyalty_tier=TIER_FOREMAN)
        result = award_service.award(user.id, 5, "Purchase", now=NOW)
        assert result.loyalty_tier == TIER_FOREMAN
        assert db_session.get(User, user.id).loyalty_tier == TIER_FOREMAN

    def test_punch_bonus_reevaluates_tier(self, db_session, make_user):
        """Completing the punch card can carry the member over a threshold."""
        user = make_user(total_points=880, loyalty_tier=TIER_TRADIE, punch_card_progress=9)
        result = award_service.award(user.id, 20, "Purchase", now=NOW)
        assert result.total_points == 1000
        assert result.loyalty_tier == TIER_FOREMAN

    def test_custom_policy_thresholds(self, db_session, make_user):
        policy = LoyaltyPolicy(tradie_points=50, foreman_points=100)
        user = make_user()
        result = award_service.award(user.id, 60, "Purchase", now=NOW, policy=policy)
        assert result.loyalty_tier == TIER_TRADIE


class TestPunchCard:
    def test_wraparound_after_ten_awards(self, db_session, make_user):
        user = make_user()
        for _ in range(10):
            result = award_service.award(user.id, 10, "Purchase", now=NOW)

        assert result.punch_card_completed is True
        assert result.punch_card_progress == 0

        bonuses = [e for e in _entries(db_session, user.id) if e.type == TYPE_BONUS]
        assert len(bonuses) == 1
        assert bonuses[0].points == 100
        assert bonuses[0].description == "Punch card completed"

        refreshed = db_session.get(User, user.id)
        assert refreshed.total_points == 10 * 10 + 100
        assert refreshed.punch_card_progress == 0

    def test_progress_increments_by_one(self, db_session, make_user):
        user = make_user(punch_card_progress=3)
        result = award_service.award(user.id, 10, "Purchase", now=NOW)
        assert result.punch_card_progress == 4
        assert result.punch_card_completed is False
        assert result.bonus_points == 0

    def test_configurable_target(self, db_session, make_user):
        policy = LoyaltyPolicy(punch_card_target=5, punch_card_bonus_points=50)
        user = make_user(punch_card_progress=4)
        result = award_service.award(user.id, 10, "Purchase", now=NOW, policy=policy)
        assert result.punch_card_completed is True
        assert result.total_points == 60


class TestDailyStreak:
    def test_first_purchase_starts_streak(self, db_session, make_user):
        user = make_user()
        result = award_service.award(user.id, 10, "Purchase", now=NOW)
        assert result.current_streak == 1
        assert db_session.get(User, user.id).last_purchase_date == NOW.date()

    def test_consecutive_day_increments(self, db_session, make_user):
        user = make_user(current_streak=1, last_purchase_date=NOW.date() - timedelta(days=1))
        result = award_service.award(user.id, 10, "Purchase", now=NOW)
        assert result.current_streak == 2

    def test_same_day_does_not_inflate(self, db_session, make_user):
        user = make_user()
        award_service.award(user.id, 10, "Purchase", now=NOW)
        result = award_service.award(user.id, 10, "Purchase", now=NOW + timedelta(hours=2))
        assert result.current_streak == 1

    def test_gap_resets_to_one(self, db_session, make_user):
        user = make_user(current_streak=5, last_purchase_date=NOW.date() - timedelta(days=3))
        result = award_service.award(user.id, 10, "Purchase", now=NOW)
        assert result.current_streak == 1

    def test_streak_reward_earned_once(self, db_session, make_user):
        user = make_user(current_streak=2, last_purchase_date=NOW.date() - timedelta(days=1))

        result = award_service.award(user.id, 10, "Purchase", now=NOW)
        assert result.current_streak == 3
        assert result.streak_reward_code.startswith("STREAK-")
        assert len(result.streak_reward_code) == len("STREAK-") + 6

        reward_entry = ledger_service.get_by_redemption_code(result.streak_reward_code)
        assert reward_entry.type == TYPE_BONUS
        assert reward_entry.points == 0
        assert reward_entry.is_redeemed is False
        assert db_session.get(User, user.id).streak_reward_earned is True

        # Day four: flag already set, no second reward
        result = award_service.award(user.id, 10, "Purchase", now=NOW + timedelta(days=1))
        assert result.current_streak == 4
        assert result.streak_reward_code is None

    def test_reset_streak_rewards_rearms(self, db_session, make_user):
        earned = make_user(streak_reward_earned=True)
        other = make_user(streak_reward_earned=True)

        assert award_service.reset_streak_rewards([earned.id]) == 1
        assert db_session.get(User, earned.id).streak_reward_earned is False
        assert db_session.get(User, other.id).streak_reward_earned is True

        assert award_service.reset_streak_rewards() == 1
        assert db_session.get(User, other.id).streak_reward_earned is False

    def test_business_day_uses_loyalty_timezone(self, db_session, make_user):
        """23:30 UTC on the 9th is already the 10th in Sydney."""
        policy = LoyaltyPolicy(timezone="Australia/Sydney")
        user = make_user(current_streak=1, last_purchase_date=NOW.date() - timedelta(days=1))
        late = NOW.replace(day=9, hour=23, minute=30)
        result = award_service.award(user.id, 10, "Purchase", now=late, policy=policy)
        assert result.current_streak == 2
        assert db_session.get(User, user.id).last_purchase_date == NOW.date()


class TestSeasonAccumulation:
    def test_award_records_monthly_points(self, db_session, make_user):
        user = make_user(punch_card_progress=9)
        result = award_service.award(user.id, 20, "Purchase", now=NOW)

        season = season_service.get_current_season()
        assert (season.year, season.month) == (NOW.year, NOW.month)

        row = db_session.query(MonthlyPoints).filter_by(user_id=user.id, season_id=season.id).one()
        # Purchase plus the punch card bonus
        assert row.points == 120
        assert row.suburb == "Parramatta"
        assert row.rank == 1
        assert result.monthly_points == 120

    def test_member_without_suburb_lands_in_unknown(self, db_session, make_user):
        user = make_user(suburb=None)
        award_service.award(user.id, 10, "Purchase", now=NOW)
        row = db_session.query(MonthlyPoints).filter_by(user_id=user.id).one()
        assert row.suburb == season_service.UNKNOWN_SUBURB


class TestLedgerInvariant:
    def test_balance_matches_ledger_after_mixed_awards(self, db_session, make_user):
        user = make_user()
        for points in (10, 15, 20, 0, 10, 10, 15, 10, 20, 10, 15):
            award_service.award(user.id, points, "Purchase", now=NOW)
        award_service.grant_bonus(
            user.id, 25, "Welcome bonus", title="Welcome", message="Hi", kind="referral", now=NOW,
        )

        assert db_session.get(User, user.id).total_points == ledger_service.ledger_sum(user.id)
        assert ledger_service.find_balance_drift() == []

    def test_purchase_entry_fields(self, db_session, make_user):
        user = make_user()
        result = award_service.award(
            user.id, 20, "Auto-purchase: Large Coke 600ml from M1",
            external_transaction_id="X1", machine_id="M1", amount=500, card_number="4111",
            is_auto_generated=True, now=NOW,
        )
        entry = db_session.get(PointsTransaction, result.transaction_id)
        assert entry.type == TYPE_PURCHASE
        assert entry.points == 20
        assert entry.external_transaction_id == "X1"
        assert entry.machine_id == "M1"
        assert entry.amount == 500
        assert entry.is_auto_generated is True

    def test_failure_midway_leaves_no_partial_state(self, db_session, make_user, monkeypatch):
        user = make_user(total_points=40)
        user_id = user.id

        def boom(*args, **kwargs):
            raise RuntimeError("storage failure")

        monkeypatch.setattr(season_service, "record_monthly_points", boom)

        with pytest.raises(RuntimeError):
            award_service.award(user_id, 10, "Purchase", now=NOW)

        assert db_session.get(User, user_id).total_points == 40
        assert db_session.query(PointsTransaction).filter_by(user_id=user_id).count() == 0

    def test_notification_failure_does_not_undo_award(self, app, db_session, make_user):
        user = make_user()

        def broken_sink(*args):
            raise RuntimeError("push service down")

        notification_service.register_sink(app, broken_sink)
        try:
            result = award_service.award(user.id, 10, "Purchase", now=NOW)
        finally:
            app.extensions[notification_service.SINKS_EXTENSION_KEY].remove(broken_sink)

        assert result.total_points == 10
        assert db_session.get(User, user.id).total_points == 10


class TestAwardValidation:
    def test_unknown_user(self, db_session):
        with pytest.raises(AwardError):
            award_service.award(9999, 10, "Purchase", now=NOW)

    @pytest.mark.parametrize("points", [-5, 1.5, True])
    def test_invalid_points(self, db_session, make_user, points):
        user = make_user()
        with pytest.raises(AwardError):
            award_service.award(user.id, points, "Purchase", now=NOW)
        assert db_session.query(PointsTransaction).count() == 0

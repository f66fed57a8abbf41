"""
Referral and Member Profile Tests
"""

import pytest

from hivis.models import PointsTransaction, User
from hivis.models.ledger import TYPE_BONUS
from hivis.services import ledger_service, referral_service, user_service
from hivis.services.points_service import SCAN_POINTS
from hivis.services.redemption_codes import CODE_ALPHABET
from hivis.services.referral_service import ReferralError
from hivis.services.user_service import UserNotFoundError
from hivis.validation import ConflictError, ValidationError

from conftest import NOW


class TestReferral:
    def test_code_is_stable(self, db_session, make_user):
        user = make_user()
        code = referral_service.get_or_create_referral_code(user.id)
        assert len(code) == 6
        assert all(c in CODE_ALPHABET for c in code)
        assert referral_service.get_or_create_referral_code(user.id) == code

    def test_apply_credits_both_sides(self, db_session, make_user):
        referrer = make_user()
        referee = make_user()
        code = referral_service.get_or_create_referral_code(referrer.id)

        result = referral_service.apply_referral_code(referee.id, code.lower(), now=NOW)

        assert result == {"referrer_id": referrer.id, "referrer_bonus": 50, "referee_bonus": 25}
        referrer = db_session.get(User, referrer.id)
        referee = db_session.get(User, referee.id)
        assert referrer.total_points == 50
        assert referrer.referral_count == 1
        assert referee.total_points == 25
        assert referee.referred_by == referrer.id

        descriptions = {
            e.description for e in db_session.query(PointsTransaction).filter_by(type=TYPE_BONUS)
        }
        assert descriptions == {"Referral bonus - Friend joined", "Welcome bonus - Used referral code"}
        assert ledger_service.find_balance_drift() == []

    def test_only_once_per_member(self, db_session, make_user):
        first = make_user()
        second = make_user()
        referee = make_user()
        referral_service.apply_referral_code(
            referee.id, referral_service.get_or_create_referral_code(first.id), now=NOW,
        )

        with pytest.raises(ReferralError, match="already used"):
            referral_service.apply_referral_code(
                referee.id, referral_service.get_or_create_referral_code(second.id), now=NOW,
            )
        assert db_session.get(User, second.id).total_points == 0

    def test_own_code_rejected(self, db_session, make_user):
        user = make_user()
        code = referral_service.get_or_create_referral_code(user.id)
        with pytest.raises(ReferralError, match="own"):
            referral_service.apply_referral_code(user.id, code, now=NOW)
        assert db_session.get(User, user.id).referred_by is None

    @pytest.mark.parametrize("code", ["ZZZZZZ", "", None])
    def test_invalid_code(self, db_session, make_user, code):
        user = make_user()
        with pytest.raises(ReferralError, match="Invalid"):
            referral_service.apply_referral_code(user.id, code, now=NOW)


class TestUserService:
    def test_create_user(self, db_session):
        user = user_service.create_user("  Dana@Example.com ", suburb="Parramatta", card_number="4111")
        assert user.email == "dana@example.com"
        assert user.total_points == 0
        assert user.loyalty_tier == "apprentice"
        assert user.punch_card_progress == 0

    def test_duplicate_email(self, db_session, make_user):
        make_user(email="dana@example.com")
        with pytest.raises(ConflictError):
            user_service.create_user("DANA@example.com")

    def test_invalid_email(self, db_session):
        with pytest.raises(ValidationError):
            user_service.create_user("not-an-email")

    def test_update_profile_refuses_loyalty_fields(self, db_session, make_user):
        user = make_user()
        with pytest.raises(ValidationError):
            user_service.update_profile(user.id, {"total_points": 9999})
        updated = user_service.update_profile(user.id, {"suburb": " Bondi "})
        assert updated.suburb == "Bondi"

    def test_profile_includes_tier_progress(self, db_session, make_user):
        user = make_user(total_points=420)
        profile = user_service.get_profile(user.id)
        assert profile["tier_progress"]["next_tier"] == "tradie"
        assert profile["tier_progress"]["points_to_next_tier"] == 80
        assert profile["punch_card_target"] == 10

    def test_missing_user(self, db_session):
        with pytest.raises(UserNotFoundError):
            user_service.get_profile(9999)

    def test_link_card(self, db_session, make_user):
        owner = make_user(card_number="4111")
        other = make_user()
        with pytest.raises(ConflictError):
            user_service.link_card(other.id, "4111")
        assert user_service.link_card(owner.id, "4111").card_number == "4111"
        assert user_service.link_card(other.id, "5222").card_number == "5222"

    def test_scan_flat_points(self, db_session, make_user):
        user = make_user()
        result = user_service.record_scan(user.id, "HIVIS_MACHINE_007", now=NOW)
        assert result.points_earned == SCAN_POINTS
        entry = db_session.get(PointsTransaction, result.transaction_id)
        assert entry.machine_id == "HIVIS_MACHINE_007"
        assert entry.description == "QR Purchase from HIVIS_MACHINE_007"

    def test_scan_with_amount(self, db_session, make_user):
        user = make_user()
        result = user_service.record_scan(user.id, "HIVIS_MACHINE_007", 450, now=NOW)
        assert result.points_earned == 40

    @pytest.mark.parametrize("qr", ["", "SOMETHING_ELSE", "HIVIS_MACHINE_"])
    def test_scan_bad_qr(self, db_session, make_user, qr):
        user = make_user()
        with pytest.raises(ValidationError):
            user_service.record_scan(user.id, qr, now=NOW)

"""
HTTP Route Tests

Status codes and response shapes for the member, rewards, leaderboard,
intake and admin endpoints.
"""

from hivis.models import User
from hivis.services import award_service, intake_service, redemption_service


def _event(**overrides):
    event = {
        "externalId": "X1",
        "machineId": "M1",
        "cardNumber": "4111",
        "amount": 450,
        "productName": "Large Coke 600ml",
        "timestamp": "2026-03-10T09:00:00Z",
    }
    event.update(overrides)
    return event


class TestSystemRoutes:
    def test_health(self, client, db_session):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.get_json()["checks"]["database"]["status"] == "healthy"


class TestIntakeRoutes:
    def test_create_then_duplicate(self, client, db_session, make_user):
        make_user(card_number="4111")

        first = client.post("/api/external/transaction", json=_event())
        assert first.status_code == 201
        body = first.get_json()
        assert body["created"] is True
        assert body["match"]["points_awarded"] == 20

        again = client.post("/api/external/transaction", json=_event())
        assert again.status_code == 200
        assert again.get_json()["duplicate"] is True

    def test_invalid_event(self, client, db_session):
        response = client.post("/api/external/transaction", json={"externalId": "X1"})
        assert response.status_code == 400
        assert "Missing required fields" in response.get_json()["error"]

    def test_webhook_summary(self, client, db_session):
        payload = {"transaction": {
            "id": "W1", "machine_id": "M2", "amount": "3.00",
            "product_name": "Water", "timestamp": "2026-03-10T09:00:00Z",
        }}
        response = client.post("/api/external/webhook", json=payload)
        assert response.status_code == 200
        assert response.get_json()["processed"] == 1
        assert intake_service.get_by_external_id("W1").amount == 300

    def test_s3_rejects_non_json(self, client, db_session):
        response = client.post("/api/external/s3", data="nope", content_type="text/plain")
        assert response.status_code == 400

    def test_api_key_enforced_when_configured(self, app, client, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "INTAKE_API_KEY", "s3cret")

        denied = client.post("/api/external/transaction", json=_event())
        assert denied.status_code == 401

        allowed = client.post("/api/external/transaction", json=_event(), headers={"X-API-Key": "s3cret"})
        assert allowed.status_code == 201


class TestUserRoutes:
    def test_create_and_fetch(self, client, db_session):
        created = client.post("/api/users", json={"email": "dana@example.com", "suburb": "Parramatta"})
        assert created.status_code == 201
        user_id = created.get_json()["user"]["id"]

        fetched = client.get(f"/api/users/{user_id}")
        assert fetched.status_code == 200
        assert fetched.get_json()["user"]["tier_progress"]["next_tier"] == "tradie"

        duplicate = client.post("/api/users", json={"email": "dana@example.com"})
        assert duplicate.status_code == 409

    def test_unknown_user_is_404(self, client, db_session):
        assert client.get("/api/users/9999").status_code == 404
        assert client.get("/api/users/9999/transactions").status_code == 404

    def test_patch_rejects_loyalty_fields(self, client, db_session, make_user):
        user = make_user()
        response = client.patch(f"/api/users/{user.id}", json={"totalPoints": 5000})
        assert response.status_code == 400
        ok = client.patch(f"/api/users/{user.id}", json={"suburb": "Bondi"})
        assert ok.get_json()["user"]["suburb"] == "Bondi"

    def test_scan_and_history(self, client, db_session, make_user):
        user = make_user()
        scan = client.post(f"/api/users/{user.id}/scan", json={"qrData": "HIVIS_MACHINE_001"})
        assert scan.status_code == 200
        assert scan.get_json()["points_earned"] == 10

        bad = client.post(f"/api/users/{user.id}/scan", json={"qrData": "WRONG"})
        assert bad.status_code == 400

        history = client.get(f"/api/users/{user.id}/transactions?limit=5").get_json()["transactions"]
        assert len(history) == 1
        assert history[0]["description"] == "QR Purchase from HIVIS_MACHINE_001"

    def test_link_card_conflict(self, client, db_session, make_user):
        make_user(card_number="4111")
        other = make_user()
        response = client.post(f"/api/users/{other.id}/card", json={"cardNumber": "4111"})
        assert response.status_code == 409

    def test_referral_flow(self, client, db_session, make_user):
        referrer = make_user()
        referee = make_user()
        code = client.get(f"/api/users/{referrer.id}/referral-code").get_json()["referral_code"]

        used = client.post(f"/api/users/{referee.id}/referral", json={"referralCode": code})
        assert used.status_code == 200
        assert used.get_json()["referee_bonus"] == 25

        again = client.post(f"/api/users/{referee.id}/referral", json={"referralCode": code})
        assert again.status_code == 400

    def test_notifications_inbox(self, client, db_session, make_user):
        user = make_user()
        award_service.award(user.id, 10, "Purchase")

        inbox = client.get(f"/api/users/{user.id}/notifications").get_json()["notifications"]
        assert inbox[0]["title"] == "Points Earned!"

        read = client.post(f"/api/users/{user.id}/notifications/{inbox[0]['id']}/read")
        assert read.status_code == 200
        missing = client.post(f"/api/users/{user.id}/notifications/9999/read")
        assert missing.status_code == 404


class TestRewardRoutes:
    def test_redeem_insufficient(self, client, db_session, make_user, reward):
        user = make_user()
        award_service.award(user.id, 250, "Purchase")

        response = client.post("/api/rewards/redeem", json={"userId": user.id, "rewardId": reward.id})

        assert response.status_code == 400
        assert response.get_json() == {"error": "Insufficient points", "available": 250, "required": 300}

    def test_redeem_and_claim(self, client, db_session, make_user, reward):
        user = make_user()
        award_service.award(user.id, 300, "Purchase")

        redeemed = client.post("/api/rewards/redeem", json={"userId": user.id, "rewardId": reward.id})
        assert redeemed.status_code == 201
        code = redeemed.get_json()["redemption_code"]
        assert db_session.get(User, user.id).total_points == 0

        claim = client.post("/api/admin/validate-redemption", json={"redemptionCode": code})
        assert claim.status_code == 200
        assert claim.get_json()["valid"] is True

        again = client.post("/api/admin/validate-redemption", json={"redemptionCode": code})
        assert again.status_code == 409
        assert again.get_json()["valid"] is False

        unknown = client.post("/api/admin/validate-redemption", json={"redemptionCode": "HIVIS-X"})
        assert unknown.status_code == 404

    def test_unknown_reward(self, client, db_session, make_user):
        user = make_user()
        response = client.post("/api/rewards/redeem", json={"userId": user.id, "rewardId": 9999})
        assert response.status_code == 404

    def test_catalog(self, client, db_session):
        redemption_service.seed_default_rewards()
        rewards = client.get("/api/rewards").get_json()["rewards"]
        assert rewards[0]["name"] == "Free Small Drink"


class TestLeaderboardRoutes:
    def test_monthly_defaults_to_active_season(self, client, db_session, make_user):
        empty = client.get("/api/leaderboard/monthly").get_json()
        assert empty == {"season": None, "entries": []}

        user = make_user()
        award_service.award(user.id, 40, "Purchase")

        board = client.get("/api/leaderboard/monthly?suburb=Parramatta").get_json()
        assert board["season"]["is_active"] is True
        assert board["entries"][0]["rank"] == 1

        assert client.get("/api/leaderboard/monthly?seasonId=9999").status_code == 404
        assert len(client.get("/api/leaderboard/seasons").get_json()["seasons"]) == 1

    def test_all_time(self, client, db_session, make_user):
        make_user(total_points=100)
        suburbs = client.get("/api/leaderboard").get_json()["suburbs"]
        assert suburbs[0]["suburb"] == "Parramatta"


class TestAdminRoutes:
    def test_queue_and_manual_match(self, client, db_session, make_user):
        client.post("/api/external/transaction", json=_event(cardNumber="0000"))
        user = make_user()

        queue = client.get("/api/admin/unprocessed-transactions").get_json()["transactions"]
        assert [t["external_id"] for t in queue] == ["X1"]

        payload = {"externalTransactionId": queue[0]["id"], "userId": user.id}
        matched = client.post("/api/admin/match-transaction", json=payload)
        assert matched.status_code == 200
        assert matched.get_json()["points_awarded"] == 20

        again = client.post("/api/admin/match-transaction", json=payload)
        assert again.status_code == 409

        missing = client.post("/api/admin/match-transaction", json={"externalTransactionId": 9999, "userId": user.id})
        assert missing.status_code == 404

        bad = client.post("/api/admin/match-transaction", json={"externalTransactionId": "abc", "userId": user.id})
        assert bad.status_code == 400

    def test_upload_csv(self, client, db_session):
        csv_text = "date,machine,product,amount\n2026-03-10T08:00:00Z,M1,Water,2.00\n"
        response = client.post("/api/admin/upload-csv", json={"csvData": csv_text})
        assert response.status_code == 200
        assert response.get_json()["processed"] == 1
        assert client.post("/api/admin/upload-csv", json={}).status_code == 400

    def test_stats(self, client, db_session, make_user):
        user = make_user()
        award_service.award(user.id, 30, "Purchase")
        client.post("/api/external/transaction", json=_event(cardNumber=None))

        stats = client.get("/api/admin/stats").get_json()

        assert stats["total_users"] == 1
        assert stats["total_points_earned"] == 30
        assert stats["active_users_today"] == 1
        assert stats["unprocessed_transactions"] == 1

    def test_reconcile_reports_and_fixes_drift(self, client, db_session, make_user):
        user = make_user()
        award_service.award(user.id, 30, "Purchase")
        user.total_points = 999
        db_session.commit()

        report = client.get("/api/admin/reconcile").get_json()
        assert report["consistent"] is False
        assert report["drift"][0]["ledger_total"] == 30

        fixed = client.post(f"/api/admin/reconcile/{user.id}").get_json()
        assert fixed == {"user_id": user.id, "before": 999, "after": 30, "changed": True}
        assert client.get("/api/admin/reconcile").get_json()["consistent"] is True

    def test_reset_streak_rewards(self, client, db_session, make_user):
        user = make_user(streak_reward_earned=True)
        response = client.post("/api/admin/reset-streak-rewards", json={"userIds": [user.id]})
        assert response.get_json() == {"reset": 1}
        assert client.post("/api/admin/reset-streak-rewards", json={"userIds": "all"}).status_code == 400

    def test_send_notification(self, client, db_session, make_user, sent_notifications):
        make_user()
        make_user()
        response = client.post("/api/admin/send-notification", json={"title": "Smoko", "message": "New machine at the depot"})
        assert response.get_json()["sent"] == 2
        assert {n["kind"] for n in sent_notifications} == {"announcement"}

    def test_machine_registry(self, client, db_session):
        created = client.post(
            "/api/admin/machines",
            json={"machineId": "M1", "name": "Depot Foyer", "location": "12 Smith St, Parramatta"},
        )
        assert created.status_code == 201
        assert created.get_json()["is_online"] is True

        duplicate = client.post("/api/admin/machines", json={"machineId": "M1", "name": "X", "location": "Y"})
        assert duplicate.status_code == 409
        assert client.post("/api/admin/machines", json={"machineId": "M2"}).status_code == 400

        offline = client.post("/api/admin/machines/M1/status", json={"isOnline": False})
        assert offline.status_code == 200
        assert offline.get_json()["is_online"] is False
        assert client.post("/api/admin/machines/M1/status", json={"isOnline": "no"}).status_code == 400
        assert client.post("/api/admin/machines/M404/status", json={"isOnline": True}).status_code == 404

        machines = client.get("/api/machines").get_json()["machines"]
        assert [(m["id"], m["is_online"]) for m in machines] == [("M1", False)]
        assert machines[0]["last_ping"].endswith("Z")
        assert client.get("/api/admin/stats").get_json()["active_machines"] == 0

    def test_machine_list_is_public(self, app, client, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "ADMIN_API_KEY", "adm1n")
        assert client.get("/api/machines").get_json() == {"machines": []}
        assert client.post("/api/admin/machines", json={}).status_code == 401

    def test_admin_key_enforced(self, app, client, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "ADMIN_API_KEY", "adm1n")
        assert client.get("/api/admin/stats").status_code == 401
        assert client.get("/api/admin/stats", headers={"X-API-Key": "adm1n"}).status_code == 200

    def test_sync_unknown_source(self, client, db_session):
        assert client.post("/api/admin/sync/ftp/start").status_code == 404
        assert client.get("/api/admin/sync").get_json() == {"pollers": []}

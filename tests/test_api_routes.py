import pytest

from streakr import db
from streakr.models import League, Question
from streakr.services import insurance_service, settlement_service


@pytest.fixture
def player(make_user):
    return make_user("player", first_name="Sam", surname="Docherty")


@pytest.fixture
def admin(make_user):
    return make_user("admin", is_admin=True)


class TestAuth:
    def test_register_and_me(self, client, season):
        response = client.post(
            "/auth/register",
            json={"username": "newbie", "email": "NewBie@example.com", "password": "longenough"},
        )
        assert response.status_code == 201
        assert response.get_json()["user"]["email"] == "newbie@example.com"

        me = client.get("/auth/me").get_json()["user"]
        assert me["username"] == "newbie"
        assert me["leagues"] == []

    def test_register_rejects_duplicates_and_short_passwords(self, client, player):
        response = client.post(
            "/auth/register",
            json={"username": "player", "email": "x@example.com", "password": "longenough"},
        )
        assert response.status_code == 400

        response = client.post(
            "/auth/register",
            json={"username": "other", "email": "o@example.com", "password": "short"},
        )
        assert response.status_code == 400
        assert response.get_json()["error"] == "invalid_request"

    def test_login_logout(self, client, player):
        bad = client.post("/auth/login", json={"username": "player", "password": "nope"})
        assert bad.status_code == 401
        assert bad.get_json()["error"] == "invalid_credentials"

        good = client.post("/auth/login", json={"username": "player", "password": "password123"})
        assert good.status_code == 200
        assert client.get("/auth/me").status_code == 200

        client.post("/auth/logout")
        assert client.get("/auth/me").status_code == 401

    def test_unauthenticated_pick_is_401(self, client, make_question):
        question = make_question()
        response = client.post("/api/picks", json={"questionId": question.slug, "outcome": "yes"})
        assert response.status_code == 401
        assert response.get_json()["error"] == "unauthorized"


class TestPlayerApi:
    def test_pick_flow(self, app, player, make_question):
        question = make_question()
        client = app.test_client(user=player)

        response = client.post("/api/picks", json={"questionId": question.slug, "outcome": "yes"})
        assert response.status_code == 200
        body = response.get_json()
        assert body["success"]
        assert body["pick"]["outcome"] == "yes"
        assert body["pick"]["question_id"] == question.slug

        cleared = client.post("/api/picks", json={"questionId": question.slug, "outcome": None})
        assert cleared.get_json()["pick"] is None

    def test_pick_validation(self, app, player, make_question):
        question = make_question()
        client = app.test_client(user=player)

        response = client.post("/api/picks", json={"questionId": question.slug, "outcome": "perhaps"})
        assert response.status_code == 400

        response = client.post("/api/picks", json={"outcome": "yes"})
        assert response.status_code == 400

        response = client.post("/api/picks", json={"questionId": "R9-G9-Q9-x", "outcome": "yes"})
        assert response.status_code == 404
        assert response.get_json()["error"] == "not_found"

    def test_pick_on_locked_question_is_409(self, app, player, make_question):
        question = make_question()
        settlement_service.lock(question.id)
        client = app.test_client(user=player)

        response = client.post("/api/picks", json={"questionId": question.slug, "outcome": "yes"})

        assert response.status_code == 409
        body = response.get_json()
        assert body["error"] == "pick_rejected"
        assert body["status"] == "pending"

    def test_round_board(self, app, player, make_question, make_pick):
        question = make_question()
        make_pick(player, question, "no")
        client = app.test_client(user=player)

        for ref in ("1", "R1"):
            board = client.get(f"/api/rounds/{ref}").get_json()
            assert board["games"][0]["questions"][0]["user_pick"] == "no"

        assert client.get("/api/rounds/R44").status_code == 404
        assert client.get("/api/rounds/nope").status_code == 400

    def test_panic(self, app, player, make_question, make_pick):
        question = make_question()
        make_pick(player, question, "yes")
        client = app.test_client(user=player)

        response = client.post("/api/panic", json={"questionId": question.slug})
        assert response.status_code == 200
        assert response.get_json()["panic"]["previous_pick"] == "yes"

        again = client.post("/api/panic", json={"questionId": question.slug})
        assert again.status_code == 409
        assert again.get_json()["error"] == "quota_exceeded"

    def test_streak_and_free_kick(self, app, player, make_question, make_pick):
        question = make_question()
        make_pick(player, question, "yes")
        settlement_service.settle(question.id, "yes")
        insurance_service.grant_free_kicks(player.id, 1)
        client = app.test_client(user=player)

        streak = client.get("/api/streak").get_json()
        assert streak["current_streak"] == 1
        assert streak["matches"][0]["verdict"] == "clean"
        assert streak["matches"][0]["match"] == question.match.slug

        free_kick = client.get("/api/free-kick").get_json()
        assert free_kick == {"season": 2026, "remaining": 1, "used": []}

    def test_leaderboard(self, app, client, player, make_question, make_pick):
        question = make_question(status="final", outcome="yes")
        make_pick(player, question, "yes")

        board = client.get("/api/leaderboard").get_json()
        top = board["entries"][0]
        assert top["displayName"] == "Sam Docherty"
        assert top["streakValue"] == 1
        assert top["rank"] == 1
        assert top["playerId"] == player.id
        assert board["player_entry"] == top
        assert "streak" not in top

        unknown = client.get("/api/leaderboard?scope=round-42").get_json()
        assert unknown["entries"] == []

    def test_leagues(self, app, player, make_user):
        friend = make_user("friend")
        client = app.test_client(user=player)

        created = client.post("/api/leagues", json={"name": "Locker Room"})
        assert created.status_code == 201
        code = created.get_json()["invite_code"]

        friend_client = app.test_client(user=friend)
        joined = friend_client.post("/api/leagues/join", json={"code": code.lower()})
        assert joined.status_code == 200
        assert joined.get_json()["league"]["member_count"] == 2

        again = friend_client.post("/api/leagues/join", json={"code": code})
        assert again.status_code == 400

        league = League.query.filter_by(invite_code=code).one()
        board = friend_client.get(f"/api/leaderboard?league={league.id}")
        assert board.status_code == 200

        outsider = app.test_client(user=make_user("outsider"))
        assert outsider.get(f"/api/leaderboard?league={league.id}").status_code == 404

        left = friend_client.post(f"/api/leagues/{league.id}/leave")
        assert left.status_code == 200
        assert league.get_member_count() == 1
        assert client.post(f"/api/leagues/{league.id}/leave").status_code == 400

        rejoined = friend_client.post("/api/leagues/join", json={"code": code})
        assert rejoined.get_json()["message"] == "Membership reactivated"

    def test_venue_league_needs_venue(self, app, player):
        client = app.test_client(user=player)
        response = client.post("/api/leagues", json={"name": "Pub", "kind": "venue"})
        assert response.status_code == 400


class TestAdminApi:
    def test_non_admin_is_forbidden(self, app, player, make_question):
        question = make_question()
        client = app.test_client(user=player)

        response = client.post(
            "/admin/settlement", json={"questionId": question.slug, "action": "lock"}
        )

        assert response.status_code == 403
        assert db.session.get(Question, question.id).status == "open"

    def test_settlement_command(self, app, admin, make_question):
        question = make_question()
        client = app.test_client(user=admin)

        response = client.post(
            "/admin/settlement",
            json={"questionId": question.slug, "action": "settle", "outcome": "yes"},
        )
        body = response.get_json()
        assert response.status_code == 200
        assert body["applied"]
        assert body["status"] == "final"
        assert body["version"] == 2

        state = client.get(f"/admin/questions/{question.slug}").get_json()
        assert state["history"][0]["admin_user"] == "admin"

    def test_settlement_errors_are_not_success(self, app, admin, make_question):
        question = make_question()
        client = app.test_client(user=admin)
        client.post("/admin/settlement", json={"questionId": question.slug, "action": "lock"})

        stale = client.post(
            "/admin/settlement",
            json={
                "questionId": question.slug,
                "action": "settle",
                "outcome": "no",
                "expectedVersion": 1,
            },
        )
        assert stale.status_code == 409
        assert stale.get_json()["error"] == "conflicting_transition"
        assert stale.get_json()["version"] == 2

        invalid = client.post(
            "/admin/settlement", json={"questionId": question.slug, "action": "lock"}
        )
        assert invalid.status_code == 409
        assert invalid.get_json()["error"] == "invalid_transition"

        bad = client.post("/admin/settlement", json=["not", "an", "object"])
        assert bad.status_code == 400

    def test_game_lock(self, app, admin, make_match):
        match = make_match()
        client = app.test_client(user=admin)

        response = client.post(
            "/admin/game-lock", json={"matchId": match.slug, "isUnlockedForPicks": False}
        )

        assert response.status_code == 200
        assert response.get_json()["match"]["is_locked"]

        bad = client.post("/admin/game-lock", json={"matchId": match.slug})
        assert bad.status_code == 400

    def test_grant_free_kicks_and_recompute(self, app, admin, player, make_question, make_pick):
        client = app.test_client(user=admin)

        response = client.post("/admin/free-kicks", json={"userId": player.id, "count": 2})
        assert response.get_json()["remaining"] == 2

        question = make_question(status="final", outcome="yes")
        make_pick(player, question, "yes")
        recompute = client.post("/admin/streaks/recompute", json={})
        assert recompute.get_json()["users"] == 1
        assert player.current_streak == 1

    def test_status_and_events(self, app, admin, make_question):
        question = make_question()
        settlement_service.void(question.id, admin_user_id=admin.id)
        client = app.test_client(user=admin)

        events = client.get("/admin/settlement-events").get_json()
        assert events[0]["action"] == "void"

        status = client.get("/admin/status").get_json()
        assert status["scheduler"]["is_running"] is False
        assert status["socketio"]["total_connections"] == 0
        assert client.post("/admin/scheduler/run/nope").status_code == 400


def test_security_headers(client, season):
    response = client.get("/api/leaderboard")
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["Cache-Control"] == "no-store"


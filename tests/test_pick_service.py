from datetime import datetime, timedelta, timezone

import pytest

from streakr.errors import InvalidRequest, NotFound, PickRejected
from streakr.models import Pick
from streakr.services import insurance_service, pick_service, settlement_service


def test_submit_overwrite_and_clear(make_user, make_question):
    player = make_user()
    question = make_question()

    pick = pick_service.submit_pick(player.id, question.slug, "yes")
    assert pick.outcome == "yes"

    pick = pick_service.submit_pick(player.id, question.id, "NO")
    assert pick.outcome == "no"
    assert Pick.query.filter_by(user_id=player.id).count() == 1

    assert pick_service.submit_pick(player.id, question.id, None) is None
    assert Pick.query.filter_by(user_id=player.id).count() == 0

    # clearing a missing pick is harmless
    assert pick_service.submit_pick(player.id, question.id, None) is None


def test_invalid_outcome_is_rejected(make_user, make_question):
    player = make_user()
    question = make_question()
    with pytest.raises(InvalidRequest):
        pick_service.submit_pick(player.id, question.id, "maybe")


def test_unknown_question(make_user, season):
    player = make_user()
    with pytest.raises(NotFound):
        pick_service.submit_pick(player.id, "R9-G9-Q1-nope", "yes")


@pytest.mark.parametrize("action", ["lock", "void"])
def test_no_writes_once_question_leaves_open(action, make_user, make_question, make_pick):
    player = make_user()
    question = make_question()
    make_pick(player, question, "yes")
    getattr(settlement_service, action)(question.id)

    with pytest.raises(PickRejected):
        pick_service.submit_pick(player.id, question.id, "no")
    with pytest.raises(PickRejected):
        pick_service.submit_pick(player.id, question.id, None)

    assert Pick.query.filter_by(user_id=player.id).one().outcome == "yes"


@pytest.mark.parametrize("existing", [None, "no"])
def test_lock_committed_between_check_and_write_rejects_pick(
    existing, monkeypatch, make_user, make_question, make_pick
):
    player = make_user()
    question = make_question()
    if existing:
        make_pick(player, question, existing)
    checks = pick_service._check_writable

    def check_then_lock(question, user_id, now):
        checks(question, user_id, now)
        settlement_service.lock(question.id)

    monkeypatch.setattr(pick_service, "_check_writable", check_then_lock)

    with pytest.raises(PickRejected) as excinfo:
        pick_service.submit_pick(player.id, question.id, "yes")

    assert excinfo.value.context["status"] == "pending"
    picks = Pick.query.filter_by(user_id=player.id).all()
    assert [pick.outcome for pick in picks] == ([existing] if existing else [])


def test_no_writes_after_match_start(make_user, make_match, make_question, make_pick):
    # Scenario: changing a pick after the bounce
    player = make_user()
    start = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=1)
    question = make_question(make_match(start_time=start))
    make_pick(player, question, "yes")

    after_bounce = datetime.now(timezone.utc) + timedelta(hours=2)
    with pytest.raises(PickRejected):
        pick_service.submit_pick(player.id, question.id, "no", now=after_bounce)

    assert question.status == "open"
    assert Pick.query.filter_by(user_id=player.id).one().outcome == "yes"


def test_no_writes_when_admin_locks_match(make_user, make_match, make_question):
    player = make_user()
    match = make_match()
    question = make_question(match)
    settlement_service.set_match_lock(match.id, False)

    with pytest.raises(PickRejected):
        pick_service.submit_pick(player.id, question.id, "yes")

    settlement_service.set_match_lock(match.id, True)
    assert pick_service.submit_pick(player.id, question.id, "yes").outcome == "yes"


def test_no_writes_after_panic_void(make_user, make_question, make_pick):
    player = make_user()
    question = make_question()
    make_pick(player, question, "yes")
    insurance_service.use_panic(player.id, question.id)

    with pytest.raises(PickRejected):
        pick_service.submit_pick(player.id, question.id, "no")


def test_round_board(make_user, make_round, make_match, make_question, make_pick):
    alice = make_user("alice")
    bob = make_user("bob")
    carol = make_user("carol")
    rnd = make_round(2)
    match = make_match(rnd)
    q1 = make_question(match, quarter=2, comment_count=7)
    q0 = make_question(match, quarter=0)
    make_pick(alice, q1, "yes")
    make_pick(bob, q1, "yes")
    make_pick(carol, q1, "no")
    make_pick(alice, q0, "no")
    insurance_service.use_panic(alice.id, q0.id)

    board = pick_service.get_round_board(2, user_id=alice.id)

    assert board["round"]["code"] == "R2"
    assert board["season"] == 2026
    game = board["games"][0]
    assert game["slug"] == "R2-G1"
    assert [q["quarter"] for q in game["questions"]] == [0, 2]
    full_game, second_quarter = game["questions"]
    assert second_quarter["yes_percent"] == 67
    assert second_quarter["no_percent"] == 33
    assert second_quarter["comment_count"] == 7
    assert second_quarter["user_pick"] == "yes"
    assert not second_quarter["panic_voided"]
    assert full_game["panic_voided"]
    assert board["panic"] == {"round_id": rnd.id, "available": False, "used_on": q0.slug}


def test_round_board_anonymous(make_round, make_match, make_question):
    rnd = make_round(0)
    make_question(make_match(rnd))

    board = pick_service.get_round_board(0)

    assert board["round"]["code"] == "OR"
    assert "panic" not in board
    question = board["games"][0]["questions"][0]
    assert "user_pick" not in question
    assert question["yes_percent"] == 0


def test_round_board_missing_round(season):
    with pytest.raises(NotFound):
        pick_service.get_round_board(17)

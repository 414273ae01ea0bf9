from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from streakr import db
from streakr.errors import ConflictingTransition, InvalidRequest, InvalidTransition
from streakr.models import FreeKickUse, Question, SettlementEvent
from streakr.services import insurance_service, settlement_service, streak_service


def test_lock_moves_open_to_pending(make_question):
    question = make_question()

    result = settlement_service.lock(question.id)

    assert result.applied
    assert result.from_status == "open"
    assert question.status == "pending"
    assert question.version == 2
    assert SettlementEvent.query.filter_by(question_id=question.id).count() == 1


def test_settle_from_pending_and_directly_from_open(make_question):
    pending = make_question()
    settlement_service.lock(pending.id)
    direct = make_question()

    settlement_service.settle(pending.id, "yes")
    settlement_service.settle(direct.slug, "no")

    assert (pending.status, pending.outcome) == ("final", "yes")
    assert (direct.status, direct.outcome) == ("final", "no")
    assert direct.settled_at is not None


def test_settle_requires_yes_or_no(make_question):
    question = make_question()
    with pytest.raises(InvalidRequest):
        settlement_service.settle(question.id, "void")
    assert question.status == "open"


def test_settling_twice_with_same_outcome_is_a_noop(make_question):
    question = make_question()
    settlement_service.settle(question.id, "yes")

    result = settlement_service.settle(question.id, "yes")

    assert not result.applied
    assert question.version == 2
    assert SettlementEvent.query.filter_by(question_id=question.id).count() == 1


def test_settling_with_different_outcome_requires_reopen(make_question):
    question = make_question()
    settlement_service.settle(question.id, "yes")

    with pytest.raises(InvalidTransition):
        settlement_service.settle(question.id, "no")
    assert question.outcome == "yes"

    settlement_service.reopen(question.id)
    assert question.status == "open"
    assert question.outcome is None

    settlement_service.settle(question.id, "no")
    assert (question.status, question.outcome) == ("final", "no")
    assert question.version == 4


def test_cannot_settle_or_lock_a_void_question(make_question):
    question = make_question()
    settlement_service.void(question.id)
    assert (question.status, question.outcome) == ("void", "void")

    with pytest.raises(InvalidTransition):
        settlement_service.settle(question.id, "yes")
    with pytest.raises(InvalidTransition):
        settlement_service.lock(question.id)


def test_void_and_reopen_noops(make_question):
    question = make_question()
    assert not settlement_service.reopen(question.id).applied

    settlement_service.void(question.id)
    assert not settlement_service.void(question.id).applied
    assert question.version == 2


def test_void_after_final(make_question):
    question = make_question()
    settlement_service.settle(question.id, "no")
    settlement_service.void(question.id)
    assert (question.status, question.outcome) == ("void", "void")


def test_stale_expected_version_is_rejected(make_question):
    question = make_question()
    settlement_service.lock(question.id)

    with pytest.raises(ConflictingTransition):
        settlement_service.settle(question.id, "yes", expected_version=1)

    assert question.status == "pending"
    assert question.version == 2


def test_noop_wins_over_stale_expected_version(make_question):
    question = make_question()
    settlement_service.settle(question.id, "yes")

    result = settlement_service.settle(question.id, "yes", expected_version=1)
    assert not result.applied


def test_compare_and_set_loses_to_concurrent_writer(make_question):
    question = make_question()
    assert question.version == 1

    # Another writer bumps the row behind the session's back
    db.session.execute(
        update(Question)
        .where(Question.id == question.id)
        .values(version=Question.version + 1)
        .execution_options(synchronize_session=False)
    )

    with pytest.raises(ConflictingTransition):
        settlement_service.settle(question.id, "yes")

    assert question.status == "open"
    assert SettlementEvent.query.filter_by(question_id=question.id).count() == 0


def test_unknown_question_is_not_found(app, season):
    from streakr.errors import NotFound

    with pytest.raises(NotFound):
        settlement_service.lock("R1-G1-Q1-missing")


def test_apply_settlement_command_translates_legacy_actions(make_question):
    question = make_question()

    result = settlement_service.apply_settlement_command(
        {"questionId": question.slug, "action": "final_yes"}
    )
    assert result.applied
    assert (question.status, question.outcome) == ("final", "yes")

    settlement_service.apply_settlement_command(
        {"questionId": question.slug, "action": "reopen"}
    )
    settlement_service.apply_settlement_command(
        {"questionId": question.slug, "action": "locked"}
    )
    assert question.status == "pending"


def test_apply_settlement_command_validates_input(make_question):
    question = make_question()

    with pytest.raises(InvalidRequest):
        settlement_service.apply_settlement_command({"action": "lock"})
    with pytest.raises(InvalidRequest):
        settlement_service.apply_settlement_command(
            {"questionId": question.slug, "action": "settle"}
        )
    with pytest.raises(InvalidRequest):
        settlement_service.apply_settlement_command(
            {"questionId": question.slug, "action": "lock", "outcome": "yes"}
        )
    with pytest.raises(InvalidRequest):
        settlement_service.apply_settlement_command(
            {"questionId": question.slug, "action": "explode"}
        )
    with pytest.raises(InvalidRequest):
        settlement_service.apply_settlement_command(
            {"questionId": question.slug, "action": "void", "expectedVersion": "abc"}
        )
    assert question.status == "open"


def test_settlement_recomputes_player_streaks(make_user, make_match, make_question, make_pick):
    # Scenario: one correct and one wrong pick in the same match
    player = make_user()
    match = make_match()
    q1 = make_question(match, quarter=1)
    q2 = make_question(match, quarter=2)
    make_question(match, quarter=3)
    make_pick(player, q1, "yes")
    make_pick(player, q2, "yes")

    settlement_service.settle(q1.id, "yes")
    # q2 still open: the match is pending and nothing is banked yet
    assert player.current_streak == 0

    result = settlement_service.settle(q2.id, "no")

    assert result.recomputed_users == [player.id]
    assert player.current_streak == 0
    assert player.longest_streak == 0


def test_free_kick_insures_broken_match(season, make_user, make_match, make_question, make_pick):
    player = make_user()
    first = make_match()
    earlier = [make_question(first, quarter=n) for n in range(1, 5)]
    for question in earlier:
        make_pick(player, question, "yes")
    for question in earlier:
        settlement_service.settle(question.id, "yes")
    assert player.current_streak == 4

    insurance_service.grant_free_kicks(player.id, 1)

    second = make_match()
    q1 = make_question(second, quarter=1)
    q2 = make_question(second, quarter=2)
    make_pick(player, q1, "yes")
    make_pick(player, q2, "yes")
    settlement_service.settle(q1.id, "yes")
    settlement_service.settle(q2.id, "no")

    assert player.current_streak == 4
    assert insurance_service.get_credit_balance(player.id, season.id) == 0
    assert FreeKickUse.query.filter_by(user_id=player.id, match_id=second.id).count() == 1


def test_voided_only_pick_leaves_streak_unchanged(make_user, make_match, make_question, make_pick):
    player = make_user()
    first = make_question(make_match())
    make_pick(player, first, "no")
    settlement_service.settle(first.id, "no")
    assert player.current_streak == 1

    voided = make_question(make_match())
    make_pick(player, voided, "yes")
    settlement_service.void(voided.id)

    assert player.current_streak == 1


def test_reopen_recomputes_and_releases_free_kick(
    season, make_user, make_match, make_question, make_pick
):
    player = make_user()
    insurance_service.grant_free_kicks(player.id, 1)

    first = make_question(make_match())
    make_pick(player, first, "yes")
    settlement_service.settle(first.id, "yes")

    second = make_question(make_match())
    make_pick(player, second, "yes")
    settlement_service.settle(second.id, "no")
    assert player.current_streak == 1
    assert insurance_service.get_credit_balance(player.id, season.id) == 0

    # Admin corrects the result
    settlement_service.reopen(second.id)
    assert player.current_streak == 1
    settlement_service.settle(second.id, "yes")

    assert player.current_streak == 2
    assert player.longest_streak == 2
    assert insurance_service.get_credit_balance(player.id, season.id) == 1
    assert FreeKickUse.query.filter_by(user_id=player.id).count() == 0


def test_longest_streak_survives_reopen(make_user, make_match, make_question, make_pick):
    player = make_user()
    question = make_question(make_match())
    make_pick(player, question, "yes")
    settlement_service.settle(question.id, "yes")
    assert player.longest_streak == 1

    settlement_service.reopen(question.id)
    settlement_service.settle(question.id, "no")

    assert player.current_streak == 0
    assert player.longest_streak == 1


def test_auto_lock_started_matches(make_match, make_question):
    now = datetime.now(timezone.utc)
    started = make_match(start_time=now.replace(tzinfo=None) - timedelta(minutes=5))
    upcoming = make_match(start_time=now.replace(tzinfo=None) + timedelta(hours=2))
    a = make_question(started, quarter=1)
    b = make_question(started, quarter=2, status="final", outcome="yes")
    c = make_question(upcoming)

    locked = settlement_service.auto_lock_started_matches(now)

    assert locked == 1
    assert a.status == "pending"
    assert b.status == "final"
    assert c.status == "open"
    event = SettlementEvent.query.filter_by(question_id=a.id).one()
    assert event.event_metadata == {"source": "auto_lock"}


def test_set_match_lock(make_match):
    match = make_match()
    assert match.is_unlocked_for_picks

    settlement_service.set_match_lock(match.slug.lower(), False, admin_user_id=1)
    assert not match.is_unlocked_for_picks
    assert match.is_locked()

    with pytest.raises(InvalidRequest):
        settlement_service.set_match_lock(match.id, "false")


def test_question_state_includes_history(make_question):
    question = make_question()
    settlement_service.lock(question.id, admin_user_id=None)
    settlement_service.settle(question.id, "yes")

    state = settlement_service.get_question_state(question.slug)

    assert state["status"] == "final"
    assert state["version"] == 3
    assert [event["action"] for event in state["history"]] == ["settle", "lock"]


def test_failed_recompute_still_reports_the_applied_settlement(
    monkeypatch, make_user, make_question, make_pick
):
    player = make_user()
    question = make_question()
    make_pick(player, question, "yes")

    def contended(question, season_id=None):
        raise ConflictingTransition("Could not settle Free Kick credits for this player")

    monkeypatch.setattr(streak_service, "recompute_question_players", contended)
    result = settlement_service.settle(question.id, "yes")

    assert result.applied
    assert result.recompute_failed
    assert result.to_dict()["status"] == "final"
    assert db.session.get(Question, question.id).status == "final"
    assert SettlementEvent.query.filter_by(question_id=question.id).count() == 1
    assert player.current_streak == 0

    monkeypatch.undo()
    streak_service.recompute_season_streaks()
    assert player.current_streak == 1

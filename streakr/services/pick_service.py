"""
Pick Ledger

Players create, overwrite or clear their pick while the question is open and
its match has not locked. Settlement never rewrites a pick; it only classifies
it.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from streakr import db
from streakr.errors import NotFound, PickRejected
from streakr.models import PanicVoid, Pick, Question, Round
from streakr.services.insurance_service import get_panic_status
from streakr.services.lookups import get_question, resolve_season
from streakr.utils.normalize import normalize_pick_outcome

logger = logging.getLogger(__name__)


def _check_writable(question, user_id, now):
    if question.status != "open":
        raise PickRejected(
            f"Question is {question.status}; picks are locked",
            question_id=question.slug,
            status=question.status,
        )
    if question.match.is_locked(now):
        raise PickRejected(
            "Match has locked; picks can no longer change",
            question_id=question.slug,
            match_id=question.match.slug,
        )
    panicked = PanicVoid.query.filter_by(user_id=user_id, question_id=question.id).first()
    if panicked is not None:
        raise PickRejected(
            "Panic Void already used on this question",
            question_id=question.slug,
        )


def _guard_open_question(question, expected_version):
    """
    Row guard taken in the pick's own transaction.

    A no-op UPDATE matching only the open question at the version the checks
    ran against. It takes the row lock a concurrent settlement needs, and it
    matches nothing once a settlement has committed first.
    """
    result = db.session.execute(
        update(Question)
        .where(
            Question.id == question.id,
            Question.status == "open",
            Question.version == expected_version,
        )
        .values(version=Question.version, updated_at=Question.updated_at)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        db.session.refresh(question)
        logger.info(f"Pick on {question.slug} lost the race against a settlement")
        raise PickRejected(
            f"Question is {question.status}; picks are locked",
            question_id=question.slug,
            status=question.status,
        )


def submit_pick(user_id, question_id, outcome, now=None):
    """
    Player Pick command.

    ``outcome`` "yes"/"no" creates or overwrites the pick, None clears it.
    Returns the Pick, or None when the pick was cleared. The write commits in
    the same transaction as a guard on the question row, so a pick can never
    land after the question has locked.
    """
    outcome = normalize_pick_outcome(outcome)
    question = get_question(question_id)
    expected_version = question.version
    _check_writable(question, user_id, now or datetime.now(timezone.utc))

    pick = Pick.query.filter_by(user_id=user_id, question_id=question.id).first()

    if outcome is None:
        if pick is not None:
            _guard_open_question(question, expected_version)
            db.session.delete(pick)
            db.session.commit()
            logger.info(f"User {user_id} cleared pick on {question.slug}")
        return None

    _guard_open_question(question, expected_version)
    if pick is None:
        pick = Pick(user_id=user_id, question_id=question.id, outcome=outcome)
        db.session.add(pick)
    else:
        pick.outcome = outcome

    try:
        db.session.commit()
    except IntegrityError:
        # Concurrent first write from another tab; last write wins
        db.session.rollback()
        _guard_open_question(question, expected_version)
        pick = Pick.query.filter_by(user_id=user_id, question_id=question.id).first()
        pick.outcome = outcome
        db.session.commit()

    logger.info(f"User {user_id} picked {outcome} on {question.slug}")
    return pick


def get_user_picks(user_id, question_ids):
    question_ids = list(question_ids)
    if not question_ids:
        return {}
    picks = Pick.query.filter(
        Pick.user_id == user_id, Pick.question_id.in_(question_ids)
    ).all()
    return {pick.question_id: pick.outcome for pick in picks}


def _sentiment(question_ids):
    """``{question_id: (yes, no)}`` pick counts"""
    rows = (
        db.session.query(Pick.question_id, Pick.outcome, func.count(Pick.id))
        .filter(Pick.question_id.in_(question_ids))
        .group_by(Pick.question_id, Pick.outcome)
        .all()
    )
    counts = {}
    for question_id, outcome, count in rows:
        yes, no = counts.get(question_id, (0, 0))
        if outcome == "yes":
            yes = count
        else:
            no = count
        counts[question_id] = (yes, no)
    return counts


def _percent(part, total):
    return round(part / total * 100) if total else 0


def get_round_board(round_number, user_id=None, season_id=None, now=None):
    """
    Round/Match read model.

    Matches in kick-off order with nested questions (quarter order), their
    status and outcome, yes/no sentiment, comment count and, when
    ``user_id`` is given, that player's pick and panic state.
    """
    season = resolve_season(season_id)
    rnd = Round.query.filter_by(season_id=season.id, number=round_number).first()
    if rnd is None:
        raise NotFound(f"Round {round_number} not found", round=round_number)

    now = now or datetime.now(timezone.utc)
    matches = rnd.matches.all()
    matches.sort(key=lambda m: (m.start_time, m.id))

    questions_by_match = {}
    question_ids = []
    for match in matches:
        questions = match.get_questions()
        questions_by_match[match.id] = questions
        question_ids.extend(q.id for q in questions)

    sentiment = _sentiment(question_ids) if question_ids else {}
    user_picks = get_user_picks(user_id, question_ids) if user_id else {}
    panic = get_panic_status(user_id, rnd.id) if user_id else None

    games = []
    for match in matches:
        game = match.to_dict(now)
        game["questions"] = []
        for question in questions_by_match[match.id]:
            yes, no = sentiment.get(question.id, (0, 0))
            data = question.to_dict(now=now)
            data["yes_percent"] = _percent(yes, yes + no)
            data["no_percent"] = _percent(no, yes + no)
            if user_id:
                data["user_pick"] = user_picks.get(question.id)
                data["panic_voided"] = panic["used_on"] == question.slug
            game["questions"].append(data)
        games.append(game)

    board = {"round": rnd.to_dict(), "season": season.year, "games": games}
    if user_id:
        board["panic"] = panic
    return board


"""
Streak recomputation

Loads a player's season history into match sheets, runs the calculator and
applies the Free Kick side effects it reports. Streaks are always rebuilt
from the full history; nothing is incremented in place.
"""

import logging
from collections import defaultdict

from streakr import db
from streakr.errors import ConflictingTransition, InsufficientCredit
from streakr.models import FreeKickUse, Match, PanicVoid, Pick, Question, Round
from streakr.services import insurance_service
from streakr.services.lookups import get_user, resolve_season
from streakr.services.streak_calculator import (
    MatchSheet,
    PickedQuestion,
    calculate_streak,
)
from streakr.utils.performance import timer

logger = logging.getLogger(__name__)

MAX_RECOMPUTE_ATTEMPTS = 5


def build_sheets_for_users(matches, user_ids=None):
    """
    Match sheets for every player with a pick in ``matches``.

    Returns ``{user_id: [MatchSheet, ...]}``; only matches the player picked
    in are included.
    """
    matches = list(matches)
    if not matches:
        return {}
    by_id = {match.id: match for match in matches}

    query = (
        db.session.query(
            Pick.user_id,
            Pick.outcome,
            Question.id,
            Question.match_id,
            Question.status,
            Question.outcome,
            Question.settled_at,
        )
        .join(Question, Pick.question_id == Question.id)
        .filter(Question.match_id.in_(list(by_id)))
    )
    if user_ids is not None:
        query = query.filter(Pick.user_id.in_(list(user_ids)))
    rows = query.all()

    voided = defaultdict(set)
    panic_query = db.session.query(PanicVoid.user_id, PanicVoid.question_id).join(
        Question, PanicVoid.question_id == Question.id
    ).filter(Question.match_id.in_(list(by_id)))
    if user_ids is not None:
        panic_query = panic_query.filter(PanicVoid.user_id.in_(list(user_ids)))
    for user_id, question_id in panic_query.all():
        voided[user_id].add(question_id)

    picks = defaultdict(lambda: defaultdict(list))
    for user_id, pick, question_id, match_id, status, outcome, settled_at in rows:
        picks[user_id][match_id].append(
            PickedQuestion(
                question_id=question_id,
                pick=pick,
                status=status,
                outcome=outcome,
                personally_voided=question_id in voided[user_id],
                settled_at=settled_at,
            )
        )

    sheets = {}
    for user_id, per_match in picks.items():
        sheets[user_id] = [
            MatchSheet(match_id, by_id[match_id].start_time, tuple(picked))
            for match_id, picked in per_match.items()
        ]
    return sheets


def build_match_sheets(user_id, matches):
    """Match sheets for one player, ready for ``calculate_streak``"""
    return build_sheets_for_users(matches, user_ids=[user_id]).get(user_id, [])


def spent_free_kicks_by_user(match_ids, user_ids=None):
    """``{user_id: {match_id, ...}}`` of Free Kicks already spent in ``match_ids``"""
    match_ids = list(match_ids)
    spent = defaultdict(set)
    if not match_ids:
        return spent
    query = db.session.query(FreeKickUse.user_id, FreeKickUse.match_id).filter(
        FreeKickUse.match_id.in_(match_ids)
    )
    if user_ids is not None:
        query = query.filter(FreeKickUse.user_id.in_(list(user_ids)))
    for user_id, match_id in query.all():
        spent[user_id].add(match_id)
    return spent


def _apply_free_kicks(user_id, season_id, result):
    """Persist consumption and refunds; returns True when a recalculation is needed"""
    if result.free_kicks_released:
        for match_id in result.free_kicks_released:
            insurance_service.release_free_kick(user_id, match_id, commit=False)
        db.session.flush()
        # A refunded credit may now insure a later broken match
        return True

    for match_id in result.free_kicks_consumed:
        insurance_service.consume_free_kick(user_id, season_id, match_id, commit=False)
    return False


@timer
def recompute_user_streak(user_id, season_id=None):
    """
    Rebuild one player's streak for a season and persist it.

    The cached ``current_streak`` / ``longest_streak`` on the user are only
    written for the active season. Losing a Free Kick race against a
    concurrent recompute rolls back and recalculates.
    """
    user = get_user(user_id)
    season = resolve_season(season_id)
    matches = season.get_matches()
    sheets = build_match_sheets(user.id, matches)

    for attempt in range(1, MAX_RECOMPUTE_ATTEMPTS + 1):
        credits, held_since = insurance_service.get_credit_window(user.id, season.id)
        spent = insurance_service.spent_match_ids(user.id, season.id)
        result = calculate_streak(sheets, credits, spent, held_since)

        try:
            if _apply_free_kicks(user.id, season.id, result):
                continue
        except (InsufficientCredit, ConflictingTransition) as e:
            db.session.rollback()
            logger.warning(
                f"Free Kick race for user {user.id} (attempt {attempt}): {e.message}"
            )
            continue

        if season.is_active:
            user.record_streak(result.current_streak, result.longest_streak)
        db.session.commit()

        logger.debug(
            f"Recomputed streak for user {user.id} season {season.year}: "
            f"current={result.current_streak} longest={result.longest_streak}"
        )
        return result

    db.session.rollback()
    raise ConflictingTransition(
        "Could not settle Free Kick credits for this player, retry later",
        user_id=user.id,
    )


def users_with_picks(match_ids):
    match_ids = list(match_ids)
    if not match_ids:
        return []
    rows = (
        db.session.query(Pick.user_id)
        .join(Question, Pick.question_id == Question.id)
        .filter(Question.match_id.in_(match_ids))
        .distinct()
        .all()
    )
    return sorted(row.user_id for row in rows)


def recompute_question_players(question, season_id=None):
    """Recompute every player holding a pick on ``question``; returns their ids"""
    user_ids = sorted(
        row.user_id
        for row in db.session.query(Pick.user_id)
        .filter(Pick.question_id == question.id)
        .distinct()
        .all()
    )
    for user_id in user_ids:
        recompute_user_streak(user_id, season_id)
    return user_ids


@timer
def recompute_season_streaks(season_id=None):
    """Recompute every player with a pick in the season"""
    season = resolve_season(season_id)
    match_ids = [
        row.id
        for row in db.session.query(Match.id)
        .join(Round, Match.round_id == Round.id)
        .filter(Round.season_id == season.id)
        .all()
    ]
    user_ids = users_with_picks(match_ids)
    for user_id in user_ids:
        recompute_user_streak(user_id, season.id)

    logger.info(f"Recomputed {len(user_ids)} streaks for season {season.year}")
    return user_ids


def get_streak_breakdown(user_id, season_id=None):
    """Read-only per-match breakdown for the requesting player"""
    user = get_user(user_id)
    season = resolve_season(season_id)
    matches = season.get_matches()
    by_id = {match.id: match for match in matches}

    sheets = build_match_sheets(user.id, matches)
    spent = insurance_service.spent_match_ids(user.id, season.id)
    result = calculate_streak(sheets, 0, spent)

    breakdown = []
    for verdict in result.matches:
        match = by_id[verdict.match_id]
        entry = verdict._asdict()
        entry["match"] = match.slug
        entry["label"] = match.label
        entry["free_kick_used"] = match.id in spent
        breakdown.append(entry)

    return {
        "user_id": user.id,
        "season": season.year,
        "current_streak": result.current_streak,
        "longest_streak": max(user.longest_streak or 0, result.longest_streak),
        "pending_match": by_id[result.pending_match_id].slug
        if result.pending_match_id
        else None,
        "matches": breakdown,
    }

"""
Insurance mechanics: Panic Void and Free Kick credits

Both are server-side records. Panic Void is capped at one per player per
round by a unique constraint; Free Kick credits are spent with a conditional
decrement so a retried request can never spend the same credit twice.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError

from streakr import db
from streakr.errors import (
    ConflictingTransition,
    InsufficientCredit,
    InvalidRequest,
    PickRejected,
    QuotaExceeded,
)
from streakr.models import FreeKickCredit, FreeKickUse, PanicVoid, Pick
from streakr.services.lookups import get_question, get_user, resolve_season

logger = logging.getLogger(__name__)


def use_panic(user_id, question_id, now=None):
    """
    Personally void the player's pick on an open question.

    The Pick row is kept; the PanicVoid record excludes it from this player's
    streak math only.
    """
    question = get_question(question_id)

    if not question.accepts_picks(now):
        raise PickRejected(
            "Panic Void is only available while the question is open",
            question_id=question.slug,
            status=question.status,
        )
    if question.is_sponsor_question:
        raise InvalidRequest(
            "Panic Void cannot be used on a sponsor question", question_id=question.slug
        )

    pick = Pick.query.filter_by(user_id=user_id, question_id=question.id).first()
    if pick is None:
        raise InvalidRequest(
            "You need a pick on this question to use Panic Void",
            question_id=question.slug,
        )

    round_id = question.match.round_id
    panic = PanicVoid(
        user_id=user_id,
        round_id=round_id,
        question_id=question.id,
        previous_pick=pick.outcome,
    )
    db.session.add(panic)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info(f"Panic Void quota hit for user {user_id} in round {round_id}")
        raise QuotaExceeded(
            "Panic Void already used this round", round_id=round_id
        )

    logger.info(
        f"User {user_id} panic-voided question {question.slug} (was {pick.outcome})"
    )
    return panic


def get_panic_status(user_id, round_id):
    panic = PanicVoid.query.filter_by(user_id=user_id, round_id=round_id).first()
    return {
        "round_id": round_id,
        "available": panic is None,
        "used_on": panic.question.slug if panic else None,
    }


def panic_voided_question_ids(user_id, question_ids=None):
    query = db.session.query(PanicVoid.question_id).filter(PanicVoid.user_id == user_id)
    if question_ids is not None:
        query = query.filter(PanicVoid.question_id.in_(list(question_ids)))
    return {row.question_id for row in query.all()}


def _get_or_create_credit(user_id, season_id):
    credit = FreeKickCredit.query.filter_by(user_id=user_id, season_id=season_id).first()
    if credit is None:
        credit = FreeKickCredit(user_id=user_id, season_id=season_id, remaining=0)
        db.session.add(credit)
        db.session.flush()
    return credit


def grant_free_kicks(user_id, count=1, season_id=None):
    """Externally grant Free Kick credits for a season"""
    if count is None or int(count) < 1:
        raise InvalidRequest("count must be a positive integer")
    user = get_user(user_id)

    season = resolve_season(season_id)
    credit = _get_or_create_credit(user.id, season.id)
    now = datetime.now(timezone.utc).replace(tzinfo=None)

    db.session.execute(
        update(FreeKickCredit)
        .where(FreeKickCredit.id == credit.id)
        .values(
            remaining=FreeKickCredit.remaining + int(count),
            held_since=case(
                (FreeKickCredit.remaining > 0, FreeKickCredit.held_since), else_=now
            ),
        )
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    db.session.refresh(credit)

    logger.info(
        f"Granted {count} Free Kick(s) to user {user.id} for season {season.year}; "
        f"balance {credit.remaining}"
    )
    return credit


def get_credit_balance(user_id, season_id):
    row = (
        db.session.query(FreeKickCredit.remaining)
        .filter_by(user_id=user_id, season_id=season_id)
        .first()
    )
    return row.remaining if row else 0


def get_credit_window(user_id, season_id):
    """``(remaining, held_since)`` for the player's unspent credits"""
    row = (
        db.session.query(FreeKickCredit.remaining, FreeKickCredit.held_since)
        .filter_by(user_id=user_id, season_id=season_id)
        .first()
    )
    if row is None:
        return 0, None
    return row.remaining, row.held_since


def spent_match_ids(user_id, season_id=None, match_ids=None):
    query = db.session.query(FreeKickUse.match_id).filter(FreeKickUse.user_id == user_id)
    if season_id is not None:
        query = query.filter(FreeKickUse.season_id == season_id)
    if match_ids is not None:
        query = query.filter(FreeKickUse.match_id.in_(list(match_ids)))
    return {row.match_id for row in query.all()}


def consume_free_kick(user_id, season_id, match_id, commit=True):
    """
    Spend one credit to insure a broken match.

    The balance is decremented with a single conditional UPDATE
    (``remaining > 0``); a FreeKickUse row pins the credit to the match.
    """
    result = db.session.execute(
        update(FreeKickCredit)
        .where(
            FreeKickCredit.user_id == user_id,
            FreeKickCredit.season_id == season_id,
            FreeKickCredit.remaining > 0,
        )
        .values(remaining=FreeKickCredit.remaining - 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InsufficientCredit(
            "No Free Kick credits remaining", user_id=user_id, season_id=season_id
        )

    use = FreeKickUse(user_id=user_id, season_id=season_id, match_id=match_id)
    db.session.add(use)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictingTransition(
            "Free Kick already spent on this match", user_id=user_id, match_id=match_id
        )

    if commit:
        db.session.commit()

    logger.info(f"User {user_id} spent a Free Kick on match {match_id}")
    return use


def release_free_kick(user_id, match_id, commit=True):
    """Refund the credit spent on a match that no longer needs insuring"""
    use = FreeKickUse.query.filter_by(user_id=user_id, match_id=match_id).first()
    if use is None:
        return False

    season_id = use.season_id
    used_at = use.used_at
    db.session.delete(use)
    # The refunded credit has been held since it was spent
    db.session.execute(
        update(FreeKickCredit)
        .where(
            FreeKickCredit.user_id == user_id, FreeKickCredit.season_id == season_id
        )
        .values(
            remaining=FreeKickCredit.remaining + 1,
            held_since=case(
                (FreeKickCredit.remaining > 0, FreeKickCredit.held_since),
                else_=used_at,
            ),
        )
        .execution_options(synchronize_session=False)
    )
    if commit:
        db.session.commit()

    logger.info(f"Released Free Kick for user {user_id} on match {match_id}")
    return True


def get_free_kick_status(user_id, season_id=None):
    season = resolve_season(season_id)
    uses = (
        FreeKickUse.query.filter_by(user_id=user_id, season_id=season.id)
        .order_by(FreeKickUse.used_at)
        .all()
    )
    return {
        "season": season.year,
        "remaining": get_credit_balance(user_id, season.id),
        "used": [use.to_dict() for use in uses],
    }


"""
Settlement Engine

Admin-driven status transitions on a single Question:

    open -> pending -> final       normal path
    open -> final                  direct settle, lock skipped
    any  -> void
    any  -> open                   reopen, clears the outcome

Every transition is one compare-and-set UPDATE guarded by the question's
current ``version`` and ``status``. Losing that race raises
ConflictingTransition; the caller must refetch the question and retry.
"""

from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from streakr import db, socketio
from streakr.errors import ConflictingTransition, InvalidRequest, InvalidTransition
from streakr.models import Match, Question, SettlementEvent
from streakr.services import streak_service
from streakr.services.lookups import get_match, get_question
from streakr.utils.cache_utils import invalidate_leaderboard_cache
from streakr.utils.logging_config import ContextualLogger
from streakr.utils.normalize import normalize_settlement_action

logger = ContextualLogger(__name__)

# action -> statuses it may start from
ALLOWED_FROM = {
    "lock": ("open",),
    "settle": ("open", "pending"),
    "void": ("open", "pending", "final"),
    "reopen": ("pending", "final", "void"),
}

# Statuses whose entry or exit changes streak math
SETTLED = ("final", "void")


class SettlementResult:
    """Outcome of one settlement command"""

    def __init__(
        self,
        question,
        action,
        from_status,
        applied,
        recomputed_users=None,
        recompute_failed=False,
    ):
        self.question = question
        self.action = action
        self.from_status = from_status
        self.applied = applied
        self.recomputed_users = recomputed_users or []
        self.recompute_failed = recompute_failed

    def __repr__(self):
        return (
            f"<SettlementResult {self.action} {self.from_status}->{self.question.status} "
            f"applied={self.applied}>"
        )

    def to_dict(self):
        return {
            "question": self.question.to_dict(),
            "action": self.action,
            "from_status": self.from_status,
            "status": self.question.status,
            "outcome": self.question.outcome,
            "version": self.question.version,
            "applied": self.applied,
            "recomputed_users": len(self.recomputed_users),
            "recompute_failed": self.recompute_failed,
        }


def _is_noop(question, action, outcome):
    if action == "settle":
        return question.status == "final" and question.outcome == outcome
    if action == "void":
        return question.status == "void"
    if action == "reopen":
        return question.status == "open"
    return False


def _check_transition(question, action, outcome):
    if question.status in ALLOWED_FROM[action]:
        return
    if action == "settle" and question.status == "final":
        raise InvalidTransition(
            f"Question already settled {question.outcome}; reopen before settling {outcome}",
            question_id=question.slug,
            status=question.status,
            outcome=question.outcome,
        )
    raise InvalidTransition(
        f"Cannot {action} a question that is {question.status}",
        question_id=question.slug,
        status=question.status,
    )


def _compare_and_set(question, to_status, outcome):
    """Single guarded UPDATE; bumps version or raises ConflictingTransition"""
    now = datetime.now(timezone.utc)
    values = {
        "status": to_status,
        "outcome": outcome,
        "version": Question.version + 1,
        "updated_at": now,
        "settled_at": now if to_status in SETTLED else None,
    }
    result = db.session.execute(
        update(Question)
        .where(
            Question.id == question.id,
            Question.version == question.version,
            Question.status == question.status,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        db.session.refresh(question)
        raise ConflictingTransition(
            "Question was changed by someone else; refetch and retry",
            question_id=question.slug,
            status=question.status,
            version=question.version,
        )
    db.session.refresh(question)


def _transition(
    question_id,
    action,
    to_status,
    outcome=None,
    expected_version=None,
    admin_user_id=None,
    source="admin",
):
    question = get_question(question_id)
    log = logger.bind(question=question.slug, action=action)

    if _is_noop(question, action, outcome):
        log.info(f"No-op, question already {question.status}")
        return SettlementResult(question, action, question.status, applied=False)

    if expected_version is not None and int(expected_version) != question.version:
        log.warning(
            f"Stale expected version {expected_version}, current {question.version}"
        )
        raise ConflictingTransition(
            "Question has changed since it was loaded; refetch and retry",
            question_id=question.slug,
            status=question.status,
            version=question.version,
        )

    _check_transition(question, action, outcome)

    from_status = question.status
    _compare_and_set(question, to_status, outcome)
    SettlementEvent.record(
        question,
        action,
        from_status,
        admin_user_id=admin_user_id,
        event_metadata={"source": source},
    )
    db.session.commit()
    log.info(f"{from_status} -> {question.status} (v{question.version})")

    # Committed; recompute failures are reported on the result, not raised
    recomputed = []
    recompute_failed = False
    if from_status in SETTLED or question.status in SETTLED:
        season_id = question.match.round.season_id
        try:
            recomputed = streak_service.recompute_question_players(question, season_id)
        except (ConflictingTransition, SQLAlchemyError) as e:
            db.session.rollback()
            recompute_failed = True
            log.error(
                f"Streak recompute failed after {from_status} -> {question.status}: {e}; "
                f"run a season recompute to repair"
            )
        invalidate_leaderboard_cache()

    broadcast_question_status(question)
    return SettlementResult(
        question, action, from_status, True, recomputed, recompute_failed
    )


def lock(question_id, expected_version=None, admin_user_id=None, source="admin"):
    """open -> pending"""
    return _transition(
        question_id,
        "lock",
        "pending",
        expected_version=expected_version,
        admin_user_id=admin_user_id,
        source=source,
    )


def settle(question_id, outcome, expected_version=None, admin_user_id=None):
    """open|pending -> final with a yes/no outcome"""
    if outcome not in ("yes", "no"):
        raise InvalidRequest("outcome must be 'yes' or 'no' for settle")
    return _transition(
        question_id,
        "settle",
        "final",
        outcome=outcome,
        expected_version=expected_version,
        admin_user_id=admin_user_id,
    )


def void(question_id, expected_version=None, admin_user_id=None):
    """any -> void"""
    return _transition(
        question_id,
        "void",
        "void",
        outcome="void",
        expected_version=expected_version,
        admin_user_id=admin_user_id,
    )


def reopen(question_id, expected_version=None, admin_user_id=None):
    """any -> open, clearing the outcome"""
    return _transition(
        question_id,
        "reopen",
        "open",
        expected_version=expected_version,
        admin_user_id=admin_user_id,
    )


def apply_settlement_command(command, admin_user_id=None):
    """
    Boundary adapter for the Admin Settlement command.

    ``command`` is a mapping with ``questionId``, ``action``, optional
    ``outcome`` and optional ``expectedVersion``. Legacy actions
    (``final_yes``, ``final_no``, ``final_void``, ``locked``) are translated
    before dispatch.
    """
    if not isinstance(command, dict):
        raise InvalidRequest("Settlement command must be a JSON object")

    question_id = command.get("questionId", command.get("question_id"))
    if question_id in (None, ""):
        raise InvalidRequest("questionId is required")

    action, outcome = normalize_settlement_action(
        command.get("action"), command.get("outcome")
    )

    expected_version = command.get("expectedVersion", command.get("expected_version"))
    if expected_version is not None:
        try:
            expected_version = int(expected_version)
        except (TypeError, ValueError):
            raise InvalidRequest("expectedVersion must be an integer")

    if action == "lock":
        return lock(question_id, expected_version, admin_user_id)
    if action == "settle":
        return settle(question_id, outcome, expected_version, admin_user_id)
    if action == "void":
        return void(question_id, expected_version, admin_user_id)
    return reopen(question_id, expected_version, admin_user_id)


def auto_lock_started_matches(now=None):
    """
    Lock every open question of every match that has already started.

    Conflicts with concurrent admin actions are logged and skipped. Returns
    the number of questions locked.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc).replace(tzinfo=None)

    question_ids = [
        row.id
        for row in db.session.query(Question.id)
        .join(Match, Question.match_id == Match.id)
        .filter(Question.status == "open", Match.start_time <= now)
        .order_by(Match.start_time, Question.quarter, Question.id)
        .all()
    ]

    locked = 0
    for question_id in question_ids:
        try:
            lock(question_id, source="auto_lock")
            locked += 1
        except (ConflictingTransition, InvalidTransition) as e:
            logger.warning(f"Auto-lock skipped question {question_id}: {e.message}")

    if locked:
        logger.info(f"Auto-locked {locked} question(s) for started matches")
    return locked


def set_match_lock(match_id, is_unlocked_for_picks, admin_user_id=None):
    """Admin game-lock toggle, independent of the kick-off time"""
    if not isinstance(is_unlocked_for_picks, bool):
        raise InvalidRequest("isUnlockedForPicks must be true or false")

    match = get_match(match_id)
    match.is_unlocked_for_picks = is_unlocked_for_picks
    db.session.commit()

    logger.bind(match=match.slug).info(
        f"Picks {'unlocked' if is_unlocked_for_picks else 'locked'} by admin {admin_user_id}"
    )
    broadcast_match_lock(match)
    return match


def broadcast_question_status(question):
    payload = {
        "questionId": question.slug,
        "matchId": question.match.slug,
        "status": question.status,
        "outcome": question.outcome,
        "version": question.version,
    }
    socketio.emit(
        "question_status",
        payload,
        to=f"round_{question.match.round_id}",
        namespace="/picks",
    )


def broadcast_match_lock(match):
    socketio.emit(
        "match_lock",
        {"matchId": match.slug, "isUnlockedForPicks": match.is_unlocked_for_picks},
        to=f"round_{match.round_id}",
        namespace="/picks",
    )


def get_question_state(question_id):
    """Authoritative question state for clients reconciling after an error"""
    question = get_question(question_id)
    data = question.to_dict(include_stats=True)
    data["history"] = [
        event.to_dict()
        for event in question.settlement_events.order_by(
            SettlementEvent.created_at.desc(), SettlementEvent.id.desc()
        )
        .limit(20)
        .all()
    ]
    return data

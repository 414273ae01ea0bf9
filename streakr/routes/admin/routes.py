import logging
from functools import wraps

from flask import jsonify, request
from flask_login import current_user, login_required

from streakr import db
from streakr.errors import InvalidRequest
from streakr.models import SettlementEvent
from streakr.routes.admin import bp
from streakr.services import insurance_service, settlement_service, streak_service
from streakr.services.scheduler_service import scheduler_service
from streakr.utils.cache_utils import get_cache_stats, invalidate_leaderboard_cache
from streakr.utils.performance import get_operation_stats

logger = logging.getLogger(__name__)


def admin_required(f):
    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not current_user.is_admin:
            logger.warning(f"Non-admin user {current_user.id} tried {request.path}")
            return jsonify({"error": "forbidden", "message": "Admin access required"}), 403
        return f(*args, **kwargs)

    return decorated


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidRequest("Expected a JSON object")
    return data


@bp.route("/settlement", methods=["POST"])
@admin_required
def settlement():
    """
    Admin Settlement command.

    Any error comes back as a non-2xx JSON body; the console must refetch
    ``/admin/questions/<id>`` rather than keep its optimistic state.
    """
    result = settlement_service.apply_settlement_command(
        _json_body(), admin_user_id=current_user.id
    )
    return jsonify(result.to_dict())


@bp.route("/questions/<question_id>")
@admin_required
def question_state(question_id):
    return jsonify(settlement_service.get_question_state(question_id))


@bp.route("/game-lock", methods=["POST"])
@admin_required
def game_lock():
    data = _json_body()
    match_id = data.get("matchId", data.get("match_id"))
    if match_id in (None, ""):
        raise InvalidRequest("matchId is required")
    unlocked = data.get("isUnlockedForPicks", data.get("is_unlocked_for_picks"))

    match = settlement_service.set_match_lock(
        match_id, unlocked, admin_user_id=current_user.id
    )
    return jsonify({"success": True, "match": match.to_dict()})


@bp.route("/free-kicks", methods=["POST"])
@admin_required
def grant_free_kicks():
    data = _json_body()
    user_id = data.get("userId", data.get("user_id"))
    try:
        count = int(data.get("count", 1))
    except (TypeError, ValueError):
        raise InvalidRequest("count must be an integer")

    credit = insurance_service.grant_free_kicks(user_id, count)
    return jsonify(
        {"success": True, "user_id": credit.user_id, "remaining": credit.remaining}
    )


@bp.route("/streaks/recompute", methods=["POST"])
@admin_required
def recompute_streaks():
    data = request.get_json(silent=True) or {}
    user_id = data.get("userId", data.get("user_id"))

    if user_id is not None:
        result = streak_service.recompute_user_streak(user_id)
        invalidate_leaderboard_cache()
        return jsonify({"success": True, "users": 1, "streak": result.to_dict()})

    user_ids = streak_service.recompute_season_streaks()
    invalidate_leaderboard_cache()
    return jsonify({"success": True, "users": len(user_ids)})


@bp.route("/settlement-events")
@admin_required
def settlement_events():
    limit = min(request.args.get("limit", 50, type=int), 500)
    events = (
        SettlementEvent.query.order_by(
            SettlementEvent.created_at.desc(), SettlementEvent.id.desc()
        )
        .limit(limit)
        .all()
    )
    return jsonify([event.to_dict() for event in events])


@bp.route("/scheduler")
@admin_required
def scheduler_status():
    return jsonify(scheduler_service.get_status())


@bp.route("/scheduler/run/<job_id>", methods=["POST"])
@admin_required
def run_scheduler_job(job_id):
    ok, message = scheduler_service.run_job(job_id)
    if not ok:
        raise InvalidRequest(message)
    db.session.expire_all()
    return jsonify({"success": True, "message": message})


@bp.route("/status")
@admin_required
def status():
    from streakr.socketio_handlers import get_connection_stats

    return jsonify(
        {
            "scheduler": scheduler_service.get_status(),
            "cache": get_cache_stats(),
            "socketio": get_connection_stats(),
            "performance": get_operation_stats(),
        }
    )

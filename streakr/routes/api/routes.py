import logging

from flask import jsonify, request
from flask_login import current_user, login_required

from streakr import db, limiter
from streakr.errors import InvalidRequest, NotFound
from streakr.models import League, Season
from streakr.routes.api import bp
from streakr.services import (
    insurance_service,
    leaderboard_service,
    pick_service,
    streak_service,
)
from streakr.utils.normalize import parse_round_code

logger = logging.getLogger(__name__)


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidRequest("Expected a JSON object")
    return data


def _question_id(data):
    question_id = data.get("questionId", data.get("question_id"))
    if question_id in (None, ""):
        raise InvalidRequest("questionId is required")
    return question_id


@bp.route("/seasons/current")
def current_season():
    season = Season.get_current_season()
    if not season:
        raise NotFound("No active season")
    data = season.to_dict()
    data["rounds"] = [rnd.to_dict() for rnd in season.rounds.all()]
    return jsonify(data)


@bp.route("/rounds/<round_ref>")
def round_board(round_ref):
    """Round/Match read; accepts 3, R3 or OR"""
    round_number = int(round_ref) if round_ref.isdigit() else parse_round_code(round_ref)
    if round_number is None:
        raise InvalidRequest(f"Invalid round {round_ref!r}")

    user_id = current_user.id if current_user.is_authenticated else None
    return jsonify(pick_service.get_round_board(round_number, user_id=user_id))


@bp.route("/picks", methods=["POST"])
@login_required
@limiter.limit("120 per minute")
def submit_pick():
    data = _json_body()
    if "outcome" not in data and "pick" not in data:
        raise InvalidRequest("outcome is required (yes, no or null to clear)")
    outcome = data.get("outcome", data.get("pick"))

    pick = pick_service.submit_pick(current_user.id, _question_id(data), outcome)
    return jsonify(
        {
            "success": True,
            "questionId": _question_id(data),
            "pick": pick.to_dict() if pick else None,
        }
    )


@bp.route("/panic", methods=["POST"])
@login_required
@limiter.limit("10 per minute")
def panic():
    data = _json_body()
    panic_void = insurance_service.use_panic(current_user.id, _question_id(data))
    return jsonify({"success": True, "panic": panic_void.to_dict()})


@bp.route("/free-kick")
@login_required
def free_kick():
    return jsonify(insurance_service.get_free_kick_status(current_user.id))


@bp.route("/streak")
@login_required
def streak():
    return jsonify(streak_service.get_streak_breakdown(current_user.id))


def _ladder_row(entry):
    if entry is None:
        return None
    return {
        "playerId": entry["player_id"],
        "displayName": entry["display_name"],
        "avatarUrl": entry.get("avatar_url"),
        "rank": entry["rank"],
        "streakValue": entry["streak"],
    }


@bp.route("/leaderboard")
def leaderboard():
    """
    Leaderboard read.

    Rows are published as ``{playerId, displayName, avatarUrl, rank,
    streakValue}``; the service and CLI use the snake_case
    ``player_id`` / ``display_name`` / ``streak`` form.
    """
    scope = request.args.get("scope", "overall")
    league_id = request.args.get("league", type=int)
    limit = request.args.get("limit", type=int)

    if league_id is not None:
        if not current_user.is_authenticated:
            raise InvalidRequest("Log in to view league ladders")
        league = db.session.get(League, league_id)
        if league is None or not league.is_user_member(current_user.id):
            raise NotFound("League not found", league_id=league_id)

    user_id = current_user.id if current_user.is_authenticated else None
    board = leaderboard_service.get_leaderboard(
        scope, user_id=user_id, limit=limit, league_id=league_id
    )
    return jsonify(
        dict(
            board,
            entries=[_ladder_row(entry) for entry in board["entries"]],
            player_entry=_ladder_row(board.get("player_entry")),
        )
    )


@bp.route("/leagues")
@login_required
def list_leagues():
    return jsonify(
        [league.to_dict(include_code=True) for league in current_user.get_leagues()]
    )


@bp.route("/leagues", methods=["POST"])
@login_required
@limiter.limit("10 per hour")
def create_league():
    data = _json_body()
    name = str(data.get("name") or "").strip()
    if not name or len(name) > 100:
        raise InvalidRequest("League name is required (max 100 characters)")

    kind = str(data.get("kind") or "private").strip().lower()
    if kind not in ("private", "venue"):
        raise InvalidRequest("kind must be 'private' or 'venue'")
    venue_name = str(data.get("venueName") or data.get("venue_name") or "").strip()
    if kind == "venue" and not venue_name:
        raise InvalidRequest("venueName is required for a venue league")

    league = League(
        name=name,
        description=(data.get("description") or "").strip() or None,
        kind=kind,
        venue_name=venue_name or None,
        creator_id=current_user.id,
    )
    db.session.add(league)
    db.session.flush()
    league.add_member(current_user, is_admin=True)
    db.session.commit()

    logger.info(f"User {current_user.id} created league {league.name} ({kind})")
    return jsonify(league.to_dict(include_code=True)), 201


@bp.route("/leagues/join", methods=["POST"])
@login_required
@limiter.limit("20 per hour")
def join_league():
    data = _json_body()
    code = str(data.get("code") or data.get("inviteCode") or "").strip().upper()
    if not code:
        raise InvalidRequest("Join code is required")

    league = League.query.filter_by(invite_code=code, is_active=True).first()
    if league is None:
        raise NotFound("No league with that code")

    added, message = league.add_member(current_user)
    if not added:
        raise InvalidRequest(message, league_id=league.id)
    db.session.commit()

    return jsonify({"success": True, "message": message, "league": league.to_dict()})


@bp.route("/leagues/<int:league_id>/leave", methods=["POST"])
@login_required
def leave_league(league_id):
    league = db.session.get(League, league_id)
    if league is None or not league.is_active:
        raise NotFound("League not found", league_id=league_id)

    left, message = league.remove_member(current_user)
    if not left:
        raise InvalidRequest(message, league_id=league_id)
    db.session.commit()

    logger.info(f"User {current_user.id} left league {league.name}")
    return jsonify({"success": True, "message": message})

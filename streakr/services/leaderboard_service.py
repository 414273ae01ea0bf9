"""
Leaderboard Aggregator

Pure read-side projection: every player's streak restricted to the matches of
a scope, ranked by streak (descending) then player id (ascending) with dense
ranks. Already-spent Free Kicks are honoured; credits are never consumed
here.
"""

import logging

from flask import current_app

from streakr import db
from streakr.errors import NotFound
from streakr.models import League, Match, Round, User
from streakr.services.lookups import resolve_season
from streakr.services.streak_calculator import calculate_streak
from streakr.services.streak_service import build_sheets_for_users, spent_free_kicks_by_user
from streakr.utils.cache_utils import cached_leaderboard
from streakr.utils.normalize import parse_leaderboard_scope
from streakr.utils.performance import PerformanceMonitor

logger = logging.getLogger(__name__)


def scope_matches(scope, season):
    """Matches a scope covers, or None when the scope does not exist"""
    parsed = parse_leaderboard_scope(scope)
    if parsed is None:
        return None

    kind, round_number = parsed
    query = Match.query.join(Round, Match.round_id == Round.id).filter(
        Round.season_id == season.id
    )
    if kind == "round":
        if Round.query.filter_by(season_id=season.id, number=round_number).first() is None:
            return None
        query = query.filter(Round.number == round_number)
    elif kind == "finals":
        query = query.filter(Round.is_finals.is_(True))

    return query.order_by(Match.start_time, Match.id).all()


def dense_rank(rows):
    """
    Sort rows by streak desc, player id asc and assign dense ranks in place.

    Tied streaks share a rank; the next distinct value gets rank + 1.
    """
    rows.sort(key=lambda row: (-row["streak"], row["player_id"]))
    rank = 0
    previous = None
    for row in rows:
        if row["streak"] != previous:
            rank += 1
            previous = row["streak"]
        row["rank"] = rank
    return rows


@cached_leaderboard
def build_leaderboard(scope, league_id=None):
    """Full ranked rows for a scope (cached; invalidated on settlement)"""
    try:
        season = resolve_season()
    except NotFound:
        return []

    matches = scope_matches(scope, season)
    if not matches:
        return []

    user_ids = None
    if league_id is not None:
        league = db.session.get(League, league_id)
        if league is None or not league.is_active:
            return []
        user_ids = league.get_member_ids()
        if not user_ids:
            return []

    with PerformanceMonitor(f"leaderboard {scope}"):
        sheets_by_user = build_sheets_for_users(matches, user_ids=user_ids)
        spent_by_user = spent_free_kicks_by_user(
            [match.id for match in matches], user_ids=sheets_by_user.keys()
        )

        users = {}
        if sheets_by_user:
            active = User.query.filter(
                User.id.in_(list(sheets_by_user)), User.is_active.is_(True)
            ).all()
            users = {user.id: user for user in active}

        rows = []
        for user_id, sheets in sheets_by_user.items():
            user = users.get(user_id)
            if user is None:
                continue
            result = calculate_streak(sheets, 0, spent_by_user.get(user_id, ()))
            rows.append(
                {
                    "player_id": user_id,
                    "display_name": user.display_name,
                    "avatar_url": user.avatar_url,
                    "streak": result.current_streak,
                }
            )

    return dense_rank(rows)


def _outside_entry(rows, user_id):
    """Entry for a player with no picks in the scope: streak 0, ranked accordingly"""
    user = db.session.get(User, user_id)
    if user is None:
        return None
    distinct_above = len({row["streak"] for row in rows if row["streak"] > 0})
    return {
        "player_id": user.id,
        "display_name": user.display_name,
        "avatar_url": user.avatar_url,
        "streak": 0,
        "rank": distinct_above + 1,
    }


def get_leaderboard(scope="overall", user_id=None, limit=None, league_id=None):
    """
    Leaderboard read.

    Returns ``{"scope", "entries", "player_entry", "player_in_top",
    "total_players"}``. ``entries`` is the top-N; ``player_entry`` is the
    requesting player's own row (None without a user or when the scope does
    not exist).
    """
    scope = (scope or "overall").strip().lower()
    if limit is None:
        limit = current_app.config.get("LEADERBOARD_TOP_N", 50)
    limit = max(int(limit), 1)

    empty = {
        "scope": scope,
        "entries": [],
        "player_entry": None,
        "player_in_top": False,
        "total_players": 0,
    }
    if parse_leaderboard_scope(scope) is None:
        logger.debug(f"Unknown leaderboard scope {scope!r}")
        return empty

    rows = build_leaderboard(scope, league_id)
    top = rows[:limit]

    player_entry = None
    player_in_top = False
    if user_id is not None:
        player_in_top = any(row["player_id"] == user_id for row in top)
        player_entry = next((row for row in rows if row["player_id"] == user_id), None)
        if player_entry is None and league_id is None and rows:
            player_entry = _outside_entry(rows, user_id)

    return {
        "scope": scope,
        "entries": top,
        "player_entry": player_entry,
        "player_in_top": player_in_top,
        "total_players": len(rows),
    }

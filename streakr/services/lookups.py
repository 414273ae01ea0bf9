"""Shared loaders that turn ids/slugs into models or raise NotFound"""

from flask import current_app

from streakr import db
from streakr.errors import NotFound
from streakr.models import Match, Question, Season, User


def _is_numeric_id(value):
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, str) and value.strip().isdigit()


def get_question(question_id):
    """Question by primary key or stable slug (``R1-G1-Q2-1x9z0k``)"""
    question = None
    if _is_numeric_id(question_id):
        question = db.session.get(Question, int(question_id))
    elif isinstance(question_id, str) and question_id.strip():
        question = Question.query.filter_by(slug=question_id.strip()).first()

    if question is None:
        raise NotFound(f"Question {question_id!r} not found", question_id=question_id)
    return question


def get_match(match_id):
    """Match by primary key or game id (``R4-G6``)"""
    match = None
    if _is_numeric_id(match_id):
        match = db.session.get(Match, int(match_id))
    elif isinstance(match_id, str) and match_id.strip():
        match = Match.query.filter_by(slug=match_id.strip().upper()).first()

    if match is None:
        raise NotFound(f"Match {match_id!r} not found", match_id=match_id)
    return match


def get_user(user_id):
    user = db.session.get(User, int(user_id)) if _is_numeric_id(user_id) else None
    if user is None:
        raise NotFound(f"User {user_id!r} not found", user_id=user_id)
    return user


def resolve_season(season_id=None):
    """
    Season by id, else the active season, else the configured SEASON_YEAR.

    Raises NotFound when none of those exist.
    """
    if season_id is not None:
        season = db.session.get(Season, season_id)
        if season is None:
            raise NotFound(f"Season {season_id} not found")
        return season

    season = Season.get_current_season()
    if season is None:
        year = current_app.config.get("SEASON_YEAR")
        season = Season.query.filter_by(year=year).first() if year else None
    if season is None:
        raise NotFound("No active season")
    return season

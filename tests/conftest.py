from datetime import datetime, timedelta, timezone

import pytest
from flask_login import FlaskLoginClient

from streakr import create_app, db
from streakr.models import Match, Pick, Question, Round, Season, User


def utc_now():
    return datetime.now(timezone.utc).replace(tzinfo=None)


@pytest.fixture
def app():
    app = create_app("testing")
    app.test_client_class = FlaskLoginClient

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def season(app):
    season = Season.create_season(2026)
    season.is_active = True
    db.session.commit()
    return season


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make_user(username=None, is_admin=False, **kwargs):
        counter["n"] += 1
        username = username or f"player{counter['n']}"
        user = User(
            username=username,
            email=f"{username}@example.com",
            is_admin=is_admin,
            **kwargs,
        )
        user.set_password("password123")
        db.session.add(user)
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def make_round(season):
    def _make_round(number=1, is_finals=False):
        rnd = Round(season_id=season.id, number=number, is_finals=is_finals)
        db.session.add(rnd)
        db.session.commit()
        return rnd

    return _make_round


@pytest.fixture
def make_match(season, make_round):
    """Matches kick off in the future, one day apart in creation order"""
    counter = {"n": 0}

    def _make_match(rnd=None, start_time=None, **kwargs):
        counter["n"] += 1
        if rnd is None:
            rnd = Round.query.filter_by(season_id=season.id, number=1).first()
            rnd = rnd or make_round(1)
        game_number = rnd.matches.count() + 1
        match = Match(
            round_id=rnd.id,
            slug=f"{rnd.code}-G{game_number}",
            game_number=game_number,
            home_team=kwargs.pop("home_team", "Carlton"),
            away_team=kwargs.pop("away_team", "Richmond"),
            venue=kwargs.pop("venue", "MCG"),
            start_time=start_time or utc_now() + timedelta(days=counter["n"]),
            **kwargs,
        )
        db.session.add(match)
        db.session.commit()
        return match

    return _make_match


@pytest.fixture
def make_question(make_match):
    counter = {"n": 0}

    def _make_question(match=None, quarter=1, status="open", outcome=None, **kwargs):
        counter["n"] += 1
        match = match or make_match()
        question = Question(
            match_id=match.id,
            slug=f"{match.slug}-Q{quarter}-t{counter['n']}",
            quarter=quarter,
            text=kwargs.pop("text", f"Test question {counter['n']}?"),
            status=status,
            outcome=outcome,
            **kwargs,
        )
        db.session.add(question)
        db.session.commit()
        return question

    return _make_question


@pytest.fixture
def make_pick(app):
    def _make_pick(user, question, outcome="yes"):
        pick = Pick(user_id=user.id, question_id=question.id, outcome=outcome)
        db.session.add(pick)
        db.session.commit()
        return pick

    return _make_pick

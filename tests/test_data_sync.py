from datetime import datetime

import pytest
import requests

from streakr.errors import InvalidRequest
from streakr.models import Match, Question, Round
from streakr.utils import data_sync
from streakr.utils.data_sync import SquiggleSync, SyncError, import_round_rows

ROWS = [
    {
        "Round": "R1",
        "Game": 1,
        "Match": "Carlton vs Richmond",
        "Venue": "MCG",
        "StartTime": "2026-03-05T08:30:00Z",
        "Question": "Will Carlton win by 20+ points?",
        "Quarter": 0,
    },
    {
        "round": "R1",
        "game": "1",
        "match": "Carlton vs Richmond",
        "start_time": "2026-03-05T08:30:00Z",
        "question": "Will Cripps kick a goal in Q1?",
        "quarter": 1,
        "Status": "final",
        "Outcome": "yes",
        "Sponsor": "Corner Hotel",
    },
    {
        "Round": "OR",
        "Game": 2,
        "Match": "Sydney v Hawthorn",
        "StartTime": "2026-03-01T09:00:00Z",
        "Question": "Will Heeney kick 3+ goals?",
        "Quarter": 2,
        "Status": "final",
    },
    {
        "Round": "R1",
        "Game": 3,
        "Match": "TBC",
        "StartTime": "2026-03-06T08:30:00Z",
        "Question": "Will anyone turn up?",
    },
]


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code
        self.headers = {}

    def json(self):
        return self.payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")


@pytest.fixture
def squiggle(monkeypatch):
    """Routes Session.get to canned payloads keyed by query type"""
    payloads = {}
    calls = []

    def fake_get(self, url, timeout=None):
        calls.append(url)
        kind = "teams" if "q=teams" in url else "games"
        payload = payloads.get(kind)
        if isinstance(payload, FakeResponse):
            return payload
        return FakeResponse(payload or {})

    monkeypatch.setattr(requests.Session, "get", fake_get)
    monkeypatch.setattr(data_sync.time, "sleep", lambda seconds: None)
    return payloads, calls


class TestImportRoundRows:
    def test_import_creates_rounds_matches_and_questions(self, season):
        stats = import_round_rows(ROWS)

        assert stats == {"rounds": 2, "matches": 2, "questions": 3, "skipped": 1}

        opening = Round.query.filter_by(season_id=season.id, number=0).one()
        assert opening.code == "OR"

        match = Match.query.filter_by(slug="R1-G1").one()
        assert (match.home_team, match.away_team, match.venue) == ("Carlton", "Richmond", "MCG")
        assert match.start_time == datetime(2026, 3, 5, 8, 30)
        assert match.is_unlocked_for_picks

        questions = match.get_questions()
        assert [q.quarter for q in questions] == [0, 1]
        assert questions[0].status == "open"
        assert (questions[1].status, questions[1].outcome) == ("final", "yes")
        assert questions[1].is_sponsor_question
        assert questions[1].sponsor_name == "Corner Hotel"
        assert questions[1].slug.startswith("R1-G1-Q1-")

    def test_final_without_result_imports_as_pending(self, season):
        import_round_rows(ROWS)

        question = Match.query.filter_by(slug="OR-G2").one().get_questions()[0]
        assert question.status == "pending"
        assert question.outcome is None

    def test_reimport_keeps_question_status(self, season):
        import_round_rows(ROWS)
        question = Question.query.filter(Question.slug.like("R1-G1-Q0-%")).one()
        question.status = "pending"

        rows = [dict(ROWS[0], Status="void")]
        stats = import_round_rows(rows)

        assert stats == {"rounds": 0, "matches": 0, "questions": 0, "skipped": 0}
        assert question.status == "pending"
        assert Question.query.count() == 3

    def test_unknown_status_rejects_the_whole_import(self, season):
        rows = ROWS[:2] + [dict(ROWS[2], Status="finalize_no")]

        with pytest.raises(InvalidRequest) as excinfo:
            import_round_rows(rows)

        assert excinfo.value.context["row"] == 3
        assert Round.query.count() == 0
        assert Question.query.count() == 0

    def test_import_needs_a_season(self, app):
        with pytest.raises(SyncError):
            import_round_rows(ROWS)


class TestSquiggleSync:
    def test_sync_round_updates_start_time_and_venue(self, squiggle, make_match):
        payloads, calls = squiggle
        match = make_match(home_team="Carlton", away_team="Richmond", venue=None)
        payloads["games"] = {
            "games": [
                {
                    "id": 35761,
                    "hteam": "Carlton",
                    "ateam": "Richmond",
                    "venue": "M.C.G.",
                    "unixtime": 1772699400,
                }
            ]
        }

        updated = SquiggleSync().sync_round(match.round)

        assert updated == 1
        assert match.start_time == datetime(2026, 3, 5, 8, 30)
        assert match.venue == "M.C.G."
        assert match.squiggle_id == 35761
        assert "q=games;year=2026;round=1;format=json" in calls[0]

    def test_team_ids_are_resolved(self, squiggle, make_match):
        payloads, calls = squiggle
        match = make_match(home_team="Sydney", away_team="Hawthorn")
        payloads["games"] = {
            "games": [
                {
                    "id": 1,
                    "hteam": 16,
                    "ateam": 8,
                    "venue": "S.C.G.",
                    "date": "2026-03-05 19:30:00",
                    "tz": "+11:00",
                }
            ]
        }
        payloads["teams"] = {
            "teams": [{"id": 16, "name": "Sydney"}, {"id": 8, "name": "Hawthorn"}]
        }

        syncer = SquiggleSync()
        syncer.min_request_interval = 0
        fixtures = syncer.fetch_games(2026, 1)

        assert fixtures[0]["home_team"] == "Sydney"
        assert fixtures[0]["start_time"] == datetime(2026, 3, 5, 8, 30)
        assert syncer.sync_round(match.round) == 1
        assert match.venue == "S.C.G."

    def test_unmatched_fixtures_change_nothing(self, squiggle, make_match):
        payloads, _ = squiggle
        match = make_match(home_team="Geelong", away_team="Collingwood")
        original = match.start_time
        payloads["games"] = {
            "games": [{"id": 9, "hteam": "Carlton", "ateam": "Essendon", "unixtime": 1772699400}]
        }

        assert SquiggleSync().sync_round(match.round) == 0
        assert match.start_time == original

    def test_server_errors_raise_sync_error(self, squiggle, make_match):
        payloads, calls = squiggle
        match = make_match()
        payloads["games"] = FakeResponse({}, status_code=503)

        with pytest.raises(SyncError):
            SquiggleSync().sync_round(match.round)
        assert len(calls) == 3

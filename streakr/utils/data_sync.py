"""
Fixture data: Squiggle AFL API sync and JSON round import

Squiggle supplies kick-off times and venues; questions come from the round
spreadsheets exported to JSON (one row per question).
"""

import logging
import time
from datetime import datetime, timezone
from functools import wraps

import requests
from flask import current_app

from streakr import db
from streakr.errors import InvalidRequest
from streakr.models import Match, Question, Round, Season
from streakr.utils.normalize import (
    normalize_outcome,
    normalize_status,
    parse_round_code,
    round_code,
    stable_question_id,
)
from streakr.utils.timezone_utils import parse_start_time, to_naive_utc

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """External fixture source unavailable or returned garbage"""


def rate_limit_decorator(max_retries=3, base_delay=1.0, backoff_factor=2.0):
    """
    Decorator to handle API rate limiting with exponential backoff
    """

    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            for attempt in range(max_retries):
                try:
                    response = func(self, *args, **kwargs)

                    if hasattr(response, "status_code"):
                        if response.status_code == 429:
                            retry_after = float(
                                response.headers.get(
                                    "Retry-After",
                                    base_delay * (backoff_factor**attempt),
                                )
                            )
                            logger.warning(
                                f"Rate limited. Waiting {retry_after}s before retry {attempt + 1}/{max_retries}"
                            )
                            time.sleep(retry_after)
                            continue
                        elif response.status_code >= 500:
                            delay = base_delay * (backoff_factor**attempt)
                            logger.warning(
                                f"Server error {response.status_code}. Waiting {delay}s before retry {attempt + 1}/{max_retries}"
                            )
                            time.sleep(delay)
                            continue

                    return response

                except requests.exceptions.RequestException as e:
                    delay = base_delay * (backoff_factor**attempt)
                    logger.warning(
                        f"Request failed: {e}. Waiting {delay}s before retry {attempt + 1}/{max_retries}"
                    )
                    if attempt < max_retries - 1:
                        time.sleep(delay)
                    else:
                        raise SyncError(str(e)) from e

            raise SyncError(f"Max retries ({max_retries}) exceeded")

        return wrapper

    return decorator


def _team_key(name):
    return "".join(ch for ch in str(name or "").lower() if ch.isalnum())


class SquiggleSync:
    """
    Pulls AFL fixtures from the Squiggle API and updates match start times
    and venues. Squiggle asks every client to send an identifying User-Agent.
    """

    def __init__(self, api_base_url=None, user_agent=None):
        config = current_app.config
        self.api_base_url = api_base_url or config.get(
            "SQUIGGLE_API_BASE_URL", "https://api.squiggle.com.au/"
        )
        self.session = requests.Session()
        self.session.headers.update(
            {
                "User-Agent": user_agent
                or config.get("SQUIGGLE_USER_AGENT", "STREAKr/1.0"),
                "Accept": "application/json",
            }
        )

        self.last_request_time = 0
        self.min_request_interval = 1.0
        self.request_count = 0

    def _enforce_rate_limit(self):
        """Minimum interval between requests"""
        time_since_last = time.time() - self.last_request_time
        if time_since_last < self.min_request_interval:
            time.sleep(self.min_request_interval - time_since_last)
        self.last_request_time = time.time()
        self.request_count += 1

    @rate_limit_decorator(max_retries=3, base_delay=2.0)
    def _make_api_request(self, query):
        """GET ``?q=<query>``; Squiggle separates parameters with ';'"""
        self._enforce_rate_limit()
        url = f"{self.api_base_url}?q={query};format=json"
        response = self.session.get(url, timeout=30)
        if response.status_code == 429 or response.status_code >= 500:
            return response
        response.raise_for_status()
        return response

    def _get_json(self, query):
        response = self._make_api_request(query)
        try:
            return response.json()
        except ValueError as e:
            raise SyncError(f"Invalid JSON from Squiggle for {query}") from e

    def fetch_teams(self, year):
        data = self._get_json(f"teams;year={year}")
        return {team["id"]: team["name"] for team in data.get("teams", [])}

    def fetch_games(self, year, round_number):
        """Normalized fixtures for one round: start time as naive UTC"""
        data = self._get_json(f"games;year={year};round={round_number}")
        games = data.get("games", [])

        teams = {}
        if any(isinstance(game.get("hteam"), int) for game in games):
            teams = self.fetch_teams(year)

        fixtures = []
        for game in games:
            home = game.get("hteam")
            away = game.get("ateam")
            home = teams.get(home, home) if isinstance(home, int) else home
            away = teams.get(away, away) if isinstance(away, int) else away

            start_time = None
            if game.get("unixtime"):
                start_time = to_naive_utc(
                    datetime.fromtimestamp(int(game["unixtime"]), tz=timezone.utc)
                )
            elif game.get("date"):
                start_time = parse_start_time(
                    f"{game['date'].replace(' ', 'T')}{game.get('tz') or ''}"
                )

            fixtures.append(
                {
                    "squiggle_id": game.get("id"),
                    "home_team": home,
                    "away_team": away,
                    "venue": game.get("venue"),
                    "start_time": start_time,
                }
            )
        return fixtures

    def sync_round(self, rnd):
        """
        Update start times and venues of a round's matches from Squiggle.

        Matches are paired by Squiggle id when known, else by team names.
        Returns the number of matches changed.
        """
        fixtures = self.fetch_games(rnd.season.year, rnd.number)
        by_teams = {
            (_team_key(f["home_team"]), _team_key(f["away_team"])): f for f in fixtures
        }
        by_id = {f["squiggle_id"]: f for f in fixtures if f["squiggle_id"]}

        updated = 0
        for match in rnd.matches.all():
            fixture = by_id.get(match.squiggle_id) or by_teams.get(
                (_team_key(match.home_team), _team_key(match.away_team))
            )
            if fixture is None:
                continue

            changed = False
            if fixture["start_time"] and fixture["start_time"] != match.start_time:
                logger.info(
                    f"{match.slug} start time {match.start_time} -> {fixture['start_time']}"
                )
                match.start_time = fixture["start_time"]
                changed = True
            if fixture["venue"] and fixture["venue"] != match.venue:
                match.venue = fixture["venue"]
                changed = True
            if fixture["squiggle_id"] and match.squiggle_id != fixture["squiggle_id"]:
                match.squiggle_id = fixture["squiggle_id"]
                changed = True
            if changed:
                updated += 1

        if updated:
            db.session.commit()
        logger.info(f"Squiggle sync for {rnd.code}: {updated} match(es) updated")
        return updated

    def sync_season(self, season):
        updated = 0
        for rnd in season.rounds.all():
            updated += self.sync_round(rnd)
        return updated


def _row_value(row, key):
    """Case/spacing-insensitive column lookup (``StartTime`` == ``start_time``)"""
    target = key.lower().replace("_", "").replace(" ", "")
    for column, value in row.items():
        if str(column).lower().replace("_", "").replace(" ", "").replace(".", "") == target:
            return value
    return None


def _round_number(value):
    if isinstance(value, int):
        return value
    text = str(value or "").strip().upper()
    if text in ("OPENING", "OPENING ROUND"):
        return 0
    parsed = parse_round_code(text)
    if parsed is not None:
        return parsed
    return int(text) if text.isdigit() else None


def _split_teams(label):
    for separator in (" vs ", " v ", " VS ", " V "):
        if separator in label:
            home, away = label.split(separator, 1)
            return home.strip(), away.strip()
    return None


def import_round_rows(rows, season=None):
    """
    Import question rows (round spreadsheet JSON) into a season.

    Each row carries Round, Game, Match ("Home vs Away"), Venue, StartTime,
    Question, Quarter and optionally Status, Sponsor. Rounds, matches and
    questions are upserted; question ids are the stable hash of
    round/game/quarter/text, so re-importing a corrected spreadsheet updates
    in place. Existing question status is never touched by a re-import. An
    unrecognised Status rejects the whole import with InvalidRequest.

    Returns ``{"rounds", "matches", "questions", "skipped"}`` counts.
    """
    if season is None:
        season = Season.get_current_season()
    if season is None:
        raise SyncError("No active season to import into")

    stats = {"rounds": 0, "matches": 0, "questions": 0, "skipped": 0}
    rounds = {rnd.number: rnd for rnd in season.rounds.all()}

    for index, row in enumerate(rows, start=1):
        round_number = _round_number(_row_value(row, "Round"))
        game_number = _row_value(row, "Game")
        label = str(_row_value(row, "Match") or "").strip()
        text = str(_row_value(row, "Question") or "").strip()
        start_time = parse_start_time(_row_value(row, "StartTime"))
        teams = _split_teams(label)

        try:
            game_number = int(game_number)
        except (TypeError, ValueError):
            game_number = None

        if round_number is None or not game_number or not text or not start_time or not teams:
            stats["skipped"] += 1
            continue

        try:
            status = normalize_status(_row_value(row, "Status"))
        except InvalidRequest as e:
            # Nothing from a partially read sheet is kept
            db.session.rollback()
            raise InvalidRequest(f"Row {index}: {e.message}", row=index, **e.context)

        rnd = rounds.get(round_number)
        if rnd is None:
            rnd = Round(season_id=season.id, number=round_number)
            db.session.add(rnd)
            db.session.flush()
            rounds[round_number] = rnd
            stats["rounds"] += 1

        game_id = f"{round_code(round_number)}-G{game_number}"
        match = Match.query.filter_by(slug=game_id).first()
        if match is None:
            match = Match(
                round_id=rnd.id,
                slug=game_id,
                game_number=game_number,
                home_team=teams[0],
                away_team=teams[1],
                venue=str(_row_value(row, "Venue") or "").strip() or None,
                start_time=start_time,
            )
            db.session.add(match)
            db.session.flush()
            stats["matches"] += 1

        try:
            quarter = int(_row_value(row, "Quarter") or 1)
        except (TypeError, ValueError):
            quarter = 1
        quarter = min(max(quarter, 0), 4)

        slug = stable_question_id(round_number, game_id, quarter, text)
        question = Question.query.filter_by(slug=slug).first()
        if question is None:
            outcome = normalize_outcome(_row_value(row, "Outcome"))
            if status == "void":
                outcome = "void"
            elif status == "final" and outcome not in ("yes", "no"):
                # Result not in the sheet yet
                status, outcome = "pending", None
            elif status != "final":
                outcome = None

            sponsor = _row_value(row, "Sponsor")
            question = Question(
                match_id=match.id,
                slug=slug,
                quarter=quarter,
                text=text,
                status=status,
                outcome=outcome,
                is_sponsor_question=bool(sponsor),
                sponsor_name=str(sponsor).strip() if sponsor else None,
            )
            db.session.add(question)
            stats["questions"] += 1
        else:
            question.text = text

    db.session.commit()
    logger.info(
        f"Imported season {season.year}: {stats['rounds']} rounds, "
        f"{stats['matches']} matches, {stats['questions']} questions "
        f"({stats['skipped']} rows skipped)"
    )
    return stats

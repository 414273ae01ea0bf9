#!/usr/bin/env python3
"""
STREAKr Management CLI

Command-line management for the STREAKr rules engine: seasons, round
imports, settlement, Free Kick grants and streak recomputes.
"""

import json
import logging

import click
from flask.cli import with_appcontext
from flask_migrate import downgrade, migrate, upgrade
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from streakr import create_app, db
from streakr.errors import StreakrError
from streakr.models import League, Match, Question, Round, Season, User
from streakr.services import (
    insurance_service,
    leaderboard_service,
    settlement_service,
    streak_service,
)
from streakr.utils.cache_utils import invalidate_leaderboard_cache
from streakr.utils.data_sync import SquiggleSync, SyncError, import_round_rows

app = create_app()


@click.group()
def cli():
    """STREAKr Management CLI"""
    pass


# Season Management Commands
@cli.group()
def season():
    """Season management commands"""
    pass


@season.command()
@click.argument("year", type=int)
@click.option("--activate", is_flag=True, help="Activate this season")
@with_appcontext
def create(year, activate):
    """Create a new season"""
    if Season.query.filter_by(year=year).first():
        click.echo(f"Season {year} already exists!")
        return

    try:
        season_obj = Season.create_season(year)
        db.session.commit()
        click.echo(f"✅ Created season {year}")

        if activate:
            season_obj.activate()
            click.echo(f"✅ Activated season {year}")
    except IntegrityError as e:
        db.session.rollback()
        click.echo(f"❌ Season {year} already exists!")
        logging.error(f"Season creation failed - integrity error: {e}")
    except SQLAlchemyError as e:
        db.session.rollback()
        click.echo(f"❌ Database error creating season: {str(e)}")
        logging.error(f"Season creation failed - SQL error: {e}")


@season.command()
@click.argument("year", type=int)
@with_appcontext
def activate(year):
    """Activate a season"""
    season_obj = Season.query.filter_by(year=year).first()
    if not season_obj:
        click.echo(f"❌ Season {year} not found!")
        return

    season_obj.activate()
    click.echo(f"✅ Activated season {year}")


@season.command(name="list")
@with_appcontext
def list_seasons():
    """List all seasons"""
    seasons = Season.query.order_by(Season.year.desc()).all()

    if not seasons:
        click.echo("No seasons found.")
        return

    click.echo("Seasons:")
    for s in seasons:
        status = "🟢 ACTIVE" if s.is_active else "⚪ Inactive"
        click.echo(f"  {s.year}: {status} - {s.rounds.count()} rounds")


# Data Commands
@cli.group()
def data():
    """Round import and fixture sync commands"""
    pass


@data.command(name="import-rounds")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--season", "year", type=int, help="Season year (default: active season)")
@with_appcontext
def import_rounds(path, year):
    """Import question rows from a JSON file (list of row objects)"""
    with open(path, encoding="utf-8") as fh:
        rows = json.load(fh)

    if isinstance(rows, dict):
        rows = rows.get("rows", [])

    season_obj = None
    if year:
        season_obj = Season.query.filter_by(year=year).first()
        if not season_obj:
            click.echo(f"❌ Season {year} not found!")
            return

    try:
        stats = import_round_rows(rows, season=season_obj)
    except (SyncError, StreakrError, SQLAlchemyError) as e:
        db.session.rollback()
        click.echo(f"❌ Import failed: {str(e)}")
        return

    click.echo(
        f"✅ Imported {stats['questions']} questions "
        f"({stats['rounds']} new rounds, {stats['matches']} new matches, "
        f"{stats['skipped']} rows skipped)"
    )


@data.command(name="sync-fixtures")
@click.option("--round", "round_number", type=int, help="Only sync this round")
@with_appcontext
def sync_fixtures(round_number):
    """Pull start times and venues from Squiggle for the active season"""
    season_obj = Season.get_current_season()
    if not season_obj:
        click.echo("❌ No active season")
        return

    syncer = SquiggleSync()
    try:
        if round_number is not None:
            rnd = season_obj.get_round(round_number)
            if not rnd:
                click.echo(f"❌ Round {round_number} not found")
                return
            updated = syncer.sync_round(rnd)
        else:
            updated = syncer.sync_season(season_obj)
    except SyncError as e:
        click.echo(f"❌ Fixture sync failed: {str(e)}")
        return

    click.echo(f"✅ Updated {updated} matches")


@data.command(name="auto-lock")
@with_appcontext
def auto_lock():
    """Lock open questions of matches that have started"""
    locked = settlement_service.auto_lock_started_matches()
    click.echo(f"✅ Locked {locked} questions")


# Settlement Commands
@cli.group()
def settle():
    """Question settlement commands"""
    pass


def _run_settlement(action, question_id, outcome=None, expected_version=None):
    command = {"questionId": question_id, "action": action, "outcome": outcome}
    if expected_version is not None:
        command["expectedVersion"] = expected_version

    try:
        result = settlement_service.apply_settlement_command(command)
    except StreakrError as e:
        click.echo(f"❌ {e.code}: {e.message}")
        return

    question = result.question
    if result.applied:
        click.echo(
            f"✅ {question.slug}: {result.from_status} -> {question.status} "
            f"(v{question.version}, {len(result.recomputed_users)} players recomputed)"
        )
    else:
        click.echo(f"⚪ {question.slug} already {question.status}, nothing to do")


@settle.command(name="result")
@click.argument("question_id")
@click.argument("outcome", type=click.Choice(["yes", "no"], case_sensitive=False))
@click.option("--expected-version", type=int, help="Reject if the question has moved on")
@with_appcontext
def settle_final(question_id, outcome, expected_version):
    """Settle a question with a yes/no outcome"""
    _run_settlement("settle", question_id, outcome.lower(), expected_version)


@settle.command(name="lock")
@click.argument("question_id")
@click.option("--expected-version", type=int)
@with_appcontext
def settle_lock(question_id, expected_version):
    """Lock a question (pending)"""
    _run_settlement("lock", question_id, expected_version=expected_version)


@settle.command(name="void")
@click.argument("question_id")
@click.option("--expected-version", type=int)
@with_appcontext
def settle_void(question_id, expected_version):
    """Void a question"""
    _run_settlement("void", question_id, expected_version=expected_version)


@settle.command(name="reopen")
@click.argument("question_id")
@click.option("--expected-version", type=int)
@with_appcontext
def settle_reopen(question_id, expected_version):
    """Reopen a question"""
    _run_settlement("reopen", question_id, expected_version=expected_version)


# Streak Commands
@cli.group()
def streaks():
    """Streak and leaderboard commands"""
    pass


@streaks.command()
@click.option("--user", "username", help="Recompute one player only")
@with_appcontext
def recompute(username):
    """Recompute streaks for the active season"""
    if username:
        user_obj = User.query.filter_by(username=username).first()
        if not user_obj:
            click.echo(f"❌ User {username} not found")
            return
        result = streak_service.recompute_user_streak(user_obj.id)
        click.echo(
            f"✅ {username}: current {result.current_streak}, longest {result.longest_streak}"
        )
    else:
        user_ids = streak_service.recompute_season_streaks()
        click.echo(f"✅ Recomputed {len(user_ids)} players")

    invalidate_leaderboard_cache()


@streaks.command()
@click.option("--scope", default="overall", help="overall, round-<n> or round-OR")
@click.option("--league", "league_id", type=int, help="League id")
@click.option("--limit", type=int, default=20)
@with_appcontext
def leaderboard(scope, league_id, limit):
    """Print a leaderboard"""
    if league_id is not None and not db.session.get(League, league_id):
        click.echo(f"❌ League {league_id} not found")
        return

    board = leaderboard_service.get_leaderboard(scope, limit=limit, league_id=league_id)
    if not board["entries"]:
        click.echo("No entries.")
        return

    click.echo(f"Leaderboard ({board['scope']}):")
    for entry in board["entries"]:
        click.echo(f"  #{entry['rank']:<3} {entry['display_name']:<24} {entry['streak']}")


# User Management Commands
@cli.group()
def user():
    """User management commands"""
    pass


@user.command()
@click.argument("username")
@click.argument("email")
@click.argument("password")
@with_appcontext
def create_admin(username, email, password):
    """Create an admin user"""
    existing = User.query.filter(
        (User.username == username) | (User.email == email)
    ).first()

    if existing:
        click.echo(
            f"❌ User with username '{username}' or email '{email}' already exists!"
        )
        return

    user_obj = User(username=username, email=email, is_active=True, is_admin=True)
    user_obj.set_password(password)

    db.session.add(user_obj)
    db.session.commit()

    click.echo(f"✅ Created admin user '{username}' ({email})")


@user.command()
@click.argument("username")
@click.option("--count", type=int, default=1, help="Credits to add")
@with_appcontext
def grant_free_kick(username, count):
    """Grant Free Kick credits for the active season"""
    user_obj = User.query.filter_by(username=username).first()
    if not user_obj:
        click.echo(f"❌ User {username} not found")
        return

    try:
        credit = insurance_service.grant_free_kicks(user_obj.id, count)
    except StreakrError as e:
        click.echo(f"❌ {e.message}")
        return

    click.echo(f"✅ {username} now has {credit.remaining} Free Kick credit(s)")


@user.command(name="list")
@with_appcontext
def list_users():
    """List all users"""
    users = User.query.order_by(User.created_at.desc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("Users:")
    for u in users:
        status = "🟢" if u.is_active else "🔴"
        admin = " [admin]" if u.is_admin else ""
        click.echo(
            f"  {status} {u.username} ({u.email}){admin} - streak {u.current_streak}"
        )


# Database Commands
@cli.group(name="db")
def db_cmd():
    """Database commands"""
    pass


@db_cmd.command()
@with_appcontext
def init_db():
    """Initialize database tables"""
    db.create_all()
    click.echo("✅ Database tables created successfully!")


@db_cmd.command()
@with_appcontext
def reset():
    """⚠️  DANGER: Drop and recreate all tables"""
    if not click.confirm("This will DELETE ALL DATA. Are you sure?"):
        click.echo("Cancelled.")
        return

    db.drop_all()
    db.create_all()
    click.echo("✅ Database reset successfully!")


@db_cmd.command()
@click.option("-m", "--message", required=True, help="Migration message")
@with_appcontext
def create_migration(message):
    """Create a new migration"""
    migrate(message=message)
    click.echo(f"✅ Migration created: {message}")


@db_cmd.command()
@click.option("--revision", default="head", help="Revision to upgrade to")
@with_appcontext
def apply_migrations(revision):
    """Apply migrations to database"""
    upgrade(revision=revision)
    click.echo(f"✅ Migrations applied to {revision}")


@db_cmd.command()
@click.option("--revision", required=True, help="Revision to downgrade to")
@with_appcontext
def rollback_migration(revision):
    """Rollback migrations to specific revision"""
    downgrade(revision=revision)
    click.echo(f"✅ Rolled back to {revision}")


@cli.command()
@with_appcontext
def status():
    """Show application status"""
    click.echo("🏉 STREAKr Status")
    click.echo("=" * 40)

    try:
        db.session.execute(text("SELECT 1"))
        click.echo("✅ Database: Connected")
    except SQLAlchemyError as e:
        click.echo(f"❌ Database: Error - {str(e)}")
        return

    current_season = Season.get_current_season()
    if current_season:
        click.echo(f"✅ Current Season: {current_season.year}")
    else:
        click.echo("⚠️  Current Season: None active")

    user_count = User.query.filter_by(is_active=True).count()
    click.echo(f"👥 Active Users: {user_count}")

    league_count = League.query.filter_by(is_active=True).count()
    click.echo(f"🏆 Active Leagues: {league_count}")

    if current_season:
        match_count = len(current_season.get_matches())
        settled = (
            Question.query.join(Match)
            .join(Round, Match.round_id == Round.id)
            .filter(
                Round.season_id == current_season.id,
                Question.status.in_(("final", "void")),
            )
            .count()
        )
        click.echo(f"🏉 Matches: {match_count}, settled questions: {settled}")


if __name__ == "__main__":
    with app.app_context():
        cli()

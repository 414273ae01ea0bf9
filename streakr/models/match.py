from datetime import datetime, timezone

from streakr import db


class Match(db.Model):
    __tablename__ = "matches"

    id = db.Column(db.Integer, primary_key=True)
    round_id = db.Column(db.Integer, db.ForeignKey("rounds.id"), nullable=False)

    # Stable game id, e.g. "R1-G3" / "OR-G1"
    slug = db.Column(db.String(20), unique=True, nullable=False, index=True)
    game_number = db.Column(db.Integer, nullable=False)

    home_team = db.Column(db.String(60), nullable=False)
    away_team = db.Column(db.String(60), nullable=False)
    venue = db.Column(db.String(120))

    start_time = db.Column(db.DateTime, nullable=False)

    # Admin override, independent of the time-based lock
    is_unlocked_for_picks = db.Column(db.Boolean, default=True, nullable=False)

    # External IDs for fixture sync
    squiggle_id = db.Column(db.Integer, unique=True, index=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    questions = db.relationship(
        "Question",
        backref="match",
        lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="Question.quarter",
    )

    __table_args__ = (
        db.UniqueConstraint("round_id", "game_number", name="unique_round_game"),
        db.Index("idx_match_start_time", "start_time"),
        db.CheckConstraint("home_team != away_team", name="different_teams"),
    )

    def __repr__(self):
        return f"<Match {self.slug} {self.label}>"

    @property
    def label(self):
        return f"{self.home_team} vs {self.away_team}"

    @property
    def start_time_utc(self):
        """Start time as an aware UTC datetime (naive values are stored as UTC)"""
        if self.start_time is None:
            return None
        if self.start_time.tzinfo is None:
            return self.start_time.replace(tzinfo=timezone.utc)
        return self.start_time.astimezone(timezone.utc)

    def has_started(self, now=None):
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now >= self.start_time_utc

    def is_locked(self, now=None):
        """Locked once the bounce has happened or when an admin has closed picks"""
        return self.has_started(now) or not self.is_unlocked_for_picks

    def get_questions(self):
        """Questions in quarter order (0 = full game comes first)"""
        from .question import Question

        return self.questions.order_by(Question.quarter, Question.id).all()

    def to_dict(self, now=None):
        from streakr.utils.timezone_utils import format_match_time

        return {
            "id": self.id,
            "slug": self.slug,
            "round_id": self.round_id,
            "game_number": self.game_number,
            "match": self.label,
            "home_team": self.home_team,
            "away_team": self.away_team,
            "venue": self.venue,
            "start_time": self.start_time_utc.isoformat() if self.start_time else None,
            "local_start_time": format_match_time(self.start_time),
            "is_unlocked_for_picks": self.is_unlocked_for_picks,
            "is_locked": self.is_locked(now),
        }

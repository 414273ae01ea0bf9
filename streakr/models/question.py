from datetime import datetime, timezone

from sqlalchemy.orm import validates

from streakr import db
from streakr.utils.normalize import normalize_outcome, normalize_status


class Question(db.Model):
    __tablename__ = "questions"

    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey("matches.id"), nullable=False)

    # Stable id shared with the web client, e.g. "R1-G1-Q2-1x9z0k"
    slug = db.Column(db.String(80), unique=True, nullable=False, index=True)

    # 0 = full game, otherwise 1-4
    quarter = db.Column(db.Integer, nullable=False, default=1)
    text = db.Column(db.String(500), nullable=False)

    # open -> pending -> final, any -> void, any -> open (reopen)
    status = db.Column(db.String(10), nullable=False, default="open")
    outcome = db.Column(db.String(4))

    # Sponsor "mystery" question: presentational only
    is_sponsor_question = db.Column(db.Boolean, default=False)
    sponsor_name = db.Column(db.String(120))

    # Presentational pass-through
    comment_count = db.Column(db.Integer, default=0)

    # Compare-and-set token, bumped by every settlement transition
    version = db.Column(db.Integer, nullable=False, default=1)
    settled_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    picks = db.relationship(
        "Pick", backref="question", lazy="dynamic", cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.CheckConstraint("quarter >= 0 AND quarter <= 4", name="valid_quarter"),
        db.CheckConstraint(
            "status IN ('open', 'pending', 'final', 'void')", name="valid_status"
        ),
        db.Index("idx_question_match", "match_id"),
        db.Index("idx_question_status", "status"),
    )

    def __repr__(self):
        return f"<Question {self.slug} status={self.status} outcome={self.outcome}>"

    @validates("status")
    def _normalize_status(self, key, value):
        return normalize_status(value)

    @validates("outcome")
    def _normalize_outcome(self, key, value):
        if value is None:
            return None
        return normalize_outcome(value)

    @property
    def is_open(self):
        return self.status == "open"

    def accepts_picks(self, now=None):
        """Open for pick writes: question open and its match not locked"""
        return self.is_open and not self.match.is_locked(now)

    def pick_counts(self):
        from .pick import Pick

        yes = self.picks.filter(Pick.outcome == "yes").count()
        no = self.picks.filter(Pick.outcome == "no").count()
        return {"yes": yes, "no": no, "total": yes + no}

    def to_dict(self, user_pick=None, include_stats=False, now=None):
        data = {
            "id": self.id,
            "question_id": self.slug,
            "match_id": self.match_id,
            "quarter": self.quarter,
            "question": self.text,
            "status": self.status,
            "outcome": self.outcome,
            "version": self.version,
            "is_sponsor_question": bool(self.is_sponsor_question),
            "sponsor_name": self.sponsor_name,
            "comment_count": self.comment_count or 0,
            "accepts_picks": self.accepts_picks(now),
        }
        if user_pick is not None:
            data["user_pick"] = user_pick
        if include_stats:
            counts = self.pick_counts()
            total = counts["total"]
            data["yes_percent"] = round(counts["yes"] / total * 100) if total else 0
            data["no_percent"] = round(counts["no"] / total * 100) if total else 0
        return data

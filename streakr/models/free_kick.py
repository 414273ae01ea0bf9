from datetime import datetime, timezone

from streakr import db


class FreeKickCredit(db.Model):
    """Season-scoped Free Kick balance, granted externally"""

    __tablename__ = "free_kick_credits"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    season_id = db.Column(db.Integer, db.ForeignKey("seasons.id"), nullable=False)

    remaining = db.Column(db.Integer, nullable=False, default=0)
    # Start of the current holding window; reset whenever the balance goes 0 -> 1
    held_since = db.Column(db.DateTime)

    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("user_id", "season_id", name="unique_user_season_credit"),
        db.CheckConstraint("remaining >= 0", name="non_negative_credit"),
    )

    def __repr__(self):
        return f"<FreeKickCredit user_id={self.user_id} season_id={self.season_id} remaining={self.remaining}>"


class FreeKickUse(db.Model):
    """One spent credit, pinned to the broken match it insured"""

    __tablename__ = "free_kick_uses"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    season_id = db.Column(db.Integer, db.ForeignKey("seasons.id"), nullable=False)
    match_id = db.Column(db.Integer, db.ForeignKey("matches.id"), nullable=False)

    used_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    match = db.relationship("Match")

    __table_args__ = (
        db.UniqueConstraint("user_id", "match_id", name="unique_user_match_free_kick"),
        db.Index("idx_free_kick_use_user_season", "user_id", "season_id"),
    )

    def __repr__(self):
        return f"<FreeKickUse user_id={self.user_id} match_id={self.match_id}>"

    def to_dict(self):
        return {
            "match_id": self.match_id,
            "match": self.match.slug if self.match else None,
            "used_at": self.used_at.isoformat() if self.used_at else None,
        }

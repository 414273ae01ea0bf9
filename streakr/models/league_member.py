from datetime import datetime, timezone

from streakr import db


class LeagueMember(db.Model):
    __tablename__ = "league_members"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    league_id = db.Column(db.Integer, db.ForeignKey("leagues.id"), nullable=False)

    is_active = db.Column(db.Boolean, default=True)
    is_admin = db.Column(db.Boolean, default=False)

    joined_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    left_at = db.Column(db.DateTime)

    __table_args__ = (
        db.UniqueConstraint("user_id", "league_id", name="unique_user_league"),
        db.Index("idx_league_members_active", "league_id", "is_active"),
    )

    def __repr__(self):
        return f"<LeagueMember user_id={self.user_id} league_id={self.league_id}>"

    def deactivate(self):
        self.is_active = False
        self.left_at = datetime.now(timezone.utc)

    def reactivate(self):
        self.is_active = True
        self.left_at = None
        self.joined_at = datetime.now(timezone.utc)

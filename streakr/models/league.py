import secrets
from datetime import datetime, timezone

from streakr import db

LEAGUE_KINDS = ("private", "venue")


class League(db.Model):
    """Locker room or venue league; only used to filter leaderboards"""

    __tablename__ = "leagues"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)

    kind = db.Column(db.String(10), nullable=False, default="private")
    venue_name = db.Column(db.String(120))

    is_active = db.Column(db.Boolean, default=True)
    max_members = db.Column(db.Integer, default=100)

    # Code players type in to join
    invite_code = db.Column(db.String(8), unique=True, nullable=False, index=True)

    creator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    members = db.relationship(
        "LeagueMember", backref="league", lazy="dynamic", cascade="all, delete-orphan"
    )
    creator = db.relationship("User", foreign_keys=[creator_id])

    __table_args__ = (
        db.CheckConstraint("kind IN ('private', 'venue')", name="valid_league_kind"),
        db.Index("idx_league_active", "is_active"),
    )

    def __repr__(self):
        return f"<League {self.name}>"

    def __init__(self, **kwargs):
        super(League, self).__init__(**kwargs)
        if not self.invite_code:
            self.invite_code = self.generate_invite_code()

    @staticmethod
    def generate_invite_code():
        """Generate a unique 8-character join code"""
        while True:
            code = secrets.token_urlsafe(6)[:8].upper()
            if not League.query.filter_by(invite_code=code).first():
                return code

    def get_member_count(self):
        return self.members.filter_by(is_active=True).count()

    def get_member_ids(self):
        from .league_member import LeagueMember

        rows = (
            db.session.query(LeagueMember.user_id)
            .filter_by(league_id=self.id, is_active=True)
            .all()
        )
        return {row.user_id for row in rows}

    def is_user_member(self, user_id):
        return (
            self.members.filter_by(user_id=user_id, is_active=True).first() is not None
        )

    def add_member(self, user, is_admin=False):
        """Add a user to the league; returns (added, message)"""
        from .league_member import LeagueMember

        existing = self.members.filter_by(user_id=user.id).first()
        if existing:
            if existing.is_active:
                return False, "Already a member"
            existing.reactivate()
            return True, "Membership reactivated"

        if self.get_member_count() >= self.max_members:
            return False, "League is full"

        membership = LeagueMember(user_id=user.id, league_id=self.id, is_admin=is_admin)
        db.session.add(membership)
        return True, "Joined league"

    def remove_member(self, user):
        """Deactivate a membership; the creator cannot leave their own league"""
        if user.id == self.creator_id:
            return False, "The league creator cannot leave"

        membership = self.members.filter_by(user_id=user.id, is_active=True).first()
        if membership is None:
            return False, "Not a member"

        membership.deactivate()
        return True, "Left league"

    def to_dict(self, include_code=False):
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "kind": self.kind,
            "venue_name": self.venue_name,
            "member_count": self.get_member_count(),
            "max_members": self.max_members,
            "creator": self.creator.username if self.creator else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_code:
            data["invite_code"] = self.invite_code
        return data

from datetime import datetime, timezone

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from streakr import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    # Profile information
    first_name = db.Column(db.String(50))
    surname = db.Column(db.String(50))
    avatar_url = db.Column(db.String(500))
    favourite_team = db.Column(db.String(60))

    # Account status
    is_active = db.Column(db.Boolean, default=True)
    is_admin = db.Column(db.Boolean, default=False)

    # Derived streak cache for the active season (recomputed, never edited directly)
    current_streak = db.Column(db.Integer, default=0, nullable=False)
    longest_streak = db.Column(db.Integer, default=0, nullable=False)
    streak_updated_at = db.Column(db.DateTime)

    # Timestamps
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    last_login = db.Column(db.DateTime)

    # Relationships
    picks = db.relationship(
        "Pick", backref="user", lazy="dynamic", cascade="all, delete-orphan"
    )
    league_memberships = db.relationship(
        "LeagueMember", backref="user", lazy="dynamic", cascade="all, delete-orphan"
    )

    __table_args__ = (
        db.Index("idx_user_current_streak", "current_streak"),
        db.Index("idx_user_active_status", "is_active"),
    )

    def __repr__(self):
        return f"<User {self.username}>"

    def set_password(self, password):
        """Set password hash"""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Check password against hash"""
        return check_password_hash(self.password_hash, password)

    @property
    def display_name(self):
        """First name + surname, else username, else 'Player'"""
        first = (self.first_name or "").strip()
        last = (self.surname or "").strip()
        if first or last:
            return f"{first} {last}".strip()
        return self.username or "Player"

    def update_last_login(self):
        self.last_login = datetime.now(timezone.utc)

    def record_streak(self, current_streak, longest_streak):
        """Store a freshly recomputed streak; the high-water mark never drops"""
        self.current_streak = current_streak
        self.longest_streak = max(self.longest_streak or 0, longest_streak, current_streak)
        self.streak_updated_at = datetime.now(timezone.utc)

    def get_leagues(self):
        """Active leagues this user belongs to"""
        return [
            membership.league
            for membership in self.league_memberships.filter_by(is_active=True).all()
            if membership.league.is_active
        ]

    def to_dict(self, include_private=False):
        data = {
            "id": self.id,
            "username": self.username,
            "display_name": self.display_name,
            "avatar_url": self.avatar_url,
            "favourite_team": self.favourite_team,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
        }
        if include_private:
            data["email"] = self.email
            data["is_admin"] = self.is_admin
        return data

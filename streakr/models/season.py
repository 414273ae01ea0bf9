from datetime import datetime, timezone

from streakr import db


class Season(db.Model):
    __tablename__ = "seasons"

    id = db.Column(db.Integer, primary_key=True)
    year = db.Column(db.Integer, nullable=False, unique=True, index=True)
    name = db.Column(db.String(50), nullable=False)  # e.g., "2026 AFL Season"

    is_active = db.Column(db.Boolean, default=False)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    rounds = db.relationship(
        "Round",
        backref="season",
        lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="Round.number",
    )

    __table_args__ = (db.Index("idx_season_active", "is_active"),)

    def __repr__(self):
        return f"<Season {self.year}>"

    @staticmethod
    def get_current_season():
        """Get the currently active season"""
        return Season.query.filter_by(is_active=True).first()

    @staticmethod
    def create_season(year):
        season = Season(year=year, name=f"{year} AFL Season")
        db.session.add(season)
        return season

    def activate(self):
        """Activate this season (deactivates all others)"""
        Season.query.update({"is_active": False})
        self.is_active = True
        db.session.commit()

    def get_round(self, number):
        return self.rounds.filter_by(number=number).first()

    def get_matches(self):
        """All matches of the season in kick-off order"""
        from .match import Match
        from .round import Round

        return (
            Match.query.join(Round)
            .filter(Round.season_id == self.id)
            .order_by(Match.start_time, Match.id)
            .all()
        )

    def to_dict(self):
        return {
            "id": self.id,
            "year": self.year,
            "name": self.name,
            "is_active": self.is_active,
        }

from datetime import datetime, timezone

from streakr import db
from streakr.utils.normalize import round_code


class Round(db.Model):
    __tablename__ = "rounds"

    id = db.Column(db.Integer, primary_key=True)
    season_id = db.Column(db.Integer, db.ForeignKey("seasons.id"), nullable=False)

    # 0 = Opening Round
    number = db.Column(db.Integer, nullable=False)
    label = db.Column(db.String(50))
    is_finals = db.Column(db.Boolean, default=False)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    matches = db.relationship(
        "Match",
        backref="round",
        lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="Match.start_time",
    )

    __table_args__ = (
        db.UniqueConstraint("season_id", "number", name="unique_season_round"),
        db.Index("idx_round_season_finals", "season_id", "is_finals"),
    )

    def __repr__(self):
        return f"<Round {self.code} season_id={self.season_id}>"

    @property
    def code(self):
        return round_code(self.number)

    @property
    def display_label(self):
        if self.label:
            return self.label
        return "Opening Round" if self.number == 0 else f"Round {self.number}"

    def to_dict(self):
        return {
            "id": self.id,
            "season_id": self.season_id,
            "number": self.number,
            "code": self.code,
            "label": self.display_label,
            "is_finals": self.is_finals,
        }

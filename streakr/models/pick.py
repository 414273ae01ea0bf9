from datetime import datetime, timezone

from streakr import db


class Pick(db.Model):
    __tablename__ = "picks"

    id = db.Column(db.Integer, primary_key=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    question_id = db.Column(db.Integer, db.ForeignKey("questions.id"), nullable=False)

    # "yes" / "no"; a missing row means no pick
    outcome = db.Column(db.String(3), nullable=False)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("user_id", "question_id", name="unique_user_question_pick"),
        db.CheckConstraint("outcome IN ('yes', 'no')", name="valid_pick_outcome"),
        db.Index("idx_pick_question", "question_id"),
        db.Index("idx_pick_user", "user_id"),
    )

    def __repr__(self):
        return f"<Pick user_id={self.user_id} question_id={self.question_id} {self.outcome}>"

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "question_id": self.question.slug if self.question else None,
            "outcome": self.outcome,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

from datetime import datetime, timezone

from streakr import db


class PanicVoid(db.Model):
    """A player's personal void of one of their picks; one per player per round"""

    __tablename__ = "panic_voids"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    round_id = db.Column(db.Integer, db.ForeignKey("rounds.id"), nullable=False)
    question_id = db.Column(db.Integer, db.ForeignKey("questions.id"), nullable=False)

    previous_pick = db.Column(db.String(3))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    question = db.relationship("Question")
    round = db.relationship("Round")

    __table_args__ = (
        db.UniqueConstraint("user_id", "round_id", name="unique_panic_per_round"),
        db.Index("idx_panic_question", "question_id"),
    )

    def __repr__(self):
        return f"<PanicVoid user_id={self.user_id} round_id={self.round_id} question_id={self.question_id}>"

    def to_dict(self):
        return {
            "user_id": self.user_id,
            "round_id": self.round_id,
            "question_id": self.question.slug if self.question else None,
            "previous_pick": self.previous_pick,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

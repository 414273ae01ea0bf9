from datetime import datetime, timezone

from streakr import db


class SettlementEvent(db.Model):
    __tablename__ = "settlement_events"

    id = db.Column(db.Integer, primary_key=True)

    # Null when the transition came from the scheduler (auto-lock)
    admin_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    question_id = db.Column(db.Integer, db.ForeignKey("questions.id"), nullable=False)

    action = db.Column(db.String(10), nullable=False)  # lock / settle / void / reopen
    from_status = db.Column(db.String(10), nullable=False)
    to_status = db.Column(db.String(10), nullable=False)
    outcome = db.Column(db.String(4))
    version = db.Column(db.Integer, nullable=False)

    event_metadata = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    admin_user = db.relationship("User", foreign_keys=[admin_user_id])
    question = db.relationship(
        "Question",
        backref=db.backref("settlement_events", lazy="dynamic", cascade="all, delete-orphan"),
    )

    __table_args__ = (
        db.Index("idx_settlement_event_question", "question_id"),
        db.Index("idx_settlement_event_created", "created_at"),
    )

    def __repr__(self):
        return f"<SettlementEvent {self.action} question_id={self.question_id} {self.from_status}->{self.to_status}>"

    @staticmethod
    def record(
        question,
        action,
        from_status,
        admin_user_id=None,
        event_metadata=None,
    ):
        """Log an applied transition against the question's post-transition state"""
        event = SettlementEvent(
            admin_user_id=admin_user_id,
            question_id=question.id,
            action=action,
            from_status=from_status,
            to_status=question.status,
            outcome=question.outcome,
            version=question.version,
            event_metadata=event_metadata or {},
        )
        db.session.add(event)
        return event

    def to_dict(self):
        return {
            "id": self.id,
            "admin_user": self.admin_user.username if self.admin_user else None,
            "question_id": self.question.slug if self.question else None,
            "action": self.action,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "outcome": self.outcome,
            "version": self.version,
            "metadata": self.event_metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

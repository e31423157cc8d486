"""Feedback model and its external issue linkage"""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text

from echo.core.database import Base, utcnow


class Feedback(Base):
    """A piece of user feedback owned by an organization"""

    __tablename__ = "feedback"

    feedback_id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(255), nullable=False, index=True)

    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=False, default="")
    type = Column(String(50), nullable=False)  # bug, feature, improvement, question
    priority = Column(String(50), nullable=False)  # low, medium, high, urgent
    status = Column(String(50), nullable=False, default="new", index=True)

    # External issue linkage; external_issue_id is written once
    external_issue_id = Column(String(255), index=True)
    external_issue_number = Column(Integer)
    external_issue_url = Column(String(500))
    external_synced_at = Column(DateTime)
    external_status = Column(String(20))  # open, closed
    external_sync_claimed_at = Column(DateTime)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime)

    @property
    def is_linked(self) -> bool:
        return self.external_issue_id is not None

    def __repr__(self):
        return f"<Feedback(feedback_id={self.feedback_id}, status={self.status}, external_issue_id={self.external_issue_id})>"


class StatusHistory(Base):
    """One row per status transition, local or reconciled from the tracker"""

    __tablename__ = "status_history"

    id = Column(Integer, primary_key=True, index=True)
    feedback_id = Column(
        Integer, ForeignKey("feedback.feedback_id", ondelete="CASCADE"), nullable=False, index=True
    )
    old_status = Column(String(50))
    new_status = Column(String(50), nullable=False)
    changed_by = Column(String(255))  # user id, or "github" for inbound changes
    comment = Column(Text)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<StatusHistory(feedback_id={self.feedback_id}, {self.old_status}->{self.new_status})>"

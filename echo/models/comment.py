"""Comment model for feedback discussions"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint

from echo.core.database import Base, utcnow


class Comment(Base):
    """Comment on a feedback item, written locally or mirrored from the tracker"""

    __tablename__ = "comments"
    __table_args__ = (
        UniqueConstraint("feedback_id", "external_comment_id", name="uq_comments_feedback_external"),
    )

    comment_id = Column(Integer, primary_key=True, index=True)
    feedback_id = Column(
        Integer, ForeignKey("feedback.feedback_id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Author: a local user, or the tracker handle for mirrored comments
    user_id = Column(String(255))
    author_name = Column(String(255))

    content = Column(Text, nullable=False)
    is_internal = Column(Boolean, default=True, nullable=False)

    # Tracker linkage
    external_comment_id = Column(String(255), index=True)
    external_comment_url = Column(String(500))
    external_synced_at = Column(DateTime)
    synced_from_external = Column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Comment(comment_id={self.comment_id}, feedback_id={self.feedback_id}, external_comment_id={self.external_comment_id})>"

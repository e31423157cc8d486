"""Feedback and comment schemas for API validation"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

Priority = Literal["low", "medium", "high", "urgent"]
Status = Literal["new", "in-progress", "planned", "completed", "closed"]


class FeedbackCreate(BaseModel):
    """Schema for creating feedback"""
    title: str = Field(min_length=1, max_length=500)
    description: str = ""
    type: str = Field("feature", min_length=1, max_length=50)
    priority: Priority = "medium"


class FeedbackUpdate(BaseModel):
    """Schema for editing feedback; omitted fields are left unchanged"""
    title: str | None = Field(None, min_length=1, max_length=500)
    description: str | None = None
    type: str | None = Field(None, min_length=1, max_length=50)
    priority: Priority | None = None


class FeedbackResponse(BaseModel):
    """Schema for feedback response, including the issue linkage"""
    feedback_id: int
    organization_id: str
    title: str
    description: str
    type: str
    priority: str
    status: str
    external_issue_id: str | None = None
    external_issue_number: int | None = None
    external_issue_url: str | None = None
    external_status: str | None = None
    external_synced_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StatusUpdate(BaseModel):
    status: Status
    comment: str | None = None


class StatusChangeResponse(BaseModel):
    feedback_id: int
    old_status: str | None = None
    new_status: str


class IssueSyncResponse(BaseModel):
    """Result of an explicit push to the tracker"""
    synced: bool
    external_issue_id: str | None = None
    external_issue_number: int | None = None
    external_issue_url: str | None = None
    external_status: str | None = None


class CommentCreate(BaseModel):
    """Schema for creating a comment; notes are internal unless marked public"""
    content: str = Field(min_length=1, max_length=10000)
    is_internal: bool = True
    author_name: str | None = Field(None, max_length=255)


class CommentResponse(BaseModel):
    comment_id: int
    feedback_id: int
    user_id: str | None = None
    author_name: str | None = None
    content: str
    is_internal: bool
    external_comment_id: str | None = None
    external_comment_url: str | None = None
    external_synced_at: datetime | None = None
    synced_from_external: bool
    created_at: datetime

    class Config:
        from_attributes = True


class CommentSyncResponse(BaseModel):
    synced: int


class CommentImportResponse(BaseModel):
    imported: int

"""Integration schemas for API validation"""

from datetime import datetime
from typing import Dict, List, Literal

from pydantic import BaseModel, Field

ExternalState = Literal["open", "closed"]


class IntegrationSettings(BaseModel):
    """Sync settings shared by connect and update"""
    auto_sync: bool = True
    sync_status_changes: bool = True
    sync_comments: bool = False
    auto_add_labels: bool = True
    trigger_statuses: List[str] | None = None
    label_mapping: Dict[str, str] | None = None
    priority_label_mapping: Dict[str, str] | None = None
    status_mapping: Dict[str, ExternalState] | None = None


class IntegrationConnect(IntegrationSettings):
    """
    Schema for connecting a GitHub repository.

    Without ``access_token`` the repository is attached to the account
    connected through OAuth.
    """
    access_token: str | None = Field(None, min_length=1)
    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)
    name: str | None = None


class IntegrationUpdate(BaseModel):
    """Schema for updating an integration; omitted fields are left unchanged"""
    name: str | None = None
    enabled: bool | None = None
    access_token: str | None = Field(None, min_length=1)
    owner: str | None = Field(None, min_length=1)
    repo: str | None = Field(None, min_length=1)
    auto_sync: bool | None = None
    sync_status_changes: bool | None = None
    sync_comments: bool | None = None
    auto_add_labels: bool | None = None
    trigger_statuses: List[str] | None = None
    label_mapping: Dict[str, str] | None = None
    priority_label_mapping: Dict[str, str] | None = None
    status_mapping: Dict[str, ExternalState] | None = None


class IntegrationResponse(BaseModel):
    """Schema for integration response; the access token is never returned"""
    id: int
    organization_id: str
    provider: str
    name: str | None = None
    enabled: bool
    owner: str
    repo: str
    repo_full_name: str
    auto_sync: bool
    sync_status_changes: bool
    sync_comments: bool
    auto_add_labels: bool
    trigger_statuses: List[str] | None = None
    label_mapping: Dict[str, str] | None = None
    priority_label_mapping: Dict[str, str] | None = None
    status_mapping: Dict[str, str] | None = None
    connected_by: str | None = None
    last_sync_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class IntegrationConnected(IntegrationResponse):
    """Returned once on connect: where and with which secret GitHub should send webhooks"""
    webhook_url: str
    webhook_secret: str


class ProviderResponse(BaseModel):
    type: str
    name: str
    description: str
    capabilities: List[str]


class RepositorySummary(BaseModel):
    id: int
    name: str
    full_name: str
    owner: str
    private: bool = False
    description: str | None = None
    html_url: str | None = None

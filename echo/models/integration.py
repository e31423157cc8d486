"""Per-organization issue tracker integration settings"""

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text, UniqueConstraint

from echo.core.database import Base, utcnow

DEFAULT_TRIGGER_STATUSES = ["in-progress", "planned"]


class Integration(Base):
    """Connection between an organization and an external issue tracker"""

    __tablename__ = "integrations"
    __table_args__ = (
        UniqueConstraint("organization_id", "provider", name="uq_integrations_org_provider"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(255), nullable=False, index=True)
    provider = Column(String(50), nullable=False, default="github")
    name = Column(String(255))
    enabled = Column(Boolean, default=True, nullable=False)

    # Credentials and target repository
    access_token = Column(Text, nullable=False)  # Encrypted
    owner = Column(String(255), nullable=False)
    repo = Column(String(255), nullable=False)
    webhook_secret = Column(String(255))  # Verifies inbound tracker webhooks

    # Sync settings
    auto_sync = Column(Boolean, default=True, nullable=False)
    sync_status_changes = Column(Boolean, default=True, nullable=False)
    sync_comments = Column(Boolean, default=False, nullable=False)
    auto_add_labels = Column(Boolean, default=True, nullable=False)
    trigger_statuses = Column(JSON, default=lambda: list(DEFAULT_TRIGGER_STATUSES))

    # Mapping overrides: {"feature": "kind/feature"}, {"urgent": "P0"}, {"planned": "closed"}
    label_mapping = Column(JSON)
    priority_label_mapping = Column(JSON)
    status_mapping = Column(JSON)

    # Connection metadata
    connected_by = Column(String(255))
    last_sync_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def repo_full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def has_repository(self) -> bool:
        return bool(self.owner and self.repo)

    @property
    def effective_trigger_statuses(self) -> list:
        if self.trigger_statuses is None:
            return list(DEFAULT_TRIGGER_STATUSES)
        return list(self.trigger_statuses)

    def __repr__(self):
        return f"<Integration(id={self.id}, provider={self.provider}, repo={self.repo_full_name}, enabled={self.enabled})>"

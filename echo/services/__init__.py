"""Sync services between Echo and external trackers"""

from echo.services.comments import CommentMirror
from echo.services.sync import StatusChange, SyncOrchestrator

__all__ = ["CommentMirror", "StatusChange", "SyncOrchestrator"]

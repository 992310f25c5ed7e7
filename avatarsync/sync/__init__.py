"""Audio-viseme synchronization module."""

from .base import AbstractVisemeService, VisemeCallbacks, VisemeServiceError
from .viseme_service import WebSocketVisemeService
from .pipeline import AudioVisemeSyncPipeline, PipelineState

__all__ = [
    "AbstractVisemeService",
    "VisemeCallbacks",
    "VisemeServiceError",
    "WebSocketVisemeService",
    "AudioVisemeSyncPipeline",
    "PipelineState",
]

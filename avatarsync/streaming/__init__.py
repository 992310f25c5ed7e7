"""Streaming client interfaces and event publishing."""

from .publisher import StreamEventPublisher
from .base import AbstractStreamingClient, StreamingClientError
from .replay import WavReplayClient

__all__ = [
    "StreamEventPublisher",
    "AbstractStreamingClient",
    "StreamingClientError",
    "WavReplayClient",
]

"""Abstract base class for streaming conversational model clients."""

import logging
from abc import ABC, abstractmethod
from typing import Union

from .publisher import StreamEventPublisher

logger = logging.getLogger(__name__)


class StreamingClientError(Exception):
    """Raised when a payload cannot be delivered to the remote model."""


class AbstractStreamingClient(ABC):
    """Remote conversational model client.

    Implementations publish their lifecycle and audio events through
    ``publisher`` and accept outgoing payloads through ``send``.
    """

    def __init__(self, publisher: StreamEventPublisher):
        self.publisher = publisher

    @property
    @abstractmethod
    def connected(self) -> bool:
        pass

    @abstractmethod
    async def connect(self) -> bool:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    def send(self, payload: Union[str, dict], is_text: bool = True) -> None:
        """Send a payload to the remote model.

        Args:
            payload: Text or structured content
            is_text: True for a user text turn, False for non-turn traffic
                     such as keep-alives

        Raises:
            StreamingClientError: If the client is not connected
        """
        pass

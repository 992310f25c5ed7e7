"""Stream event publisher for pub/sub event publishing."""

import logging
import time
from typing import Optional

from pubsub import pub

from ..models.events import StreamEvent, StreamEventType

logger = logging.getLogger(__name__)


class StreamEventPublisher:
    """Publishes streaming client events using pubsub.pub for pub/sub architecture."""

    def __init__(self, topic: str = "stream.events"):
        """Initialize stream event publisher.

        Args:
            topic: Pub/sub topic name for stream events
        """
        self.topic = topic
        self.sequence_number = 0
        logger.info(f"StreamEventPublisher initialized with topic: {topic}")

    def publish(self, event: StreamEvent) -> None:
        """Publish a stream event to the pub/sub topic.

        Args:
            event: StreamEvent to publish
        """
        pub.sendMessage(self.topic, event=event)

    def publish_open(self) -> None:
        self.sequence_number = 0
        self.publish(StreamEvent(type=StreamEventType.OPEN, timestamp=time.time()))

    def publish_close(self, close_code: Optional[int] = None, reason: Optional[str] = None) -> None:
        self.publish(StreamEvent(type=StreamEventType.CLOSE, timestamp=time.time(),
                                 close_code=close_code, reason=reason))

    def publish_error(self, message: str) -> None:
        self.publish(StreamEvent(type=StreamEventType.ERROR, timestamp=time.time(), reason=message))

    def publish_audio(self, audio_data: bytes) -> None:
        self.sequence_number += 1
        self.publish(StreamEvent(type=StreamEventType.AUDIO, timestamp=time.time(),
                                 audio_data=audio_data, sequence_number=self.sequence_number))

    def publish_turn_complete(self) -> None:
        self.publish(StreamEvent(type=StreamEventType.TURN_COMPLETE, timestamp=time.time()))

    def publish_interrupted(self) -> None:
        self.publish(StreamEvent(type=StreamEventType.INTERRUPTED, timestamp=time.time()))

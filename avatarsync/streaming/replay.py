"""Streaming client that replays a WAV file as model audio output."""

import asyncio
import logging
import wave
from pathlib import Path
from typing import List, Optional, Tuple, Union

from ..scheduling import Scheduler
from .base import AbstractStreamingClient, StreamingClientError
from .publisher import StreamEventPublisher

logger = logging.getLogger(__name__)


class WavReplayClient(AbstractStreamingClient):
    """Streams a 16-bit PCM WAV file in fixed-size packets, one turn per replay.

    Every text payload sent to the client is answered by replaying the file
    again, so nudges produce a new AI turn.
    """

    def __init__(self,
                 publisher: StreamEventPublisher,
                 scheduler: Scheduler,
                 wav_path: str,
                 packet_ms: int = 40,
                 pace: float = 1.0,
                 respond_to_text: bool = True):
        """Initialize replay client.

        Args:
            publisher: Publisher for stream events
            scheduler: Scheduler running the replay task
            wav_path: Path to a 16-bit PCM WAV file
            packet_ms: Audio duration carried by each packet
            pace: Playback pacing factor; 1.0 is real time, 0 sends at once
            respond_to_text: Replay the file again when text is sent
        """
        super().__init__(publisher)
        self.scheduler = scheduler
        self.wav_path = Path(wav_path)
        self.packet_ms = packet_ms
        self.pace = pace
        self.respond_to_text = respond_to_text

        self.sample_rate, self.channels, self.frames = self._load_wav(self.wav_path)
        self.sent_payloads: List[Tuple[Union[str, dict], bool]] = []
        self._connected = False
        self._replay_task: Optional[asyncio.Task] = None

    @staticmethod
    def _load_wav(path: Path) -> Tuple[int, int, bytes]:
        if not path.exists():
            raise FileNotFoundError(f"Replay audio file not found: {path}")
        with wave.open(str(path), 'rb') as wf:
            if wf.getsampwidth() != 2:
                raise ValueError(f"Replay audio must be 16-bit PCM, got {wf.getsampwidth() * 8}-bit")
            frames = wf.readframes(wf.getnframes())
            logger.info(f"Loaded replay audio {path}: {wf.getframerate()}Hz, "
                        f"{wf.getnchannels()} channels, {len(frames)} bytes")
            return wf.getframerate(), wf.getnchannels(), frames

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> bool:
        self._connected = True
        self.publisher.publish_open()
        self.start_turn()
        return True

    async def disconnect(self) -> None:
        if self._replay_task and not self._replay_task.done():
            self._replay_task.cancel()
        if self._connected:
            self._connected = False
            self.publisher.publish_close(1000, "Normal closure")

    def send(self, payload: Union[str, dict], is_text: bool = True) -> None:
        if not self._connected:
            raise StreamingClientError("Replay client is not connected")
        self.sent_payloads.append((payload, is_text))
        logger.info(f"Replay client received {'text' if is_text else 'non-turn'} payload")
        if is_text and self.respond_to_text:
            self.start_turn()

    def start_turn(self) -> None:
        """Begin streaming the file as a new AI turn."""
        if self._replay_task and not self._replay_task.done():
            logger.warning("Replay already streaming, ignoring new turn request")
            return
        self._replay_task = self.scheduler.spawn(self._stream_turn())

    async def _stream_turn(self) -> None:
        bytes_per_packet = int(self.sample_rate * self.channels * 2 * self.packet_ms / 1000)
        bytes_per_packet -= bytes_per_packet % (2 * self.channels)
        packet_count = 0
        for offset in range(0, len(self.frames), bytes_per_packet):
            if not self._connected:
                return
            self.publisher.publish_audio(self.frames[offset:offset + bytes_per_packet])
            packet_count += 1
            await asyncio.sleep(self.packet_ms / 1000 * self.pace)
        logger.info(f"Replay turn streamed in {packet_count} packets")
        self.publisher.publish_turn_complete()

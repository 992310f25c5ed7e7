"""Pytest configuration and fixtures for AvatarSync tests."""

import asyncio
import heapq
import itertools
import logging
import wave
from collections import deque
from pathlib import Path
from typing import List, Optional

import numpy as np
import pytest

from avatarsync.audio.base import AbstractAudioPlayer
from avatarsync.models.audio import AudioPacket
from avatarsync.scheduling import Scheduler
from avatarsync.sync.base import AbstractVisemeService, VisemeServiceError


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without I/O")
    config.addinivalue_line("markers", "integration: tests wiring several components together")


class ManualHandle:
    """Timer handle for ManualScheduler."""

    def __init__(self, when: float, seq: int, callback, args):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def __lt__(self, other: "ManualHandle") -> bool:
        return (self.when, self.seq) < (other.when, other.seq)


class ManualScheduler(Scheduler):
    """Scheduler with a manually advanced clock.

    Timers fire only from ``advance``. Spawned coroutines run to completion
    right away on a private event loop; coroutines spawned while another one
    is running are queued and run after it.
    """

    def __init__(self, start: float = 1_000_000.0):
        super().__init__(loop=asyncio.new_event_loop())
        self.clock = start
        self._timers: List[ManualHandle] = []
        self._seq = itertools.count()
        self._pending = deque()
        self._running = False

    def now(self) -> float:
        return self.clock

    def call_later(self, delay, callback, *args):
        handle = ManualHandle(self.clock + delay, next(self._seq), callback, args)
        heapq.heappush(self._timers, handle)
        return handle

    def call_soon_threadsafe(self, callback, *args) -> None:
        callback(*args)

    def spawn(self, coro) -> Optional[asyncio.Task]:
        self._pending.append(coro)
        self._run_pending()
        return None

    def run(self, coro):
        """Run a coroutine from a test and everything it spawns."""
        self._running = True
        try:
            result = self.loop.run_until_complete(coro)
        finally:
            self._running = False
        self._run_pending()
        return result

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in order."""
        target = self.clock + seconds
        while self._timers and self._timers[0].when <= target:
            handle = heapq.heappop(self._timers)
            if handle.cancelled:
                continue
            self.clock = handle.when
            handle.callback(*handle.args)
        self.clock = target

    def pending_timers(self) -> int:
        return sum(1 for handle in self._timers if not handle.cancelled)

    def close(self) -> None:
        self.loop.close()

    def _run_pending(self) -> None:
        if self._running:
            return
        self._running = True
        try:
            while self._pending:
                self.loop.run_until_complete(self._pending.popleft())
        finally:
            self._running = False


class FakePlayer(AbstractAudioPlayer):
    """Records played blobs; completion is triggered by the test."""

    def __init__(self):
        super().__init__()
        self.played: List[bytes] = []
        self.stop_calls = 0

    def play_pcm16(self, audio_data: bytes) -> None:
        self.played.append(audio_data)

    def stop(self) -> None:
        self.stop_calls += 1

    def finish(self) -> None:
        self._notify_complete()


class FakeVisemeService(AbstractVisemeService):
    """In-memory viseme service.

    ``fail_with`` makes the next sends raise; ``on_send`` runs inside the
    send, before it returns, to simulate events racing the dispatch.
    """

    def __init__(self):
        super().__init__()
        self.sent: List[bytes] = []
        self.fail_with: Optional[Exception] = None
        self.on_send = None
        self._connected = True

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> bool:
        self._connected = True
        return True

    async def disconnect(self) -> None:
        self._connected = False

    async def send_audio_chunk(self, audio_data: bytes) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        if not self._connected:
            raise VisemeServiceError("Viseme service is not connected")
        self.sent.append(audio_data)
        if self.on_send:
            self.on_send(audio_data)

    def emit_final(self, visemes=None, subtitles=None) -> None:
        self._dispatch_message({
            "success": True,
            "visemes": visemes if visemes is not None else [{"offset": 0.0, "visemeId": 1}],
            "subtitles": subtitles if subtitles is not None else [{"text": "hi", "start": 0.0, "end": 0.5}],
        })


@pytest.fixture
def scheduler():
    """Manual scheduler; time starts at 1,000,000 seconds."""
    manual = ManualScheduler()
    yield manual
    manual.close()


@pytest.fixture
def fake_player():
    return FakePlayer()


@pytest.fixture
def fake_viseme_service():
    return FakeVisemeService()


@pytest.fixture
def sample_audio_chunk():
    """Generate a 40ms PCM16 chunk at 24kHz (sine wave)."""
    samples = 960
    t = np.linspace(0, samples / 24000, samples, False)
    wave_data = np.sin(2 * np.pi * 440 * t)
    audio_data = (wave_data * 32767).astype(np.int16)
    return audio_data.tobytes()


@pytest.fixture
def make_packet(scheduler):
    """Build numbered packets stamped with the scheduler clock."""
    counter = itertools.count(1)

    def _make(data: bytes = b'\x01\x00' * 480, sequence_number: Optional[int] = None) -> AudioPacket:
        number = sequence_number if sequence_number is not None else next(counter)
        return AudioPacket(data=data, timestamp=scheduler.now(), sequence_number=number)

    return _make


@pytest.fixture
def sample_wav_file(tmp_path, sample_audio_chunk):
    """Create a 0.4s 24kHz mono WAV file."""
    file_path = Path(tmp_path) / "reply.wav"
    with wave.open(str(file_path), 'wb') as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(24000)
        for _ in range(10):
            wf.writeframes(sample_audio_chunk)
    return str(file_path)

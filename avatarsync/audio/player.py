"""PyAudio playback for combined PCM16 turn audio."""

import logging
import queue
from threading import Event, Thread
from typing import Optional, Tuple

import pyaudio

from ..scheduling import Scheduler
from .base import AbstractAudioPlayer

logger = logging.getLogger(__name__)


class PyAudioPlayer(AbstractAudioPlayer):
    """Writes PCM16 audio to a PyAudio output stream from a background thread.

    Completion is handed back to the event loop through the scheduler so
    callers only ever observe it from loop callbacks.
    """

    def __init__(self,
                 scheduler: Scheduler,
                 sample_rate: int = 24000,
                 channels: int = 1,
                 frames_per_write: int = 1024,
                 output_device_index: Optional[int] = None):
        """Initialize player.

        Args:
            scheduler: Scheduler whose loop receives completion callbacks
            sample_rate: Output sample rate
            channels: Number of output channels
            frames_per_write: Frames written per stream write; bounds stop latency
            output_device_index: PyAudio output device, None for the default
        """
        super().__init__()
        self.scheduler = scheduler
        self.sample_rate = sample_rate
        self.channels = channels
        self.frames_per_write = frames_per_write
        self.output_device_index = output_device_index

        # Items are (generation, audio); stop() bumps the generation so queued
        # or half-written audio from before the stop is never played
        self.audio_queue: "queue.Queue[Optional[Tuple[int, bytes]]]" = queue.Queue()
        self.generation = 0
        self.shutdown_event = Event()
        self.playback_thread: Optional[Thread] = None
        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream = None
        self.total_blobs_played = 0

    def _ensure_started(self) -> None:
        if self.playback_thread and self.playback_thread.is_alive():
            return
        # The worker thread cannot look up the running loop itself
        _ = self.scheduler.loop
        self.pyaudio_instance = pyaudio.PyAudio()
        self.stream = self.pyaudio_instance.open(
            format=pyaudio.paInt16,
            channels=self.channels,
            rate=self.sample_rate,
            output=True,
            output_device_index=self.output_device_index,
        )
        logger.info(f"Audio output stream opened: {self.sample_rate}Hz, {self.channels} channels")
        self.playback_thread = Thread(target=self._play_continuously, daemon=True)
        self.playback_thread.name = "AudioPlaybackThread"
        self.playback_thread.start()

    def play_pcm16(self, audio_data: bytes) -> None:
        if not audio_data:
            logger.warning("Ignoring empty audio blob")
            return
        self._ensure_started()
        self.audio_queue.put((self.generation, audio_data))
        logger.debug(f"Queued {len(audio_data)} bytes for playback")

    def stop(self) -> None:
        self.generation += 1
        dropped = 0
        while True:
            try:
                self.audio_queue.get_nowait()
                dropped += 1
            except queue.Empty:
                break
        logger.info(f"Playback stopped ({dropped} queued blobs dropped)")

    def _play_continuously(self) -> None:
        """Internal method: playback loop in background thread."""
        bytes_per_write = self.frames_per_write * self.channels * 2
        while not self.shutdown_event.is_set():
            item = self.audio_queue.get()
            if item is None:
                break
            generation, audio_data = item
            for offset in range(0, len(audio_data), bytes_per_write):
                if generation != self.generation:
                    logger.debug(f"Dropped {len(audio_data) - offset} bytes of stopped audio")
                    break
                self.stream.write(audio_data[offset:offset + bytes_per_write])
            else:
                self.total_blobs_played += 1
                if self.audio_queue.empty():
                    self.scheduler.call_soon_threadsafe(self._complete_if_current, generation)

    def _complete_if_current(self, generation: int) -> None:
        # A stop() after the last write makes this completion stale
        if generation == self.generation:
            self._notify_complete()

    def close(self) -> None:
        self.shutdown_event.set()
        self.stop()
        self.audio_queue.put(None)
        if self.playback_thread and self.playback_thread.is_alive():
            self.playback_thread.join(timeout=2.0)
            if self.playback_thread.is_alive():
                logger.warning("Playback thread did not stop cleanly")
        if self.stream:
            self.stream.stop_stream()
            self.stream.close()
            self.stream = None
        if self.pyaudio_instance:
            self.pyaudio_instance.terminate()
            self.pyaudio_instance = None

"""Audio-viseme synchronization pipeline.

Streamed AI audio is buffered per turn, combined into one blob when the turn
completes and sent to the viseme service. Playback of the blob is held back
until the matching viseme cues arrive so the avatar's mouth never lags the
audio. If the service cannot take the audio, the blob plays immediately
without cues instead. An interruption discards everything belonging to the
current turn, whatever state it is in.
"""

import logging
from enum import Enum
from typing import Callable, List, Optional, Tuple

from ..audio.buffer import TurnBuffer
from ..audio.base import AbstractAudioPlayer
from ..audio.stats import PacketStatisticsTracker
from ..models.audio import AudioPacket
from ..models.visemes import SubtitleCue, VisemeCue
from ..scheduling import Scheduler, TimerSlot
from .base import AbstractVisemeService

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Where the current turn is in the waterfall."""
    IDLE = "idle"
    BUFFERING = "buffering"
    FLUSHING = "flushing"
    AWAITING_SYNC = "awaiting-sync"
    PLAYING = "playing"


class AudioVisemeSyncPipeline:
    """Buffers turn audio and releases it to the player in sync with viseme cues."""

    def __init__(self,
                 player: AbstractAudioPlayer,
                 viseme_service: AbstractVisemeService,
                 scheduler: Scheduler,
                 statistics: Optional[PacketStatisticsTracker] = None,
                 synchronized: bool = True,
                 auto_flush_timeout_seconds: float = 0.5,
                 sync_timeout_seconds: Optional[float] = 5.0,
                 sample_rate: int = 24000,
                 channels: int = 1,
                 on_turn_start: Optional[Callable[[], None]] = None,
                 on_turn_ended: Optional[Callable[[], None]] = None,
                 on_buffering_changed: Optional[Callable[[bool], None]] = None,
                 on_cues_changed: Optional[Callable[[Tuple[VisemeCue, ...], Tuple[SubtitleCue, ...]], None]] = None,
                 on_playback_started: Optional[Callable[[bytes, bool], None]] = None,
                 on_playback_complete: Optional[Callable[[], None]] = None):
        """Initialize synchronization pipeline.

        Args:
            player: Audio output for combined blobs
            viseme_service: Service computing cues for each combined blob
            scheduler: Scheduler for timers and dispatch tasks
            statistics: Packet statistics tracker shared with the session
            synchronized: Waterfall mode. If False every packet plays on arrival
            auto_flush_timeout_seconds: Quiet period after the last packet that
                                        forces a flush without turn-complete
            sync_timeout_seconds: How long dispatched audio waits for cues before
                                  playing unsynchronized. None waits forever
            sample_rate: Sample rate of the streamed PCM16 audio
            channels: Channel count of the streamed audio
            on_turn_start: Called on the first audio packet of a turn
            on_turn_ended: Called when the streaming client completes a turn
            on_buffering_changed: Called with the new buffering flag
            on_cues_changed: Called with the displayed (visemes, subtitles)
            on_playback_started: Called with (blob, synchronized) on playback
            on_playback_complete: Called when the player drains
        """
        self.player = player
        self.viseme_service = viseme_service
        self.scheduler = scheduler
        self.statistics = statistics or PacketStatisticsTracker()
        self.synchronized = synchronized
        self.auto_flush_timeout_seconds = auto_flush_timeout_seconds
        self.sync_timeout_seconds = sync_timeout_seconds

        self.on_turn_start = on_turn_start
        self.on_turn_ended = on_turn_ended
        self.on_buffering_changed = on_buffering_changed
        self.on_cues_changed = on_cues_changed
        self.on_playback_started = on_playback_started
        self.on_playback_complete = on_playback_complete

        self._buffer = TurnBuffer(sample_rate=sample_rate, channels=channels)
        self._pending_audio: Optional[bytes] = None
        self._last_played_audio: Optional[bytes] = None
        self._visemes: Tuple[VisemeCue, ...] = ()
        self._subtitles: Tuple[SubtitleCue, ...] = ()
        self._latest_chunk_text = ""

        self._turn_id = 0
        self._turn_started = False
        self._flushing = False
        self._flushing_turn_id: Optional[int] = None
        self._flush_requested = False
        self._buffering = False
        self._ai_playing = False

        self._auto_flush_timer = TimerSlot(scheduler, "auto-flush")
        self._sync_timer = TimerSlot(scheduler, "sync-timeout")

        self.player.on_complete = self._on_playback_complete

        mode = "waterfall" if synchronized else "immediate"
        logger.info(f"AudioVisemeSyncPipeline initialized in {mode} mode "
                    f"(auto-flush {auto_flush_timeout_seconds}s, sync timeout {sync_timeout_seconds}s)")

    # Avatar-facing state

    @property
    def current_visemes(self) -> Tuple[VisemeCue, ...]:
        return self._visemes

    @property
    def current_subtitles(self) -> Tuple[SubtitleCue, ...]:
        return self._subtitles

    @property
    def latest_chunk_text(self) -> str:
        return self._latest_chunk_text

    @property
    def is_buffering(self) -> bool:
        return self._buffering

    @property
    def is_ai_playing(self) -> bool:
        return self._ai_playing

    @property
    def has_pending_audio(self) -> bool:
        return self._pending_audio is not None

    @property
    def buffered_packet_count(self) -> int:
        return len(self._buffer)

    @property
    def state(self) -> PipelineState:
        if self._flushing and self._flushing_turn_id == self._turn_id:
            return PipelineState.FLUSHING
        if self._pending_audio is not None:
            return PipelineState.AWAITING_SYNC
        if self._buffer.is_open:
            return PipelineState.BUFFERING
        if self._ai_playing:
            return PipelineState.PLAYING
        return PipelineState.IDLE

    # Streaming client events

    def on_audio_packet(self, packet: AudioPacket) -> None:
        """Handle one streamed audio packet."""
        self.statistics.record_packet(packet, self.scheduler.now())

        new_turn = not self._turn_started
        if new_turn:
            self._turn_started = True
            logger.info(f"AI turn started with packet #{packet.sequence_number}")
            if self.on_turn_start:
                self.on_turn_start()

        if not self.synchronized:
            previous = self._last_played_audio
            self._start_playback(packet.data, synchronized=False)
            # Replay covers the whole immediate-mode turn
            if not new_turn and previous is not None:
                self._last_played_audio = previous + packet.data
            return

        if self._buffer.append(packet):
            logger.info("Buffering new turn until it completes")
            self._set_buffering(True)
        self._auto_flush_timer.arm(self.auto_flush_timeout_seconds, self._on_auto_flush_timeout)

    def on_turn_complete(self) -> None:
        """Handle the streaming client's turn-complete signal."""
        self._auto_flush_timer.cancel()
        if self.synchronized and self._buffer.is_open:
            logger.info(f"Turn complete with {len(self._buffer)} buffered packets, flushing")
            self._schedule_flush()
        self._turn_started = False
        if self.on_turn_ended:
            self.on_turn_ended()

    def on_interrupted(self) -> None:
        """Halt playback and discard everything belonging to the current turn.

        Safe to call in any state, including idle.
        """
        was_active = self.state != PipelineState.IDLE
        self._turn_id += 1

        self.player.stop()
        self._auto_flush_timer.cancel()
        self._sync_timer.cancel()

        discarded_packets = len(self._buffer)
        had_pending = self._pending_audio is not None
        self._buffer.clear()
        self._pending_audio = None
        self._flush_requested = False
        self._turn_started = False
        self._ai_playing = False
        self._set_buffering(False)
        self._replace_cues((), ())

        if was_active:
            self.statistics.record_interruption()
            logger.info(f"AI playback interrupted: discarded {discarded_packets} buffered packets"
                        f"{' and pending synchronized audio' if had_pending else ''}")
        else:
            logger.debug("Interruption received while idle")

    # Viseme service callbacks

    def on_visemes_ready(self, visemes: List[VisemeCue], subtitles: List[SubtitleCue]) -> None:
        """Display final cues and release the pending audio they belong to."""
        self._replace_cues(tuple(visemes), tuple(subtitles))

        if self._pending_audio is None:
            logger.debug(f"Visemes arrived with no pending audio ({len(visemes)} visemes), display only")
            return

        audio = self._pending_audio
        self._pending_audio = None
        self._sync_timer.cancel()
        logger.info(f"Visemes ready ({len(visemes)} visemes, {len(subtitles)} subtitles), "
                    f"starting synchronized playback of {len(audio)} bytes")
        self._start_playback(audio, synchronized=True)

    def on_streaming_chunk(self, chunk_text: str, visemes: List[VisemeCue]) -> None:
        """Display partial cues ahead of the final result. Never releases audio."""
        self._latest_chunk_text = chunk_text
        self._replace_cues(tuple(visemes), self._subtitles)

    def on_viseme_error(self, message: str) -> None:
        """Fall back to unsynchronized playback if the service failed the pending audio."""
        if self._pending_audio is None:
            logger.warning(f"Viseme service error with nothing pending: {message}")
            return
        logger.warning(f"Viseme service error, playing pending audio without visemes: {message}")
        self._release_unsynchronized()

    # Flushing

    async def flush(self) -> bool:
        """Combine the open turn and dispatch it to the viseme service.

        Returns:
            True if the audio was dispatched and now waits for cues
        """
        if self._flushing:
            logger.warning("Flush already in progress, deferring")
            self._flush_requested = True
            return False
        if not self._buffer.is_open:
            logger.warning("No audio data to flush")
            return False

        self._flushing = True
        self._flushing_turn_id = turn_id = self._turn_id
        self._auto_flush_timer.cancel()

        packet_count = len(self._buffer)
        combined_audio = self._buffer.combine_and_clear()
        self._set_buffering(False)
        if self._pending_audio is not None:
            logger.info("New turn audio supersedes audio still waiting for visemes")
        self._sync_timer.cancel()
        self._pending_audio = combined_audio

        try:
            await self.viseme_service.send_audio_chunk(combined_audio)
        except Exception as e:
            logger.warning(f"Viseme dispatch failed, playing turn audio without visemes: {e}")
            if self._pending_audio is combined_audio:
                self._release_unsynchronized()
            return False
        finally:
            self._flushing = False
            self._flushing_turn_id = None
            self._run_deferred_flush()

        if turn_id != self._turn_id:
            logger.info("Turn was interrupted during dispatch, dropping its audio")
            return False

        logger.info(f"Dispatched {len(combined_audio)} bytes ({packet_count} packets) "
                    f"to viseme service, awaiting visemes")
        if self._pending_audio is combined_audio and self.sync_timeout_seconds:
            self._sync_timer.arm(self.sync_timeout_seconds, self._on_sync_timeout, combined_audio)
        return True

    def force_flush(self) -> bool:
        """Flush the open turn now instead of waiting for turn-complete."""
        if not self.synchronized:
            logger.warning("Force flush only works in waterfall (synchronized) mode")
            return False
        if not self._buffer.is_open:
            logger.warning("No audio data buffered to force flush")
            return False
        logger.info("Forcing flush of buffered audio")
        self._schedule_flush()
        return True

    def set_synchronized(self, enabled: bool) -> None:
        """Switch between waterfall and immediate playback."""
        if enabled == self.synchronized:
            return
        self.synchronized = enabled
        logger.info(f"Switched to {'waterfall' if enabled else 'immediate'} mode")
        if not enabled and self._buffer.is_open:
            self._schedule_flush()

    def replay_last(self) -> bool:
        """Play the most recently played audio again.

        Returns:
            True if there was audio to replay
        """
        if self._last_played_audio is None:
            logger.warning("No audio available for replay")
            return False
        logger.info(f"Replaying last audio ({len(self._last_played_audio)} bytes)")
        self._start_playback(self._last_played_audio, synchronized=False)
        return True

    def get_sync_status(self) -> dict:
        return {
            "state": self.state.value,
            "mode": "waterfall" if self.synchronized else "immediate",
            "turn_id": self._turn_id,
            "buffer": self._buffer.get_buffer_stats(),
            "pending_bytes": len(self._pending_audio) if self._pending_audio is not None else 0,
            "ai_playing": self._ai_playing,
            "visemes_displayed": len(self._visemes),
            "subtitles_displayed": len(self._subtitles),
        }

    # Internals

    def _schedule_flush(self) -> None:
        self.scheduler.spawn(self.flush())

    def _run_deferred_flush(self) -> None:
        if self._flush_requested:
            self._flush_requested = False
            if self._buffer.is_open:
                self._schedule_flush()

    def _on_auto_flush_timeout(self) -> None:
        if not self._buffer.is_open:
            return
        logger.warning(f"No turn-complete within {self.auto_flush_timeout_seconds}s of the last packet, "
                       f"auto-flushing {len(self._buffer)} packets")
        self._schedule_flush()

    def _on_sync_timeout(self, audio: bytes) -> None:
        if self._pending_audio is not audio:
            return
        logger.warning(f"Visemes did not arrive within {self.sync_timeout_seconds}s, "
                       f"playing without sync")
        self._release_unsynchronized()

    def _release_unsynchronized(self) -> None:
        audio = self._pending_audio
        self._pending_audio = None
        self._sync_timer.cancel()
        self.statistics.record_dropped_sync()
        self._start_playback(audio, synchronized=False)

    def _start_playback(self, audio: bytes, synchronized: bool) -> None:
        self._ai_playing = True
        self._last_played_audio = audio
        self.player.play_pcm16(audio)
        if self.on_playback_started:
            self.on_playback_started(audio, synchronized)

    def _on_playback_complete(self) -> None:
        if not self._ai_playing:
            return
        self._ai_playing = False
        logger.debug("Playback complete")
        if self.on_playback_complete:
            self.on_playback_complete()

    def _set_buffering(self, buffering: bool) -> None:
        if buffering == self._buffering:
            return
        self._buffering = buffering
        if self.on_buffering_changed:
            self.on_buffering_changed(buffering)

    def _replace_cues(self, visemes: Tuple[VisemeCue, ...], subtitles: Tuple[SubtitleCue, ...]) -> None:
        self._visemes = visemes
        self._subtitles = subtitles
        if self.on_cues_changed:
            self.on_cues_changed(visemes, subtitles)

"""Companion session: wires the streaming client, sync pipeline and nudge engine together."""

import logging
from typing import Any, Callable, Dict, Optional, Tuple

from pubsub import pub

from ..audio.base import AbstractAudioPlayer
from ..audio.stats import PacketStatisticsTracker
from ..config import AvatarSyncConfig
from ..models.audio import AudioPacket
from ..models.events import StreamEvent, StreamEventType
from ..models.silence import ConversationState
from ..scheduling import Scheduler, TimerSlot
from ..silence.nudge import SilenceNudgeEngine
from ..streaming.base import AbstractStreamingClient, StreamingClientError
from ..sync.base import AbstractVisemeService, VisemeCallbacks
from ..sync.pipeline import AudioVisemeSyncPipeline, PipelineState

logger = logging.getLogger(__name__)

CLOSE_CODE_MEANINGS = {
    1000: "Normal closure",
    1001: "Going away",
    1002: "Protocol error",
    1003: "Unsupported data",
    1005: "No status received",
    1006: "Abnormal closure",
    1007: "Invalid frame payload data",
    1008: "Policy violation",
    1009: "Message too big",
    1010: "Missing extension",
    1011: "Internal server error",
    1012: "Service restart",
    1013: "Try again later",
    1015: "TLS handshake failure",
}


def describe_close_code(code: Optional[int]) -> str:
    if code is None:
        return "No close code"
    return CLOSE_CODE_MEANINGS.get(code, "Unknown close code")


class CompanionSession:
    """One conversation with the remote model.

    Subscribes to the streaming client's event topic and routes each event to
    the sync pipeline and the nudge engine. Nudges are sent back through the
    streaming client as text turns.
    """

    def __init__(self,
                 config: AvatarSyncConfig,
                 client: AbstractStreamingClient,
                 viseme_service: AbstractVisemeService,
                 player: AbstractAudioPlayer,
                 scheduler: Scheduler,
                 on_analytics_event: Optional[Callable[[str, Dict[str, Any]], None]] = None,
                 on_show_indicator: Optional[Callable[[bool], None]] = None,
                 on_session_terminated: Optional[Callable[[], None]] = None):
        """Initialize session.

        Args:
            config: Application configuration
            client: Streaming client publishing on ``session.topic``
            viseme_service: Viseme/subtitle service for combined turn audio
            player: Audio output
            scheduler: Scheduler shared by all components
            on_analytics_event: Forwarded nudge analytics events
            on_show_indicator: Forwarded nudge indicator visibility
            on_session_terminated: Called after the client is told to disconnect
                                   because the nudge budget ran out
        """
        self.config = config
        self.client = client
        self.viseme_service = viseme_service
        self.scheduler = scheduler
        self.on_session_terminated = on_session_terminated

        self.topic = config.get('session.topic', 'stream.events')
        self.keep_alive_interval = config.get('session.keep_alive_interval_seconds', 30.0)
        self.stats_report_interval = config.get('session.stats_report_interval_seconds', 30.0)

        self.statistics = PacketStatisticsTracker(
            gap_warning_ms=config.get('sync.packet_gap_warning_ms', 100))
        self.pipeline = AudioVisemeSyncPipeline(
            player=player,
            viseme_service=viseme_service,
            scheduler=scheduler,
            statistics=self.statistics,
            synchronized=config.get('sync.synchronized', True),
            auto_flush_timeout_seconds=config.get('sync.auto_flush_timeout_seconds', 0.5),
            sync_timeout_seconds=config.get('sync.sync_timeout_seconds', 5.0),
            sample_rate=config.get('audio.sample_rate', 24000),
            channels=config.get('audio.channels', 1),
            on_playback_complete=self._on_playback_complete,
        )
        viseme_service.set_callbacks(VisemeCallbacks(
            on_visemes=self.pipeline.on_visemes_ready,
            on_streaming_chunk=self.pipeline.on_streaming_chunk,
            on_error=self.pipeline.on_viseme_error,
            on_connected=self._on_viseme_service_connected,
        ))

        self.nudge_engine = SilenceNudgeEngine(
            scheduler=scheduler,
            send_nudge=self.send_nudge,
            config=config.get_silence_config(),
            on_show_indicator=on_show_indicator,
            on_analytics_event=on_analytics_event,
            on_session_terminated=self._on_nudge_budget_exhausted,
            response_window_seconds=config.get('silence_detection.response_window_seconds', 60.0),
            indicator_seconds=config.get('silence_detection.indicator_seconds', 3.0),
            termination_grace_seconds=config.get('silence_detection.termination_grace_seconds', 5.0),
            volume_window_size=config.get('silence_detection.volume_window_size', 10),
        )

        self._handlers: Dict[StreamEventType, Callable[[StreamEvent], None]] = {
            StreamEventType.OPEN: self._on_open,
            StreamEventType.CLOSE: self._on_close,
            StreamEventType.ERROR: self._on_error,
            StreamEventType.AUDIO: self._on_audio,
            StreamEventType.TURN_COMPLETE: self._on_turn_complete,
            StreamEventType.INTERRUPTED: self._on_interrupted,
        }

        self.connected = False
        self.terminated = False
        self.last_activity: Optional[float] = None
        self.last_close: Optional[Tuple[Optional[int], Optional[str]]] = None
        self._listen_after_playback = False
        self._subscribed = False

        self._keep_alive_timer = TimerSlot(scheduler, "keep-alive")
        self._stats_timer = TimerSlot(scheduler, "stats-report")

        logger.info(f"CompanionSession initialized on topic {self.topic}")

    # Lifecycle

    async def start(self) -> bool:
        """Subscribe to stream events and connect both remote services.

        Returns:
            True if the streaming client connected
        """
        if not self._subscribed:
            pub.subscribe(self._on_stream_event, self.topic)
            self._subscribed = True

        if not await self.viseme_service.connect():
            logger.warning("Viseme service unavailable, turns will play without visemes")

        connected = await self.client.connect()
        if not connected:
            logger.error("Streaming client failed to connect")
        return connected

    async def stop(self) -> None:
        """Disconnect everything and stop listening for stream events."""
        logger.info("Stopping companion session")
        self._keep_alive_timer.cancel()
        self._stats_timer.cancel()
        self.pipeline.on_interrupted()
        await self.client.disconnect()
        await self.viseme_service.disconnect()
        if self._subscribed:
            pub.unsubscribe(self._on_stream_event, self.topic)
            self._subscribed = False
        self.log_performance_report()

    # Outgoing

    async def send_nudge(self, message: str) -> None:
        """Deliver nudge text to the model as a user turn.

        Raises:
            StreamingClientError: If the client is not connected
        """
        if not self.client.connected:
            raise StreamingClientError("Streaming client is not connected")
        self.client.send(message, True)
        self._touch()
        logger.info("Nudge delivered to streaming client")

    def update_volume(self, volume: float) -> bool:
        """Feed a microphone volume sample (0-1) to the speech detector."""
        return self.nudge_engine.update_volume(volume)

    # Diagnostics

    def get_packet_statistics(self) -> Dict[str, Dict[str, Any]]:
        stats = self.statistics.snapshot()
        return {
            "packets": {
                "total": stats.total_packets,
                "total_bytes": stats.total_bytes,
                "dropped": stats.dropped_packets,
                "loss_rate_percent": stats.packet_loss_rate,
                "average_latency_ms": stats.average_latency_ms,
                "max_latency_ms": stats.max_latency_ms,
                "min_latency_ms": stats.min_latency_ms,
            },
            "synchronization": {
                "mode": "waterfall" if self.pipeline.synchronized else "immediate",
                "state": self.pipeline.state.value,
                "dropped_syncs": stats.dropped_syncs,
                "interruptions": stats.interruptions,
                "buffered_packets": self.pipeline.buffered_packet_count,
            },
            "connection": {
                "connected": self.connected,
                "viseme_service_connected": self.viseme_service.connected,
                "transport_errors": stats.transport_errors,
                "last_close_code": self.last_close[0] if self.last_close else None,
                "last_close_reason": self.last_close[1] if self.last_close else None,
            },
        }

    def log_performance_report(self) -> None:
        report = self.get_packet_statistics()
        packets = report["packets"]
        sync = report["synchronization"]
        logger.info("=== Audio Performance Report ===")
        logger.info(f"Packets: {packets['total']} received, {packets['dropped']} dropped "
                    f"({packets['loss_rate_percent']:.2f}% loss), {packets['total_bytes']} bytes")
        logger.info(f"Latency: avg {packets['average_latency_ms']:.2f}ms, "
                    f"max {packets['max_latency_ms']:.2f}ms")
        logger.info(f"Sync: {sync['mode']} mode, {sync['dropped_syncs']} dropped syncs, "
                    f"{sync['interruptions']} interruptions")

    # Stream events

    def _on_stream_event(self, event: StreamEvent) -> None:
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.warning(f"Unhandled stream event type: {event.type}")
            return
        handler(event)

    def _on_open(self, event: StreamEvent) -> None:
        logger.info("Streaming client connected")
        self.connected = True
        self.last_close = None
        self.statistics.reset()
        self._touch()
        self._stats_timer.arm(self.stats_report_interval, self._on_stats_report)

    def _on_close(self, event: StreamEvent) -> None:
        meaning = describe_close_code(event.close_code)
        self.last_close = (event.close_code, event.reason)
        if event.close_code == 1000:
            logger.info(f"Streaming client closed: {event.close_code} ({meaning}) {event.reason or ''}")
        else:
            logger.warning(f"Streaming client closed: {event.close_code} ({meaning}) {event.reason or ''}")
        self.connected = False
        self._keep_alive_timer.cancel()
        self._stats_timer.cancel()
        self._listen_after_playback = False
        self.nudge_engine.set_conversation_state(ConversationState.IDLE)

    def _on_error(self, event: StreamEvent) -> None:
        logger.error(f"Streaming client error: {event.reason}")
        self.statistics.record_transport_error()

    def _on_audio(self, event: StreamEvent) -> None:
        if event.audio_data is None:
            logger.warning("Audio event without audio data, ignoring")
            return
        self._touch()
        self._listen_after_playback = False
        self.nudge_engine.set_conversation_state(ConversationState.AI_SPEAKING)
        self.pipeline.on_audio_packet(AudioPacket(
            data=event.audio_data,
            timestamp=event.timestamp,
            sequence_number=event.sequence_number or 0,
        ))

    def _on_turn_complete(self, event: StreamEvent) -> None:
        self._touch()
        self.pipeline.on_turn_complete()
        if self.pipeline.state == PipelineState.IDLE:
            self.nudge_engine.set_conversation_state(ConversationState.LISTENING_FOR_USER)
        else:
            # Listening starts once the held-back turn audio has played out
            self._listen_after_playback = True

    def _on_interrupted(self, event: StreamEvent) -> None:
        self._touch()
        self._listen_after_playback = False
        self.pipeline.on_interrupted()
        self.nudge_engine.set_conversation_state(ConversationState.USER_SPEAKING)

    # Component callbacks

    def _on_playback_complete(self) -> None:
        if self._listen_after_playback and self.pipeline.state == PipelineState.IDLE:
            self._listen_after_playback = False
            self.nudge_engine.set_conversation_state(ConversationState.LISTENING_FOR_USER)

    def _on_viseme_service_connected(self, session_id: str) -> None:
        logger.info(f"Viseme service session {session_id} ready")

    def _on_nudge_budget_exhausted(self) -> None:
        if self.terminated:
            return
        self.terminated = True
        logger.warning("Session terminated after the final nudge went unanswered")
        self.scheduler.spawn(self.client.disconnect())
        if self.on_session_terminated:
            self.on_session_terminated()

    # Timers

    def _touch(self) -> None:
        self.last_activity = self.scheduler.now()
        if self.connected:
            self._keep_alive_timer.arm(self.keep_alive_interval, self._on_keep_alive)

    def _on_keep_alive(self) -> None:
        if not self.connected or not self.client.connected:
            return
        try:
            self.client.send({"text": ""}, False)
            logger.debug("Keep-alive sent")
        except StreamingClientError as e:
            logger.warning(f"Keep-alive failed: {e}")
        self._keep_alive_timer.arm(self.keep_alive_interval, self._on_keep_alive)

    def _on_stats_report(self) -> None:
        if not self.connected:
            return
        self.log_performance_report()
        self._stats_timer.arm(self.stats_report_interval, self._on_stats_report)

"""Packet statistics tracking for the streamed audio connection."""

import logging
from dataclasses import replace
from typing import Optional

from ..models.audio import AudioPacket, PacketStatistics

logger = logging.getLogger(__name__)


class PacketStatisticsTracker:
    """Accumulates packet counters and latency for one connection."""

    def __init__(self, gap_warning_ms: float = 100.0):
        """Initialize tracker.

        Args:
            gap_warning_ms: Inter-packet gap above which a delay warning is logged
        """
        self.gap_warning_ms = gap_warning_ms
        self.stats = PacketStatistics()
        self.last_sequence: Optional[int] = None
        self.last_packet_time: Optional[float] = None
        self.first_packet_time: Optional[float] = None
        self._latency_samples = 0

    def record_packet(self, packet: AudioPacket, handled_at: float) -> None:
        """Record an arriving packet.

        Args:
            packet: The packet being handled
            handled_at: Time the pipeline handled the packet; the difference to
                        the packet's arrival timestamp is the latency
        """
        stats = self.stats
        stats.total_packets += 1
        stats.total_bytes += len(packet.data)

        if self.last_sequence is not None and packet.sequence_number > self.last_sequence + 1:
            missing = packet.sequence_number - self.last_sequence - 1
            stats.dropped_packets += missing
            logger.warning(f"Packet loss detected: {missing} packets missing before "
                           f"#{packet.sequence_number} ({stats.dropped_packets} dropped so far)")
        self.last_sequence = packet.sequence_number

        latency_ms = (handled_at - packet.timestamp) * 1000
        if latency_ms >= 0:
            stats.max_latency_ms = max(stats.max_latency_ms, latency_ms)
            if stats.min_latency_ms is None or latency_ms < stats.min_latency_ms:
                stats.min_latency_ms = latency_ms
            # Running mean over packets with a usable latency
            self._latency_samples += 1
            stats.average_latency_ms += (latency_ms - stats.average_latency_ms) / self._latency_samples

        if self.last_packet_time is not None:
            gap_ms = (packet.timestamp - self.last_packet_time) * 1000
            if gap_ms > self.gap_warning_ms:
                logger.warning(f"Potential packet delay detected: {gap_ms:.2f}ms gap between packets")
        if self.first_packet_time is None:
            self.first_packet_time = packet.timestamp
        self.last_packet_time = packet.timestamp

    def record_dropped_sync(self) -> None:
        self.stats.dropped_syncs += 1

    def record_interruption(self) -> None:
        self.stats.interruptions += 1

    def record_transport_error(self) -> None:
        self.stats.transport_errors += 1

    def snapshot(self) -> PacketStatistics:
        """Copy of the current counters."""
        return replace(self.stats)

    def reset(self) -> None:
        """Start counting afresh for a new connection."""
        self.stats = PacketStatistics()
        self.last_sequence = None
        self.last_packet_time = None
        self.first_packet_time = None
        self._latency_samples = 0
        logger.debug("Packet statistics reset")

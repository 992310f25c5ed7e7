"""Audio-related data models."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class AudioPacket:
    """A single streamed audio packet as it arrived from the streaming client."""
    data: bytes
    timestamp: float  # Unix timestamp when the packet arrived
    sequence_number: int


@dataclass
class PacketStatistics:
    """Cumulative packet counters for the current connection."""
    total_packets: int = 0
    total_bytes: int = 0
    dropped_packets: int = 0
    dropped_syncs: int = 0
    interruptions: int = 0
    transport_errors: int = 0
    average_latency_ms: float = 0.0
    max_latency_ms: float = 0.0
    min_latency_ms: Optional[float] = None  # None until the first packet

    @property
    def packet_loss_rate(self) -> float:
        """Dropped packets as a percentage of all packets seen."""
        seen = self.total_packets + self.dropped_packets
        if seen == 0:
            return 0.0
        return (self.dropped_packets / seen) * 100

"""Per-turn audio buffer for waterfall playback."""

import logging
from collections import deque
from typing import Deque, Optional

from ..models.audio import AudioPacket

logger = logging.getLogger(__name__)


class TurnBuffer:
    """Ordered packets of the currently open turn, combined into one blob on flush."""

    def __init__(self, sample_rate: int = 24000, channels: int = 1):
        """Initialize turn buffer.

        Args:
            sample_rate: Sample rate of the streamed PCM16 audio
            channels: Number of audio channels
        """
        self.sample_rate = sample_rate
        self.channels = channels
        self.bytes_per_second = sample_rate * channels * 2  # 16-bit audio

        self.packets: Deque[AudioPacket] = deque()
        self.total_bytes = 0
        self.opened_at: Optional[float] = None

    def __len__(self) -> int:
        return len(self.packets)

    @property
    def is_open(self) -> bool:
        return bool(self.packets)

    @property
    def duration_seconds(self) -> float:
        return self.total_bytes / self.bytes_per_second

    def append(self, packet: AudioPacket) -> bool:
        """Add a packet to the turn.

        Returns:
            True if this packet opened a new turn
        """
        opened = not self.packets
        if opened:
            self.opened_at = packet.timestamp

        self.packets.append(packet)
        self.total_bytes += len(packet.data)

        logger.debug(f"Buffered packet #{packet.sequence_number}: {len(packet.data)} bytes, "
                     f"turn now has {len(self.packets)} packets ({self.total_bytes} bytes)")
        return opened

    def combine_and_clear(self) -> bytes:
        """Concatenate all packets in arrival order and empty the buffer."""
        combined_audio = b''.join(packet.data for packet in self.packets)
        logger.debug(f"Combined {len(self.packets)} packets into {len(combined_audio)} bytes "
                     f"({self.duration_seconds:.2f}s of audio)")
        self.clear()
        return combined_audio

    def get_buffer_stats(self) -> dict:
        """Get buffer statistics."""
        return {
            "packet_count": len(self.packets),
            "total_bytes": self.total_bytes,
            "duration_seconds": self.duration_seconds,
            "opened_at": self.opened_at,
            "first_sequence": self.packets[0].sequence_number if self.packets else None,
            "last_sequence": self.packets[-1].sequence_number if self.packets else None,
        }

    def clear(self) -> None:
        """Discard the open turn."""
        self.packets.clear()
        self.total_bytes = 0
        self.opened_at = None

"""Unit tests for TurnBuffer class."""

import pytest

from avatarsync.audio.buffer import TurnBuffer
from avatarsync.models.audio import AudioPacket


def packet(data: bytes, number: int, timestamp: float = 100.0) -> AudioPacket:
    return AudioPacket(data=data, timestamp=timestamp, sequence_number=number)


@pytest.mark.unit
class TestTurnBuffer:
    """Test cases for TurnBuffer class."""

    def test_initialization(self):
        """Test TurnBuffer initialization with default parameters."""
        buffer = TurnBuffer()

        assert buffer.sample_rate == 24000
        assert buffer.bytes_per_second == 48000
        assert len(buffer) == 0
        assert buffer.is_open is False
        assert buffer.opened_at is None

    def test_first_packet_opens_turn(self):
        """Test only the first packet reports opening a turn."""
        buffer = TurnBuffer()

        assert buffer.append(packet(b'ab', 1, timestamp=5.0)) is True
        assert buffer.append(packet(b'cd', 2, timestamp=5.1)) is False
        assert buffer.is_open is True
        assert buffer.opened_at == 5.0

    def test_combine_preserves_arrival_order(self):
        """Test combining concatenates packets in the order they arrived."""
        buffer = TurnBuffer()
        chunks = [b'\x01\x02', b'\x03\x04\x05\x06', b'\x07\x08']
        for i, chunk in enumerate(chunks, start=1):
            buffer.append(packet(chunk, i))

        combined = buffer.combine_and_clear()

        assert combined == b'\x01\x02\x03\x04\x05\x06\x07\x08'
        assert len(combined) == sum(len(c) for c in chunks)
        assert buffer.is_open is False
        assert buffer.total_bytes == 0

    def test_combine_empty_buffer(self):
        """Test combining an empty buffer yields no audio."""
        assert TurnBuffer().combine_and_clear() == b''

    def test_duration(self):
        buffer = TurnBuffer(sample_rate=24000, channels=1)
        buffer.append(packet(b'\x00' * 48000, 1))

        assert buffer.duration_seconds == pytest.approx(1.0)

    def test_buffer_stats(self):
        buffer = TurnBuffer()
        buffer.append(packet(b'ab', 7))
        buffer.append(packet(b'cd', 8))

        stats = buffer.get_buffer_stats()

        assert stats["packet_count"] == 2
        assert stats["total_bytes"] == 4
        assert stats["first_sequence"] == 7
        assert stats["last_sequence"] == 8

    def test_clear(self):
        buffer = TurnBuffer()
        buffer.append(packet(b'ab', 1))

        buffer.clear()

        assert len(buffer) == 0
        assert buffer.opened_at is None
        assert buffer.get_buffer_stats()["first_sequence"] is None

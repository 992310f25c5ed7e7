"""AvatarSync - lip-synced avatar audio and silence nudging for voice companions."""

__version__ = "0.1.0"

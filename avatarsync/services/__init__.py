"""Services layer wiring the streaming, sync and silence components."""

from .companion_session import CompanionSession, describe_close_code

__all__ = [
    "CompanionSession",
    "describe_close_code"
]

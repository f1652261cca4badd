"""
Append-only audit logging.
"""

from mixwarz.kernel.events.event_store import EventStore, serialize_payload

__all__ = [
    "EventStore",
    "serialize_payload",
]

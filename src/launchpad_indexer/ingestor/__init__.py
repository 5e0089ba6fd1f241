"""Ingestion layer - chain polling, chainhook deliveries and event decoding.

`poller` and `webhook` depend on the reconciler, which itself consumes the
events defined here, so only the decoder and events are re-exported.
"""

from launchpad_indexer.ingestor.decoder import EventDecoder, to_display_units
from launchpad_indexer.ingestor.events import (
    Bought,
    DomainEvent,
    EventType,
    Graduated,
    Sold,
    TokenRegistered,
)

__all__ = [
    "Bought",
    "DomainEvent",
    "EventDecoder",
    "EventType",
    "Graduated",
    "Sold",
    "TokenRegistered",
    "to_display_units",
]

"""Outbox for arena events and the dispatcher that drains it.

The negotiation engine only appends here. Delivery to sinks (database,
push channel, match recording) happens later when the host calls
``OutboxDispatcher.dispatch_pending``.
"""
import logging
from collections import deque
from dataclasses import dataclass, field

from pickle_arena.time_utils import utcnow_naive

logger = logging.getLogger(__name__)

EVENT_TRANSITION = 'negotiation_transition'
EVENT_MATCH_READY = 'match_ready'
EVENT_MATCH_STARTED = 'match_started'
EVENT_PARTNERSHIP_FORMED = 'partnership_formed'
EVENT_PARTNERSHIP_DISSOLVED = 'partnership_dissolved'

ALL_EVENTS = '*'
DEAD_LETTER_LIMIT = 200


@dataclass
class ArenaEvent:
    event_type: str
    payload: dict
    created_at: object = field(default_factory=utcnow_naive)

    def to_dict(self):
        return {
            'event_type': self.event_type,
            'payload': dict(self.payload),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class EventOutbox:
    """Append-only FIFO of events awaiting delivery."""

    def __init__(self):
        self._pending = deque()

    def append(self, event_type, payload):
        event = ArenaEvent(event_type=event_type, payload=payload)
        self._pending.append(event)
        return event

    def drain(self):
        events = list(self._pending)
        self._pending.clear()
        return events

    def pending(self):
        return list(self._pending)

    def __len__(self):
        return len(self._pending)


class OutboxDispatcher:
    """Deliver drained outbox events to handlers registered per event type."""

    def __init__(self, outbox, on_failure=None, dead_letter_limit=DEAD_LETTER_LIMIT):
        self.outbox = outbox
        self.on_failure = on_failure
        self._handlers = {}
        # Oldest failures fall off once the limit is reached.
        self.dead_letters = deque(maxlen=dead_letter_limit)

    def register(self, event_type, handler):
        self._handlers.setdefault(event_type, []).append(handler)

    def _handlers_for(self, event_type):
        return self._handlers.get(event_type, []) + self._handlers.get(ALL_EVENTS, [])

    def dispatch_pending(self):
        """Deliver everything queued so far; returns the number of events handled."""
        events = self.outbox.drain()
        for event in events:
            for handler in self._handlers_for(event.event_type):
                try:
                    handler(event)
                except Exception:
                    logger.exception(
                        'Arena event handler %s failed for %s',
                        getattr(handler, '__name__', repr(handler)),
                        event.event_type,
                    )
                    self.dead_letters.append((event, handler))
                    if self.on_failure is not None:
                        self.on_failure(event, handler)
        return len(events)

"""
EVENT SYSTEM - What Happened During a Simulation

The engine never pushes notifications to anyone. Each simulated day
returns the list of events it produced, and the caller decides who hears
about them:
- Backtest lifecycle
- Generated signals
- Opened / closed / skipped positions
- Rebalance checks
- Walk-forward progress

Events are keyed by simulation date, never by wall-clock time, so two
runs over the same data emit identical event streams.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from loguru import logger


class EventType(str, Enum):
    """All simulation event types."""

    # === LIFECYCLE ===
    BACKTEST_STARTED = "backtest_started"
    BACKTEST_COMPLETED = "backtest_completed"

    # === SIGNALS ===
    SIGNAL_GENERATED = "signal_generated"

    # === POSITIONS ===
    POSITION_OPENED = "position_opened"
    POSITION_CLOSED = "position_closed"
    ENTRY_SKIPPED = "entry_skipped"
    EXECUTION_FAILED = "execution_failed"
    REBALANCE_CHECK = "rebalance_check"

    # === VALIDATION ===
    WALK_FORWARD_WINDOW_COMPLETED = "walk_forward_window_completed"


@dataclass(frozen=True)
class Event:
    """A single simulation event."""

    event_type: EventType
    date: Optional[datetime]
    source: str
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "date": self.date.isoformat() if self.date else None,
            "source": self.source,
            "payload": self.payload,
        }


Listener = Callable[[Event], None]


class EventDispatcher:
    """
    Delivers event lists to subscribed callbacks.

    A failing listener is logged and skipped; it never interrupts the
    simulation or the remaining listeners.
    """

    def __init__(self):
        self._subscribers: Dict[Optional[EventType], List[Listener]] = {}

    def subscribe(self, listener: Listener, event_type: Optional[EventType] = None) -> None:
        """Subscribe to one event type, or to everything when event_type is None."""
        self._subscribers.setdefault(event_type, []).append(listener)

    def unsubscribe(self, listener: Listener, event_type: Optional[EventType] = None) -> None:
        listeners = self._subscribers.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def dispatch(self, events: List[Event]) -> None:
        for event in events:
            targets = self._subscribers.get(event.event_type, []) + self._subscribers.get(None, [])
            for listener in targets:
                try:
                    listener(event)
                except Exception as e:
                    logger.error(f"Event listener failed on {event.event_type.value}: {e}")

    @property
    def has_subscribers(self) -> bool:
        return any(self._subscribers.values())

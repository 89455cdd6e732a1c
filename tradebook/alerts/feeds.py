"""
External collaborators of the alert engine.

PriceFeed / CalendarFeed are pull-based: the engine asks for the current
value each tick. A feed signals "no data right now" by returning None or
raising FeedUnavailableError.
"""

from __future__ import annotations

import abc
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from tradebook.utils.exceptions import FeedUnavailableError
from tradebook.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CalendarEvent:
    id: str
    title: str
    scheduled_time: datetime
    impact: str = ""
    currency: str = ""


class PriceFeed(abc.ABC):
    @abc.abstractmethod
    def current_price(self, symbol: str) -> Optional[float]:
        """Latest price, or None when unknown. Raising is treated as unavailable."""
        pass


class CalendarFeed(abc.ABC):
    @abc.abstractmethod
    def upcoming_events(self) -> List[CalendarEvent]:
        pass


class NotificationSink(abc.ABC):
    @abc.abstractmethod
    def emit(self, message: str, severity: str = "info") -> None:
        pass


class StaticPriceFeed(PriceFeed):
    """Prices pushed in by the caller (ticker callback, HTTP endpoint, tests)."""

    def __init__(self, prices: Optional[Dict[str, float]] = None) -> None:
        self._prices: Dict[str, float] = {k.upper(): v for k, v in (prices or {}).items()}
        self._lock = threading.Lock()
        self.available = True

    def set_price(self, symbol: str, price: float) -> None:
        with self._lock:
            self._prices[symbol.upper()] = price

    def clear(self, symbol: str) -> None:
        with self._lock:
            self._prices.pop(symbol.upper(), None)

    def current_price(self, symbol: str) -> Optional[float]:
        if not self.available:
            raise FeedUnavailableError(f"Price feed offline for {symbol}")
        with self._lock:
            return self._prices.get(symbol.upper())


class StaticCalendarFeed(CalendarFeed):
    def __init__(self, events: Optional[List[CalendarEvent]] = None) -> None:
        self._events = list(events or [])

    def add(self, event: CalendarEvent) -> None:
        self._events.append(event)

    def upcoming_events(self) -> List[CalendarEvent]:
        return sorted(self._events, key=lambda e: e.scheduled_time)


class LoggingNotificationSink(NotificationSink):
    """Delivers notifications to the structured log."""

    _LEVELS = {"info": "info", "warning": "warning", "critical": "critical", "error": "error"}

    def emit(self, message: str, severity: str = "info") -> None:
        method = getattr(logger, self._LEVELS.get(severity, "info"))
        method("alert_notification", message=message, severity=severity)


@dataclass
class RecordingNotificationSink(NotificationSink):
    messages: List[tuple] = field(default_factory=list)

    def emit(self, message: str, severity: str = "info") -> None:
        self.messages.append((message, severity))

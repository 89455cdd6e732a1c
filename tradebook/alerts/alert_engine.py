"""
Alert Engine — active -> triggered state machine
================================================

One tick:
  1. Re-read the settings snapshot (notification switches).
  2. Load every active alert from the store.
  3. Price alerts: one price read per symbol; fire on >= / <= target.
     News alerts: fire inside (0, trigger_before_minutes] before the event.
  4. Each transition is persisted first, then the notification is emitted
     when the master switch and the category switch are both on.

Triggered alerts are never loaded, so re-running a tick (or restarting
after a crash between write and emit) can not fire an alert twice.
A feed that returns None or raises any exception defers the affected
alerts to the next tick. An alert deleted while a tick is running is not
brought back. StoreError propagates to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from tradebook.alerts.alert_models import NewsAlert, PriceAlert
from tradebook.alerts.alert_store import AlertRepository, AnyAlert
from tradebook.alerts.feeds import NotificationSink, PriceFeed
from tradebook.utils.exceptions import FeedUnavailableError
from tradebook.utils.logger import get_logger
from tradebook.utils.user_settings import NotificationSettings, SettingsProvider

logger = get_logger(__name__)


@dataclass
class TickReport:
    evaluated: int = 0
    triggered: List[str] = field(default_factory=list)
    deferred: List[str] = field(default_factory=list)
    notified: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "evaluated": self.evaluated,
            "triggered": list(self.triggered),
            "deferred": list(self.deferred),
            "notified": list(self.notified),
        }


class AlertEngine:
    def __init__(
        self,
        repository: AlertRepository,
        price_feed: PriceFeed,
        sink: NotificationSink,
        settings_provider: SettingsProvider,
    ) -> None:
        self._repository = repository
        self._price_feed = price_feed
        self._sink = sink
        self._settings_provider = settings_provider

    def tick(self, now: Optional[datetime] = None) -> TickReport:
        now = now or datetime.now()
        notifications = self._settings_provider.snapshot().notifications
        report = TickReport()
        prices: Dict[str, Optional[float]] = {}

        for alert in self._repository.active():
            report.evaluated += 1
            if isinstance(alert, PriceAlert):
                if alert.symbol not in prices:
                    prices[alert.symbol] = self._read_price(alert.symbol)
                price = prices[alert.symbol]
                if price is None:
                    report.deferred.append(alert.id)
                    continue
                if alert.is_met(price):
                    self._fire(alert, alert.describe(price), now, notifications, report)
            elif isinstance(alert, NewsAlert):
                if alert.is_due(now):
                    self._fire(alert, alert.describe(now), now, notifications, report)

        if report.triggered or report.deferred:
            logger.info("alert_tick_completed", **report.to_dict())
        return report

    def _read_price(self, symbol: str) -> Optional[float]:
        try:
            return self._price_feed.current_price(symbol)
        except FeedUnavailableError as e:
            logger.debug("price_feed_unavailable", symbol=symbol, error=e.message)
            return None
        except Exception as e:
            logger.warning("price_feed_error", symbol=symbol, error=str(e))
            return None

    def _fire(self, alert: AnyAlert, message: str, now: datetime,
              notifications: NotificationSettings, report: TickReport) -> None:
        if self._repository.mark_triggered(alert, now) is None:
            return
        report.triggered.append(alert.id)
        logger.info("alert_triggered", alert_id=alert.id, type=alert.type, message=message)

        if self._should_notify(alert, notifications):
            try:
                self._sink.emit(message, "warning" if alert.type == "news" else "info")
            except Exception as e:
                logger.error("alert_notification_failed", alert_id=alert.id, error=str(e))
                return
            report.notified.append(alert.id)

    @staticmethod
    def _should_notify(alert: AnyAlert, notifications: NotificationSettings) -> bool:
        if not notifications.global_enable:
            return False
        if alert.type == "price":
            return notifications.price_alerts
        return notifications.news_alerts

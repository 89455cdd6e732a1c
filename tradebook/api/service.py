from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from tradebook.alerts.alert_engine import AlertEngine, TickReport
from tradebook.alerts.alert_models import AlertCondition, AlertStatus, NewsAlert, PriceAlert, parse_alert
from tradebook.alerts.alert_store import AlertRepository, AnyAlert
from tradebook.alerts.feeds import (
    CalendarEvent,
    CalendarFeed,
    LoggingNotificationSink,
    NotificationSink,
    PriceFeed,
    StaticCalendarFeed,
    StaticPriceFeed,
)
from tradebook.alerts.scheduler import PollingScheduler
from tradebook.journal.journal_analytics import (
    BREAKDOWNS,
    EquityCurve,
    JournalAnalytics,
    closed_trades,
    daily_snapshot,
    filter_by_period,
    mistake_frequency,
)
from tradebook.journal.journal_models import TradeInput, TradeRecord, TradeSide, TradingSetup, derive_fields
from tradebook.journal.journal_store import (
    ALERT_INDEXES,
    ALERTS_COLLECTION,
    JOURNAL_COLLECTION,
    JOURNAL_INDEXES,
    SETUP_INDEXES,
    SETUPS_COLLECTION,
    MemoryKeyedStore,
    SetupRepository,
    SqliteKeyedStore,
    TradeRepository,
)
from tradebook.risk.manager import RiskSizingEngine, SizingResult
from tradebook.utils.config import get_settings
from tradebook.utils.exceptions import NotFoundError, ValidationError
from tradebook.utils.logger import get_logger
from tradebook.utils.user_settings import (
    InMemorySettingsProvider,
    JsonFileSettingsProvider,
    SettingsProvider,
    SettingsSnapshot,
)

logger = get_logger(__name__)


def _validation_message(e: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'value'}: {err['msg']}" for err in e.errors()
    )


class JournalService:
    """
    Everything the UI/HTTP layer may call: journal CRUD, reports, setups,
    sizing and alerts. Mutations return the stored object; aggregates are
    recomputed from the store on every call.
    """

    _instance: Optional[JournalService] = None

    def __init__(
        self,
        trades: Optional[TradeRepository] = None,
        setups: Optional[SetupRepository] = None,
        alerts: Optional[AlertRepository] = None,
        settings_provider: Optional[SettingsProvider] = None,
        price_feed: Optional[PriceFeed] = None,
        calendar_feed: Optional[CalendarFeed] = None,
        sink: Optional[NotificationSink] = None,
    ) -> None:
        self._settings = get_settings()
        db_path = self._settings.db_path
        self._trades = trades or TradeRepository(SqliteKeyedStore(db_path, JOURNAL_COLLECTION, JOURNAL_INDEXES))
        self._setups = setups or SetupRepository(SqliteKeyedStore(db_path, SETUPS_COLLECTION, SETUP_INDEXES))
        self._alerts = alerts or AlertRepository(SqliteKeyedStore(db_path, ALERTS_COLLECTION, ALERT_INDEXES))
        self._settings_provider = settings_provider or JsonFileSettingsProvider(self._settings.settings_file)
        self._price_feed = price_feed or StaticPriceFeed()
        self._calendar_feed = calendar_feed or StaticCalendarFeed()
        self._analytics = JournalAnalytics(self._trades)
        self._sizing = RiskSizingEngine(self._settings.default_reward_risk)
        self._engine = AlertEngine(self._alerts, self._price_feed, sink or LoggingNotificationSink(),
                                   self._settings_provider)

    @classmethod
    def get_instance(cls) -> JournalService:
        if cls._instance is None:
            cls._instance = JournalService()
        return cls._instance

    @classmethod
    def in_memory(cls, snapshot: Optional[SettingsSnapshot] = None, **kwargs: Any) -> JournalService:
        """A service backed by in-process stores; nothing touches disk."""
        return cls(
            trades=TradeRepository(MemoryKeyedStore(JOURNAL_COLLECTION, JOURNAL_INDEXES)),
            setups=SetupRepository(MemoryKeyedStore(SETUPS_COLLECTION, SETUP_INDEXES)),
            alerts=AlertRepository(MemoryKeyedStore(ALERTS_COLLECTION, ALERT_INDEXES)),
            settings_provider=InMemorySettingsProvider(snapshot),
            **kwargs,
        )

    @property
    def engine(self) -> AlertEngine:
        return self._engine

    @property
    def price_feed(self) -> PriceFeed:
        return self._price_feed

    @property
    def calendar_feed(self) -> CalendarFeed:
        return self._calendar_feed

    # ── Settings ──────────────────────────────────────────────

    def get_user_settings(self) -> SettingsSnapshot:
        return self._settings_provider.snapshot()

    def update_user_settings(self, data: dict[str, Any]) -> SettingsSnapshot:
        merged = self._settings_provider.snapshot().model_dump(mode="json")
        for section, values in data.items():
            if isinstance(values, dict) and isinstance(merged.get(section), dict):
                merged[section] = {**merged[section], **values}
            else:
                merged[section] = values
        try:
            snapshot = SettingsSnapshot.model_validate(merged)
        except PydanticValidationError as e:
            raise ValidationError(_validation_message(e))
        return self._settings_provider.save(snapshot)

    # ── Journal ───────────────────────────────────────────────

    def new_trade_input(self, setup_id: Optional[str] = None) -> TradeInput:
        """A blank input pre-filled from the given setup, or the active one."""
        setup = self._setups.get(setup_id) if setup_id else self._setups.active()
        if setup_id and setup is None:
            raise NotFoundError("Setup not found", setup_id)
        data = TradeInput()
        return setup.apply_defaults(data) if setup else data

    def save_trade(self, data: TradeInput) -> TradeRecord:
        """Create or fully re-save a trade. Derived fields are always recomputed."""
        if data.trade_id and data.created_at is None:
            existing = self._trades.get(data.trade_id)
            if existing is not None:
                data = replace(data, created_at=existing.created_at)
        if data.setup_id and not data.setup_name:
            setup = self._setups.get(data.setup_id)
            if setup is not None:
                data = replace(data, setup_name=setup.name)
        return self._trades.save(derive_fields(data))

    def get_trade(self, trade_id: str) -> TradeRecord:
        record = self._trades.get(trade_id)
        if record is None:
            raise NotFoundError("Trade not found", trade_id)
        return record

    def delete_trade(self, trade_id: str) -> bool:
        return self._trades.delete(trade_id)

    def list_trades(self, symbol: str = "", limit: int = 0) -> list[TradeRecord]:
        """Newest first."""
        trades = self._trades.list_by_symbol(symbol) if symbol else self._trades.list_all()
        trades = list(reversed(trades))
        return trades[:limit] if limit > 0 else trades

    def all_tags(self) -> list[str]:
        return self._trades.all_tags()

    # ── Reports ───────────────────────────────────────────────

    def _balance(self) -> float:
        return self._settings_provider.snapshot().risk.account_balance

    def compute_summary(self, days: int = 0) -> dict[str, Any]:
        return self._analytics.compute_summary(self._balance(), days)

    def compute_equity_curve(self, days: int = 0) -> EquityCurve:
        return self._analytics.equity_curve(self._balance(), days)

    def compute_breakdown(self, name: str, days: int = 0) -> list[dict[str, Any]]:
        if name not in BREAKDOWNS:
            raise ValidationError(f"Unknown breakdown {name!r}")
        return self._analytics.breakdown(name, days)

    def compute_mistake_frequency(self, days: int = 0) -> dict[str, int]:
        return mistake_frequency(filter_by_period(closed_trades(self._trades.list_all()), days))

    def compute_daily_snapshot(self) -> dict[str, Any]:
        return daily_snapshot(self._trades.list_all())

    def compute_full_analytics(self, days: int = 0) -> dict[str, Any]:
        return self._analytics.compute_full_analytics(self._balance(), days)

    # ── Setups ────────────────────────────────────────────────

    def save_setup(self, setup: TradingSetup) -> TradingSetup:
        if not setup.name.strip():
            raise ValidationError("Setup name is required")
        return self._setups.save(setup)

    def list_setups(self) -> list[TradingSetup]:
        return self._setups.list_all()

    def active_setup(self) -> Optional[TradingSetup]:
        return self._setups.active()

    def activate_setup(self, setup_id: str) -> TradingSetup:
        setup = self._setups.activate(setup_id)
        if setup is None:
            raise NotFoundError("Setup not found", setup_id)
        return setup

    def delete_setup(self, setup_id: str) -> bool:
        return self._setups.delete(setup_id)

    # ── Sizing ────────────────────────────────────────────────

    def current_risk_percent(self) -> float:
        return self._sizing.current_risk_percent(self._trades.list_all(), self._settings_provider.snapshot().risk)

    def suggest_entry(self, entry_price: Optional[float], stop_loss: Optional[float],
                      side: Optional[TradeSide] = None, desired_rr: Optional[float] = None,
                      setup_id: Optional[str] = None) -> Optional[SizingResult]:
        if desired_rr is None:
            setup = self._setups.get(setup_id) if setup_id else self._setups.active()
            if setup is not None and setup.default_risk_reward:
                desired_rr = setup.default_risk_reward
        return self._sizing.suggest_entry(
            entry_price, stop_loss, self._trades.list_all(), self._settings_provider.snapshot().risk,
            side=side, desired_rr=desired_rr,
        )

    def position_size(self, entry_price: Optional[float], stop_loss: Optional[float],
                      account_balance: Optional[float] = None,
                      risk_percent: Optional[float] = None) -> Optional[float]:
        if account_balance is None:
            account_balance = self._balance()
        if risk_percent is None:
            risk_percent = self.current_risk_percent()
        return self._sizing.position_size(entry_price, stop_loss, account_balance, risk_percent)

    # ── Alerts ────────────────────────────────────────────────

    def create_alert(self, data: dict[str, Any]) -> AnyAlert:
        """Create an alert from a dict tagged with ``type`` ("price" or "news")."""
        data = {k: v for k, v in data.items() if k not in ("id", "status", "created_at", "triggered_at")}
        try:
            alert = parse_alert(data)
        except PydanticValidationError as e:
            raise ValidationError(_validation_message(e))
        return self._alerts.add(alert)

    def create_price_alert(self, symbol: str, condition: AlertCondition, target_price: float) -> PriceAlert:
        return self.create_alert({
            "type": "price", "symbol": symbol, "condition": condition, "target_price": target_price,
        })

    def create_news_alert(self, news_id: str, news_title: str, event_time: datetime,
                          trigger_before_minutes: float) -> NewsAlert:
        return self.create_alert({
            "type": "news", "news_id": news_id, "news_title": news_title,
            "event_time": event_time, "trigger_before_minutes": trigger_before_minutes,
        })

    def create_alert_for_event(self, event_id: str, trigger_before_minutes: float) -> NewsAlert:
        event = next((e for e in self.upcoming_events() if e.id == event_id), None)
        if event is None:
            raise NotFoundError("Calendar event not found", event_id)
        return self.create_news_alert(event.id, event.title, event.scheduled_time, trigger_before_minutes)

    def upcoming_events(self) -> list[CalendarEvent]:
        return self._calendar_feed.upcoming_events()

    def delete_alert(self, alert_id: str) -> bool:
        return self._alerts.delete(alert_id)

    def list_alerts(self, status: Optional[AlertStatus] = None) -> list[AnyAlert]:
        return self._alerts.list(status)

    def run_alert_tick(self, now: Optional[datetime] = None) -> TickReport:
        return self._engine.tick(now)

    def create_scheduler(self, interval: Optional[float] = None) -> PollingScheduler:
        return PollingScheduler(self._engine.tick, interval)

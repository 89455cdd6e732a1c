"""
Shared fixtures and trade builders for the journal, sizing and alert tests.

Every test runs against a throw-away data directory: the process config is
reloaded with TRADEBOOK_* paths under tmp_path so nothing touches ./data.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

import pytest

from tradebook.alerts.alert_engine import AlertEngine
from tradebook.alerts.alert_store import AlertRepository
from tradebook.alerts.feeds import RecordingNotificationSink, StaticPriceFeed
from tradebook.api.service import JournalService
from tradebook.journal.journal_models import (
    TradeInput,
    TradeOutcome,
    TradeRecord,
    TradeSide,
    classify,
)
from tradebook.journal.journal_store import (
    ALERT_INDEXES,
    ALERTS_COLLECTION,
    JOURNAL_COLLECTION,
    JOURNAL_INDEXES,
    MemoryKeyedStore,
    TradeRepository,
)
from tradebook.utils.config import reload_settings
from tradebook.utils.user_settings import InMemorySettingsProvider, SettingsSnapshot


BASE_TIME = datetime(2024, 3, 4, 9, 30)  # a Monday


# ─────────────────────────────────────────────────────────
# Trade builders
# ─────────────────────────────────────────────────────────

def closed_trade(pnl: float, day: int = 0, side: TradeSide = TradeSide.BUY, **kwargs) -> TradeRecord:
    """A closed trade with a given P&L, ``day`` days after BASE_TIME."""
    return TradeRecord(
        date=BASE_TIME + timedelta(days=day),
        symbol=kwargs.pop("symbol", "EURUSD"),
        side=side,
        profit_or_loss=pnl,
        status=classify(pnl),
        **kwargs,
    )


def trades_from_pnls(pnls: list[float], **kwargs) -> list[TradeRecord]:
    return [closed_trade(p, day=i, **kwargs) for i, p in enumerate(pnls)]


def buy_input(exit_price: Optional[float] = 1.2050, **kwargs) -> TradeInput:
    defaults = dict(
        symbol="eurusd",
        entry_price=1.2000,
        stop_loss=1.1950,
        take_profit=1.2100,
        position_size=0.2,
        outcome=TradeOutcome.MANUAL_EXIT,
        manual_exit_price=exit_price,
        date=BASE_TIME,
    )
    defaults.update(kwargs)
    return TradeInput(**defaults)


# ─────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("TRADEBOOK_DB_PATH", str(tmp_path / "tradebook.db"))
    monkeypatch.setenv("TRADEBOOK_SETTINGS_FILE", str(tmp_path / "settings.json"))
    monkeypatch.setenv("TRADEBOOK_LOG_FILE", str(tmp_path / "tradebook.log"))
    monkeypatch.setenv("TRADEBOOK_ALERT_SCHEDULER_AUTOSTART", "false")
    settings = reload_settings()
    JournalService._instance = None
    yield settings
    JournalService._instance = None
    reload_settings()


@pytest.fixture
def trade_repo() -> TradeRepository:
    return TradeRepository(MemoryKeyedStore(JOURNAL_COLLECTION, JOURNAL_INDEXES))


@pytest.fixture
def alert_repo() -> AlertRepository:
    return AlertRepository(MemoryKeyedStore(ALERTS_COLLECTION, ALERT_INDEXES))


@pytest.fixture
def price_feed() -> StaticPriceFeed:
    return StaticPriceFeed()


@pytest.fixture
def sink() -> RecordingNotificationSink:
    return RecordingNotificationSink()


@pytest.fixture
def settings_provider() -> InMemorySettingsProvider:
    return InMemorySettingsProvider(SettingsSnapshot())


@pytest.fixture
def engine(alert_repo, price_feed, sink, settings_provider) -> AlertEngine:
    return AlertEngine(alert_repo, price_feed, sink, settings_provider)


@pytest.fixture
def service(price_feed, sink) -> JournalService:
    return JournalService.in_memory(price_feed=price_feed, sink=sink)

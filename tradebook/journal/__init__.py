"""
Trade Journal
=============

  journal_models.py    — TradeInput / TradeRecord / TradingSetup and derive_fields()
  journal_store.py     — keyed store contract, SQLite + in-memory stores, repositories
  journal_analytics.py — equity curve, drawdown, summary stats, grouped breakdowns
"""

from tradebook.journal.journal_models import (
    TradeInput,
    TradeRecord,
    TradeSide,
    TradeOutcome,
    TradeStatus,
    Psychology,
    TradingSetup,
    ChecklistItem,
    derive_fields,
)

from tradebook.journal.journal_store import (
    KeyedStore,
    SqliteKeyedStore,
    MemoryKeyedStore,
    TradeRepository,
    SetupRepository,
)
from tradebook.journal.journal_analytics import JournalAnalytics

"""
Journal Analytics Engine — equity curve, drawdown, grouped breakdowns
======================================================================

Pure functions over an immutable list of closed trades (defined P&L),
ordered by trade date ascending:
  - Equity curve (lazy, restartable)
  - Max drawdown with the peak/trough that bracket it
  - Summary statistics (net profit, profit factor, win rate, averages)
  - Generic group-by with win rate and P&L per bucket
  - Report windows, mistake frequency, today's snapshot

JournalAnalytics ties those to a TradeRepository for the report views.
"""

from __future__ import annotations
import math
from collections import defaultdict
from dataclasses import dataclass, asdict
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, Iterator, List, NamedTuple, Optional, Union

from tradebook.journal.journal_models import TradeRecord, TradeSide, local_naive
from tradebook.utils.logger import get_logger

logger = get_logger(__name__)

UNKNOWN_GROUP = "Unknown"
EQUITY_ORIGIN_OFFSET = timedelta(minutes=1)
DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

GroupKey = Union[None, str, Iterable[str]]


class EquityPoint(NamedTuple):
    timestamp: datetime
    equity: float


@dataclass(frozen=True)
class DrawdownResult:
    max_drawdown_pct: float = 0.0
    peak_time: Optional[datetime] = None
    trough_time: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "max_drawdown_pct": round(self.max_drawdown_pct, 4),
            "peak_time": self.peak_time.isoformat() if self.peak_time else None,
            "trough_time": self.trough_time.isoformat() if self.trough_time else None,
        }


@dataclass(frozen=True)
class SummaryStats:
    total_trades: int = 0
    net_profit: float = 0.0
    profit_factor: float = 0.0      # inf when there are wins and no losses
    win_rate: float = 0.0           # percent
    avg_win: float = 0.0
    avg_loss: float = 0.0           # magnitude of the average losing trade
    largest_win: float = 0.0
    largest_loss: float = 0.0       # most negative P&L, 0 without losses
    winning_trades: int = 0
    losing_trades: int = 0
    long_trades: int = 0
    short_trades: int = 0

    def to_dict(self) -> dict:
        d = asdict(self)
        # JSON has no infinity
        if math.isinf(self.profit_factor):
            d["profit_factor"] = None
        d["profit_factor_infinite"] = math.isinf(self.profit_factor)
        return d


@dataclass
class GroupStats:
    count: int = 0
    wins: int = 0
    total_pnl: float = 0.0
    rating_total: int = 0
    rating_count: int = 0

    @property
    def win_rate(self) -> float:
        return self.wins / self.count * 100 if self.count else 0.0

    @property
    def avg_rating(self) -> float:
        return self.rating_total / self.rating_count if self.rating_count else 0.0

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "wins": self.wins,
            "win_rate": round(self.win_rate, 2),
            "total_pnl": round(self.total_pnl, 2),
            "avg_rating": round(self.avg_rating, 2),
        }


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# SELECTION
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def closed_trades(records: Iterable[TradeRecord]) -> List[TradeRecord]:
    """Trades with a defined P&L, oldest first."""
    return sorted((r for r in records if r.profit_or_loss is not None), key=lambda r: r.date)


def filter_by_period(trades: Iterable[TradeRecord], days: int = 0,
                     now: Optional[datetime] = None) -> List[TradeRecord]:
    """Keep trades dated within the last ``days`` days; 0 keeps everything."""
    trades = list(trades)
    if not days:
        return trades
    cutoff = local_naive(now or datetime.now()) - timedelta(days=days)
    return [t for t in trades if t.date >= cutoff]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# EQUITY & DRAWDOWN
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class EquityCurve:
    """
    Cumulative account value over closed trades.

    Iterating folds the trade list again from the initial balance, so the
    curve can be walked any number of times and holds no running state.
    """

    def __init__(self, trades: Iterable[TradeRecord], initial_balance: float) -> None:
        self._trades = tuple(t for t in trades if t.profit_or_loss is not None)
        self._initial_balance = float(initial_balance)

    @property
    def initial_balance(self) -> float:
        return self._initial_balance

    def __iter__(self) -> Iterator[EquityPoint]:
        if not self._trades:
            return
        equity = self._initial_balance
        yield EquityPoint(self._trades[0].date - EQUITY_ORIGIN_OFFSET, equity)
        for trade in self._trades:
            equity += trade.profit_or_loss
            yield EquityPoint(trade.date, equity)

    def __len__(self) -> int:
        return len(self._trades) + 1 if self._trades else 0

    def final_equity(self) -> float:
        return self._initial_balance + sum(t.profit_or_loss for t in self._trades)

    def to_list(self) -> List[dict]:
        return [{"timestamp": p.timestamp.isoformat(), "equity": round(p.equity, 2)} for p in self]


def build_equity_curve(trades: Iterable[TradeRecord], initial_balance: float) -> EquityCurve:
    return EquityCurve(trades, initial_balance)


def max_drawdown(curve: Iterable[EquityPoint]) -> DrawdownResult:
    """Largest peak-to-trough retracement in percent of the running peak. One pass."""
    peak_value: Optional[float] = None
    peak_time: Optional[datetime] = None
    best = DrawdownResult()

    for timestamp, equity in curve:
        if peak_value is None or equity > peak_value:
            peak_value, peak_time = equity, timestamp
            continue
        drawdown = (peak_value - equity) / peak_value * 100 if peak_value > 0 else 0.0
        if drawdown > best.max_drawdown_pct:
            best = DrawdownResult(drawdown, peak_time, timestamp)
    return best


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# SUMMARY
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def summary_stats(trades: Iterable[TradeRecord]) -> SummaryStats:
    trades = [t for t in trades if t.profit_or_loss is not None]
    total = len(trades)
    if total == 0:
        return SummaryStats()

    pnls = [t.profit_or_loss for t in trades]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]

    total_profit = sum(wins)
    total_loss = abs(sum(losses))

    if total_loss > 0:
        profit_factor = total_profit / total_loss
    else:
        profit_factor = math.inf if total_profit > 0 else 0.0

    return SummaryStats(
        total_trades=total,
        net_profit=sum(pnls),
        profit_factor=profit_factor,
        win_rate=len(wins) / total * 100,
        avg_win=total_profit / len(wins) if wins else 0.0,
        avg_loss=total_loss / len(losses) if losses else 0.0,
        largest_win=max(wins) if wins else 0.0,
        largest_loss=min(losses) if losses else 0.0,
        winning_trades=len(wins),
        losing_trades=len(losses),
        long_trades=sum(1 for t in trades if t.side == TradeSide.BUY),
        short_trades=sum(1 for t in trades if t.side == TradeSide.SELL),
    )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# GROUPED BREAKDOWNS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def _bucket_keys(raw: GroupKey) -> List[str]:
    if raw is None:
        return [UNKNOWN_GROUP]
    if isinstance(raw, str):
        return [raw] if raw.strip() else [UNKNOWN_GROUP]
    keys = [k for k in raw if k and k.strip()]
    return keys or [UNKNOWN_GROUP]


def group_by(trades: Iterable[TradeRecord],
             key_fn: Callable[[TradeRecord], GroupKey]) -> Dict[str, GroupStats]:
    """
    Aggregate count, wins and P&L per group key.

    ``key_fn`` returns one key, a collection of keys (the trade then counts in
    every bucket), or None/empty for trades lacking the attribute, which land
    in the "Unknown" bucket.
    """
    groups: Dict[str, GroupStats] = defaultdict(GroupStats)
    for trade in trades:
        if trade.profit_or_loss is None:
            continue
        for key in _bucket_keys(key_fn(trade)):
            g = groups[key]
            g.count += 1
            g.total_pnl += trade.profit_or_loss
            if trade.profit_or_loss > 0:
                g.wins += 1
            if trade.setup_rating > 0:
                g.rating_total += trade.setup_rating
                g.rating_count += 1
    return dict(groups)


def sorted_groups(groups: Dict[str, GroupStats]) -> List[tuple]:
    """Display order: total P&L descending, then key."""
    return sorted(groups.items(), key=lambda kv: (-kv[1].total_pnl, kv[0]))


def by_setup(trades: Iterable[TradeRecord]) -> Dict[str, GroupStats]:
    return group_by(trades, lambda t: t.setup_name)


def by_symbol(trades: Iterable[TradeRecord]) -> Dict[str, GroupStats]:
    return group_by(trades, lambda t: t.symbol)


def by_tag(trades: Iterable[TradeRecord]) -> Dict[str, GroupStats]:
    return group_by(trades, lambda t: t.tags)


def by_mistake(trades: Iterable[TradeRecord]) -> Dict[str, GroupStats]:
    return group_by(trades, lambda t: t.mistakes)


def by_day_of_week(trades: Iterable[TradeRecord]) -> Dict[str, GroupStats]:
    return group_by(trades, lambda t: DAY_NAMES[t.date.weekday()])


def by_entry_reason(trades: Iterable[TradeRecord]) -> Dict[str, GroupStats]:
    return group_by(trades, lambda t: t.psychology.entry_reason.value if t.psychology.entry_reason else None)


def by_side(trades: Iterable[TradeRecord]) -> Dict[str, GroupStats]:
    return group_by(trades, lambda t: t.side.value if t.side else None)


def mistake_frequency(trades: Iterable[TradeRecord]) -> Dict[str, int]:
    counts: Dict[str, int] = defaultdict(int)
    for trade in trades:
        for mistake in trade.mistakes:
            counts[mistake] += 1
    return dict(sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])))


def daily_snapshot(records: Iterable[TradeRecord], day: Optional[date] = None) -> Dict:
    """Today's performance: P&L and win rate of closed trades, plus open trades."""
    day = day or date.today()
    todays = [r for r in records if r.date.date() == day]
    closed = [r for r in todays if r.profit_or_loss is not None]
    wins = sum(1 for r in closed if r.profit_or_loss > 0)
    return {
        "date": day.isoformat(),
        "pnl": round(sum(r.profit_or_loss for r in closed), 2),
        "win_rate": round(wins / len(closed) * 100, 2) if closed else 0.0,
        "total_trades": len(todays),
        "open_trades": len(todays) - len(closed),
    }


BREAKDOWNS: Dict[str, Callable[[Iterable[TradeRecord]], Dict[str, GroupStats]]] = {
    "setup": by_setup,
    "symbol": by_symbol,
    "tag": by_tag,
    "day_of_week": by_day_of_week,
    "entry_reason": by_entry_reason,
    "mistake": by_mistake,
    "side": by_side,
}


class JournalAnalytics:
    """
    Report views over the journal.
    Every call takes a fresh snapshot from the repository.
    """

    def __init__(self, repository) -> None:
        self._repository = repository

    def _closed(self, days: int = 0, now: Optional[datetime] = None) -> List[TradeRecord]:
        return filter_by_period(closed_trades(self._repository.list_all()), days, now)

    def equity_curve(self, initial_balance: float, days: int = 0) -> EquityCurve:
        return build_equity_curve(self._closed(days), initial_balance)

    def compute_summary(self, initial_balance: float, days: int = 0) -> Dict:
        trades = self._closed(days)
        curve = build_equity_curve(trades, initial_balance)
        drawdown = max_drawdown(curve)
        result = summary_stats(trades).to_dict()
        result["max_drawdown"] = drawdown.to_dict()
        result["final_equity"] = round(curve.final_equity(), 2)
        logger.debug("summary_computed", trades=len(trades), days=days)
        return result

    def breakdown(self, name: str, days: int = 0) -> List[Dict]:
        fn = BREAKDOWNS.get(name)
        if fn is None:
            raise KeyError(f"Unknown breakdown {name!r}; choose from {sorted(BREAKDOWNS)}")
        return [{"key": key, **stats.to_dict()} for key, stats in sorted_groups(fn(self._closed(days)))]

    def compute_full_analytics(self, initial_balance: float, days: int = 0) -> Dict:
        trades = self._closed(days)
        if not trades:
            return {"error": "No closed trades found", "total_trades": 0}
        return {
            "summary": self.compute_summary(initial_balance, days),
            "breakdowns": {name: self.breakdown(name, days) for name in BREAKDOWNS},
            "mistake_frequency": mistake_frequency(trades),
            "today": daily_snapshot(self._repository.list_all()),
        }

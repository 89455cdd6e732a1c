"""
Tests for the analytics engine: equity curve, drawdown, summary stats,
grouped breakdowns and the report helpers.
"""

from __future__ import annotations

import math
from datetime import timedelta, timezone

import pytest

from conftest import BASE_TIME, closed_trade, trades_from_pnls
from tradebook.journal.journal_analytics import (
    UNKNOWN_GROUP,
    EquityPoint,
    JournalAnalytics,
    build_equity_curve,
    by_day_of_week,
    by_entry_reason,
    by_mistake,
    by_setup,
    by_side,
    by_symbol,
    by_tag,
    closed_trades,
    daily_snapshot,
    filter_by_period,
    group_by,
    max_drawdown,
    mistake_frequency,
    sorted_groups,
    summary_stats,
)
from tradebook.journal.journal_models import EntryReason, Psychology, TradeRecord, TradeSide, TradeStatus
from tradebook.journal.journal_store import TradeRepository


class TestEquityCurve:

    def test_origin_point_one_minute_before_first_trade(self):
        curve = build_equity_curve(trades_from_pnls([50, -30]), 1000)
        points = list(curve)
        assert points[0] == EquityPoint(BASE_TIME - timedelta(minutes=1), 1000)
        assert [p.equity for p in points] == [1000, 1050, 1020]
        assert points[1].timestamp == BASE_TIME

    def test_restartable(self):
        curve = build_equity_curve(trades_from_pnls([10, 20, 30]), 500)
        assert list(curve) == list(curve)
        assert len(curve) == 4

    def test_empty(self):
        curve = build_equity_curve([], 1000)
        assert list(curve) == []
        assert curve.final_equity() == 1000

    def test_open_trades_ignored(self):
        trades = trades_from_pnls([10]) + [TradeRecord(date=BASE_TIME + timedelta(days=5))]
        assert [p.equity for p in build_equity_curve(trades, 100)] == [100, 110]

    def test_to_list_is_json_ready(self):
        rows = build_equity_curve(trades_from_pnls([10]), 100).to_list()
        assert rows[-1] == {"timestamp": BASE_TIME.isoformat(), "equity": 110}


class TestMaxDrawdown:

    def test_strictly_increasing_curve_has_none(self):
        result = max_drawdown(build_equity_curve(trades_from_pnls([10, 20, 30]), 1000))
        assert result.max_drawdown_pct == 0
        assert result.peak_time is None
        assert result.trough_time is None

    def test_strictly_decreasing_curve(self):
        trades = trades_from_pnls([-100, -50, -50])
        result = max_drawdown(build_equity_curve(trades, 1000))
        assert result.max_drawdown_pct == pytest.approx((1000 - 800) / 1000 * 100)
        assert result.peak_time == BASE_TIME - timedelta(minutes=1)
        assert result.trough_time == trades[-1].date

    def test_largest_retracement_wins(self):
        # 1000 -> 1100 -> 990 (10%) -> 1200 -> 1140 (5%)
        trades = trades_from_pnls([100, -110, 210, -60])
        result = max_drawdown(build_equity_curve(trades, 1000))
        assert result.max_drawdown_pct == pytest.approx(10.0)
        assert result.peak_time == trades[0].date
        assert result.trough_time == trades[1].date

    def test_non_positive_peak_counts_as_zero(self):
        points = [EquityPoint(BASE_TIME, 0.0), EquityPoint(BASE_TIME + timedelta(days=1), -50.0)]
        assert max_drawdown(points).max_drawdown_pct == 0

    def test_works_on_a_one_shot_iterator(self):
        points = iter(build_equity_curve(trades_from_pnls([-100]), 1000))
        assert max_drawdown(points).max_drawdown_pct == pytest.approx(10.0)


class TestSummaryStats:

    def test_reference_sequence(self):
        stats = summary_stats(trades_from_pnls([50, -30, 20, -10, 40]))
        assert stats.total_trades == 5
        assert stats.net_profit == pytest.approx(70)
        assert stats.win_rate == pytest.approx(60.0)
        assert stats.profit_factor == pytest.approx(2.75)
        assert stats.largest_win == 50
        assert stats.largest_loss == -30
        assert stats.avg_win == pytest.approx(110 / 3)
        assert stats.avg_loss == pytest.approx(20)
        assert stats.winning_trades == 3
        assert stats.losing_trades == 2

    def test_no_losses_gives_infinite_profit_factor(self):
        stats = summary_stats(trades_from_pnls([10, 20]))
        assert math.isinf(stats.profit_factor)
        assert stats.avg_loss == 0
        assert stats.largest_loss == 0
        assert stats.to_dict()["profit_factor"] is None
        assert stats.to_dict()["profit_factor_infinite"] is True

    def test_no_wins_gives_zero_profit_factor(self):
        stats = summary_stats(trades_from_pnls([-10, -20]))
        assert stats.profit_factor == 0
        assert stats.avg_win == 0
        assert stats.largest_win == 0
        assert stats.win_rate == 0

    def test_empty(self):
        stats = summary_stats([])
        assert stats.total_trades == 0
        assert stats.profit_factor == 0
        assert not any(math.isnan(v) for v in stats.to_dict().values() if isinstance(v, float))

    def test_long_short_counts(self):
        trades = [closed_trade(10, 0, TradeSide.BUY), closed_trade(-5, 1, TradeSide.SELL),
                  closed_trade(3, 2, TradeSide.SELL)]
        stats = summary_stats(trades)
        assert stats.long_trades == 1
        assert stats.short_trades == 2


class TestGroupBy:

    def test_missing_attribute_goes_to_unknown(self):
        trades = [closed_trade(10, 0, setup_name="Breakout"), closed_trade(-5, 1)]
        groups = by_setup(trades)
        assert set(groups) == {"Breakout", UNKNOWN_GROUP}
        assert groups[UNKNOWN_GROUP].count == 1

    def test_tags_contribute_to_every_bucket(self):
        trades = [closed_trade(10, 0, tags=["london", "trend"]), closed_trade(-4, 1, tags=["london"]),
                  closed_trade(2, 2)]
        groups = by_tag(trades)
        assert groups["london"].count == 2
        assert groups["london"].total_pnl == pytest.approx(6)
        assert groups["london"].win_rate == pytest.approx(50.0)
        assert groups["trend"].count == 1
        assert groups[UNKNOWN_GROUP].count == 1
        assert sum(g.count for g in groups.values()) == 4

    def test_sorted_by_pnl_then_key(self):
        trades = [closed_trade(10, 0, symbol="GBPUSD"), closed_trade(10, 1, symbol="AUDUSD"),
                  closed_trade(30, 2, symbol="USDJPY"), closed_trade(-5, 3, symbol="EURUSD")]
        keys = [k for k, _ in sorted_groups(by_symbol(trades))]
        assert keys == ["USDJPY", "AUDUSD", "GBPUSD", "EURUSD"]

    def test_day_of_week_names(self):
        groups = by_day_of_week(trades_from_pnls([10, 20, 30]))
        assert set(groups) == {"Monday", "Tuesday", "Wednesday"}

    def test_setup_average_rating_ignores_unrated(self):
        trades = [closed_trade(10, 0, setup_name="A", setup_rating=4),
                  closed_trade(10, 1, setup_name="A", setup_rating=2),
                  closed_trade(10, 2, setup_name="A", setup_rating=0)]
        stats = by_setup(trades)["A"]
        assert stats.avg_rating == pytest.approx(3.0)
        assert stats.to_dict()["avg_rating"] == 3.0

    def test_entry_reason_mistake_and_side(self):
        trades = [closed_trade(10, 0, psychology=Psychology(entry_reason=EntryReason.FOMO), mistakes=["chased"]),
                  closed_trade(-10, 1, side=TradeSide.SELL)]
        assert set(by_entry_reason(trades)) == {"fomo", UNKNOWN_GROUP}
        assert set(by_mistake(trades)) == {"chased", UNKNOWN_GROUP}
        assert set(by_side(trades)) == {"Buy", "Sell"}

    def test_open_trades_are_not_grouped(self):
        groups = group_by([TradeRecord(symbol="EURUSD")], lambda t: t.symbol)
        assert groups == {}

    def test_blank_key_is_unknown(self):
        groups = group_by([closed_trade(1, 0, symbol="  ")], lambda t: t.symbol)
        assert list(groups) == [UNKNOWN_GROUP]


class TestReportHelpers:

    def test_closed_trades_filters_and_sorts(self):
        later = closed_trade(5, 3)
        earlier = closed_trade(-5, 1)
        records = [later, TradeRecord(date=BASE_TIME), earlier]
        assert closed_trades(records) == [earlier, later]

    def test_filter_by_period(self):
        trades = trades_from_pnls([1, 2, 3, 4, 5])
        now = BASE_TIME + timedelta(days=4, hours=1)
        assert len(filter_by_period(trades, 2, now)) == 2
        assert len(filter_by_period(trades, 0, now)) == 5

    def test_mistake_frequency_sorted(self):
        trades = [closed_trade(1, 0, mistakes=["late", "oversized"]), closed_trade(1, 1, mistakes=["late"])]
        assert list(mistake_frequency(trades).items()) == [("late", 2), ("oversized", 1)]

    def test_daily_snapshot(self):
        day = BASE_TIME.date()
        records = [closed_trade(30, 0), closed_trade(-10, 0), TradeRecord(date=BASE_TIME),
                   closed_trade(99, 1)]
        snap = daily_snapshot(records, day)
        assert snap["pnl"] == 20
        assert snap["win_rate"] == 50.0
        assert snap["total_trades"] == 3
        assert snap["open_trades"] == 1

    def test_daily_snapshot_treats_missing_pnl_as_open(self):
        inconsistent = TradeRecord(date=BASE_TIME, status=TradeStatus.WIN)
        snap = daily_snapshot([closed_trade(30, 0), inconsistent], BASE_TIME.date())
        assert snap["pnl"] == 30
        assert snap["open_trades"] == 1

    def test_filter_by_period_with_aware_now(self):
        trades = trades_from_pnls([1, 2, 3])
        now = (BASE_TIME + timedelta(days=2, hours=1)).astimezone().astimezone(timezone.utc)
        assert len(filter_by_period(trades, 1, now)) == 1


class TestJournalAnalytics:

    def test_corrupt_record_does_not_blank_report(self, trade_repo: TradeRepository):
        for t in trades_from_pnls([50, -30, 20, -10, 40]):
            trade_repo.save(t)
        trade_repo._store.put({"id": "broken", "date": "not-a-date", "profit_or_loss": "x"})

        summary = JournalAnalytics(trade_repo).compute_summary(10_000)
        assert summary["total_trades"] == 5
        assert summary["net_profit"] == pytest.approx(70)
        assert summary["final_equity"] == pytest.approx(10_070)

    def test_full_analytics(self, trade_repo: TradeRepository):
        for t in trades_from_pnls([10, -5], tags=["a"]):
            trade_repo.save(t)
        report = JournalAnalytics(trade_repo).compute_full_analytics(1000)
        assert report["summary"]["total_trades"] == 2
        assert report["breakdowns"]["tag"][0]["key"] == "a"
        assert set(report["breakdowns"]) == {"setup", "symbol", "tag", "day_of_week",
                                             "entry_reason", "mistake", "side"}

    def test_stored_status_without_pnl_does_not_break_report(self, trade_repo: TradeRepository):
        good = closed_trade(40, 0)
        trade_repo.save(good)
        damaged = closed_trade(25, 0).to_dict()
        damaged["profit_or_loss"] = None
        trade_repo._store.put(damaged)

        report = JournalAnalytics(trade_repo).compute_full_analytics(1000)
        assert report["summary"]["total_trades"] == 1
        assert report["summary"]["net_profit"] == pytest.approx(40)
        snap = daily_snapshot(trade_repo.list_all(), BASE_TIME.date())
        assert snap["open_trades"] == 1

    def test_full_analytics_without_trades(self, trade_repo: TradeRepository):
        assert JournalAnalytics(trade_repo).compute_full_analytics(1000)["total_trades"] == 0

    def test_unknown_breakdown(self, trade_repo: TradeRepository):
        with pytest.raises(KeyError):
            JournalAnalytics(trade_repo).breakdown("weather")

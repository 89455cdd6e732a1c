"""
Position sizing — fixed-percent and anti-martingale risk
========================================================

current_risk_percent()  risk % for the next trade given settings and history
smart_entry()           position size + take-profit from entry/stop/risk
position_size()         stand-alone lot calculator

Every function returns None instead of a number it cannot compute, so a
zero stop distance or a missing price never leaks NaN/inf into a size.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Optional

from tradebook.journal.journal_models import (
    CONTRACT_MULTIPLIER, TradeRecord, TradeSide, TradeStatus, infer_side,
)
from tradebook.utils.config import get_settings
from tradebook.utils.logger import get_logger
from tradebook.utils.user_settings import RiskSettings, RiskStrategy

logger = get_logger(__name__)


@dataclass(frozen=True)
class SizingResult:
    position_size: float
    take_profit: float
    risk_amount: float
    risk_distance: float
    risk_percent: float

    def to_dict(self) -> dict:
        return {
            "position_size": round(self.position_size, 4),
            "take_profit": round(self.take_profit, 5),
            "risk_amount": round(self.risk_amount, 2),
            "risk_distance": round(self.risk_distance, 5),
            "risk_percent": self.risk_percent,
        }


def _positive(*values: Optional[float]) -> bool:
    for v in values:
        if v is None or isinstance(v, bool):
            return False
        try:
            v = float(v)
        except (TypeError, ValueError):
            return False
        if not math.isfinite(v) or v <= 0:
            return False
    return True


def win_streak(history: Iterable[TradeRecord]) -> int:
    """
    Consecutive wins counted back from the most recent closed trade.
    Breakeven and open trades are ignored; the first loss ends the streak.
    """
    decided = [t for t in history if t.status in (TradeStatus.WIN, TradeStatus.LOSS)]
    decided.sort(key=lambda t: t.date, reverse=True)
    streak = 0
    for trade in decided:
        if trade.status != TradeStatus.WIN:
            break
        streak += 1
    return streak


def anti_martingale_risk(streak: int, base_risk: float, increment: float, max_risk: float) -> float:
    return min(base_risk + max(streak, 0) * increment, max_risk)


def current_risk_percent(history: Iterable[TradeRecord], settings: RiskSettings) -> float:
    if settings.strategy == RiskStrategy.FIXED_PERCENT:
        return settings.fixed_percent.risk
    am = settings.anti_martingale
    return anti_martingale_risk(win_streak(history), am.base_risk, am.increment, am.max_risk)


def position_size(entry_price: Optional[float], stop_loss: Optional[float],
                  account_balance: Optional[float], risk_percent: Optional[float]) -> Optional[float]:
    """Lots risking ``risk_percent`` of the balance between entry and stop."""
    if not _positive(entry_price, stop_loss, account_balance, risk_percent):
        return None
    distance = abs(float(entry_price) - float(stop_loss))
    if distance == 0:
        return None
    size = account_balance * risk_percent / 100 / (distance * CONTRACT_MULTIPLIER)
    return size if math.isfinite(size) else None


def smart_entry(entry_price: Optional[float], stop_loss: Optional[float], side: Optional[TradeSide],
                account_balance: Optional[float], risk_percent: Optional[float],
                desired_rr: Optional[float]) -> Optional[SizingResult]:
    if side is None or not _positive(desired_rr):
        return None
    size = position_size(entry_price, stop_loss, account_balance, risk_percent)
    if size is None:
        return None
    distance = abs(entry_price - stop_loss)
    direction = 1 if side == TradeSide.BUY else -1
    take_profit = entry_price + direction * distance * desired_rr
    if take_profit <= 0:
        return None
    return SizingResult(
        position_size=size,
        take_profit=take_profit,
        risk_amount=account_balance * risk_percent / 100,
        risk_distance=distance,
        risk_percent=risk_percent,
    )


class RiskSizingEngine:
    """Sizing against a settings snapshot and a trade history snapshot."""

    def __init__(self, default_rr: Optional[float] = None) -> None:
        self._default_rr = default_rr or get_settings().default_reward_risk

    def current_risk_percent(self, history: Iterable[TradeRecord], settings: RiskSettings) -> float:
        return current_risk_percent(history, settings)

    def win_streak(self, history: Iterable[TradeRecord]) -> int:
        return win_streak(history)

    def smart_entry(self, entry_price, stop_loss, side, account_balance, risk_percent, desired_rr):
        return smart_entry(entry_price, stop_loss, side, account_balance, risk_percent, desired_rr)

    def position_size(self, entry_price, stop_loss, account_balance, risk_percent):
        return position_size(entry_price, stop_loss, account_balance, risk_percent)

    def suggest_entry(self, entry_price: Optional[float], stop_loss: Optional[float],
                      history: Iterable[TradeRecord], settings: RiskSettings,
                      side: Optional[TradeSide] = None,
                      desired_rr: Optional[float] = None) -> Optional[SizingResult]:
        """
        Size a new trade from settings and history. Side is inferred from the
        stop when not given; desired R:R falls back to the configured default.
        """
        side = side or infer_side(entry_price, stop_loss)
        risk_pct = self.current_risk_percent(history, settings)
        result = smart_entry(entry_price, stop_loss, side, settings.account_balance,
                             risk_pct, desired_rr or self._default_rr)
        if result is None:
            logger.debug("sizing_not_computable", entry_price=entry_price, stop_loss=stop_loss)
        return result

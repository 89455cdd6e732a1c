"""
Journal Data Models — trade records and trading setups
=======================================================

TradeInput    — what the trader types in (all prices optional)
TradeRecord   — a saved trade with derived outcome, P&L and R:R
TradingSetup  — a named playbook with checklist and entry presets

All models are dataclasses with to_dict()/from_dict() for keyed-store JSON storage.
Timestamps are naive local datetimes in memory and ISO-8601 strings on disk;
aware values are converted to local time on the way in. A stored status is
never trusted: it is re-derived from profit_or_loss on load.

P&L uses a fixed standard-lot multiplier (100 000 units) for every symbol.
That is an approximation for forex pairs and is not asset-aware.
"""

from __future__ import annotations
import math
import uuid
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List

from tradebook.utils.exceptions import CorruptRecordError


CONTRACT_MULTIPLIER = 100_000
BREAKEVEN_TOLERANCE = 0.01


# ── Enums ────────────────────────────────────────────────────

class TradeSide(str, Enum):
    BUY = "Buy"
    SELL = "Sell"


class TradeOutcome(str, Enum):
    TAKE_PROFIT = "TakeProfit"
    STOP_LOSS = "StopLoss"
    MANUAL_EXIT = "ManualExit"


class TradeStatus(str, Enum):
    WIN = "Win"
    LOSS = "Loss"
    BREAKEVEN = "Breakeven"


class EmotionBefore(str, Enum):
    CONFIDENT = "confident"
    ANXIOUS = "anxious"
    EXCITED = "excited"
    DISCIPLINED = "disciplined"


class EntryReason(str, Enum):
    TECHNICAL_SETUP = "technical_setup"
    NEWS = "news"
    TREND_FOLLOWING = "trend_following"
    FOMO = "fomo"
    REVENGE = "revenge"


class EmotionAfter(str, Enum):
    SATISFIED = "satisfied"
    REGRET = "regret"
    DOUBT = "doubt"
    EUPHORIC = "euphoric"


NUMERIC_FIELDS = (
    "entry_price", "stop_loss", "take_profit", "position_size",
    "manual_exit_price", "exit_price", "risk_reward_ratio", "profit_or_loss",
)


def _finite(value: Optional[float]) -> Optional[float]:
    """None for missing, NaN or infinite inputs; float otherwise."""
    if value is None:
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def _coerce_number(value: Any, name: str, record_id: str) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise CorruptRecordError(f"Field {name!r} is not numeric: {value!r}", record_id)
    if not math.isfinite(number):
        raise CorruptRecordError(f"Field {name!r} is not finite: {value!r}", record_id)
    return number


def local_naive(value: datetime) -> datetime:
    """Aware timestamps become naive local time; naive ones are already local."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def _parse_time(value: Any, name: str, record_id: str) -> datetime:
    if isinstance(value, datetime):
        return local_naive(value)
    try:
        return local_naive(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except (TypeError, ValueError):
        raise CorruptRecordError(f"Field {name!r} is not an ISO timestamp: {value!r}", record_id)


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# TRADE INPUT & RECORD
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass
class Psychology:
    """How the trader felt around the trade."""
    emotion_before: Optional[EmotionBefore] = None
    entry_reason: Optional[EntryReason] = None
    emotion_after: Optional[EmotionAfter] = None

    def to_dict(self) -> dict:
        return {
            "emotion_before": self.emotion_before.value if self.emotion_before else None,
            "entry_reason": self.entry_reason.value if self.entry_reason else None,
            "emotion_after": self.emotion_after.value if self.emotion_after else None,
        }

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> "Psychology":
        d = d or {}
        return cls(
            emotion_before=EmotionBefore(d["emotion_before"]) if d.get("emotion_before") else None,
            entry_reason=EntryReason(d["entry_reason"]) if d.get("entry_reason") else None,
            emotion_after=EmotionAfter(d["emotion_after"]) if d.get("emotion_after") else None,
        )


@dataclass
class TradeInput:
    """
    User-supplied trade fields. Every price is optional: a planned trade may
    have only an entry and a stop. Pass ``trade_id``/``created_at`` of an
    existing record to re-save (edit) it.
    """
    symbol: str = ""
    side: Optional[TradeSide] = None
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    position_size: Optional[float] = None
    outcome: TradeOutcome = TradeOutcome.MANUAL_EXIT
    manual_exit_price: Optional[float] = None
    date: Optional[datetime] = None
    setup_id: Optional[str] = None
    setup_name: Optional[str] = None
    setup_rating: int = 0
    tags: List[str] = field(default_factory=list)
    mistakes: List[str] = field(default_factory=list)
    psychology: Psychology = field(default_factory=Psychology)
    notes_before: str = ""
    notes_after: str = ""
    image_url: Optional[str] = None
    trade_id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class TradeRecord:
    """
    A saved journal trade. Derived fields (exit_price, risk_reward_ratio,
    profit_or_loss, status) are only ever produced by derive_fields().
    ``status`` and ``profit_or_loss`` are both None for an open trade.
    """
    # ── Identity ──
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=datetime.now)
    date: datetime = field(default_factory=datetime.now)

    # ── Inputs ──
    symbol: str = ""
    side: Optional[TradeSide] = None
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    position_size: Optional[float] = None
    outcome: TradeOutcome = TradeOutcome.MANUAL_EXIT
    manual_exit_price: Optional[float] = None
    setup_id: Optional[str] = None
    setup_name: Optional[str] = None
    setup_rating: int = 0
    tags: List[str] = field(default_factory=list)
    mistakes: List[str] = field(default_factory=list)
    psychology: Psychology = field(default_factory=Psychology)
    notes_before: str = ""
    notes_after: str = ""
    image_url: Optional[str] = None

    # ── Derived ──
    exit_price: Optional[float] = None
    risk_reward_ratio: Optional[float] = None
    profit_or_loss: Optional[float] = None
    status: Optional[TradeStatus] = None

    @property
    def is_closed(self) -> bool:
        return self.profit_or_loss is not None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["created_at"] = self.created_at.isoformat()
        d["date"] = self.date.isoformat()
        d["side"] = self.side.value if self.side else None
        d["outcome"] = self.outcome.value
        d["status"] = self.status.value if self.status else None
        d["psychology"] = self.psychology.to_dict()
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "TradeRecord":
        """Rebuild a stored record; numeric strings are coerced, garbage raises CorruptRecordError."""
        if not isinstance(d, dict) or not d.get("id"):
            raise CorruptRecordError("Trade record has no id")
        record_id = str(d["id"])
        try:
            numbers = {name: _coerce_number(d.get(name), name, record_id) for name in NUMERIC_FIELDS}
            return cls(
                id=record_id,
                created_at=_parse_time(d.get("created_at") or d.get("date"), "created_at", record_id),
                date=_parse_time(d.get("date") or d.get("created_at"), "date", record_id),
                symbol=d.get("symbol") or "",
                side=TradeSide(d["side"]) if d.get("side") else None,
                outcome=TradeOutcome(d.get("outcome") or TradeOutcome.MANUAL_EXIT.value),
                setup_id=d.get("setup_id"),
                setup_name=d.get("setup_name"),
                setup_rating=int(d.get("setup_rating") or 0),
                tags=list(d.get("tags") or []),
                mistakes=list(d.get("mistakes") or []),
                psychology=Psychology.from_dict(d.get("psychology")),
                notes_before=d.get("notes_before") or "",
                notes_after=d.get("notes_after") or "",
                image_url=d.get("image_url"),
                status=classify(numbers["profit_or_loss"]),
                **numbers,
            )
        except (ValueError, TypeError) as e:
            raise CorruptRecordError(f"Unreadable trade record: {e}", record_id)


def infer_side(entry_price: Optional[float], stop_loss: Optional[float]) -> Optional[TradeSide]:
    """A stop below entry means a long trade; otherwise short."""
    if entry_price is None or stop_loss is None:
        return None
    return TradeSide.BUY if entry_price > stop_loss else TradeSide.SELL


def risk_reward(entry_price: Optional[float], stop_loss: Optional[float],
                take_profit: Optional[float]) -> Optional[float]:
    if entry_price is None or stop_loss is None or take_profit is None:
        return None
    risk = abs(entry_price - stop_loss)
    if risk == 0:
        return None
    return abs(take_profit - entry_price) / risk


def classify(profit_or_loss: Optional[float]) -> Optional[TradeStatus]:
    if profit_or_loss is None:
        return None
    if abs(profit_or_loss) < BREAKEVEN_TOLERANCE:
        return TradeStatus.BREAKEVEN
    return TradeStatus.WIN if profit_or_loss > 0 else TradeStatus.LOSS


def derive_fields(data: TradeInput) -> TradeRecord:
    """
    Build a TradeRecord from user input, computing every derived field.

    Never raises on missing values: anything that cannot be computed stays None.
    """
    entry = _finite(data.entry_price)
    stop = _finite(data.stop_loss)
    target = _finite(data.take_profit)
    size = _finite(data.position_size)
    manual_exit = _finite(data.manual_exit_price)

    side = data.side or infer_side(entry, stop)

    if data.outcome == TradeOutcome.TAKE_PROFIT:
        exit_price = target
    elif data.outcome == TradeOutcome.STOP_LOSS:
        exit_price = stop
    else:
        exit_price = manual_exit

    pnl = None
    if exit_price is not None and entry is not None and size is not None and side is not None:
        direction = 1 if side == TradeSide.BUY else -1
        pnl = (exit_price - entry) * direction * size * CONTRACT_MULTIPLIER
        if not math.isfinite(pnl):
            pnl = None

    created_at = local_naive(data.created_at) if data.created_at else datetime.now()
    return TradeRecord(
        id=data.trade_id or _new_id(),
        created_at=created_at,
        date=local_naive(data.date) if data.date else created_at,
        symbol=(data.symbol or "").strip().upper(),
        side=side,
        entry_price=entry,
        stop_loss=stop,
        take_profit=target,
        position_size=size,
        outcome=data.outcome,
        manual_exit_price=manual_exit,
        setup_id=data.setup_id or None,
        setup_name=data.setup_name or None,
        setup_rating=max(0, min(5, int(data.setup_rating or 0))),
        tags=sorted(set(t.strip() for t in data.tags if t and t.strip())),
        mistakes=sorted(set(m.strip() for m in data.mistakes if m and m.strip())),
        psychology=data.psychology or Psychology(),
        notes_before=data.notes_before,
        notes_after=data.notes_after,
        image_url=data.image_url,
        exit_price=exit_price,
        risk_reward_ratio=risk_reward(entry, stop, target),
        profit_or_loss=pnl,
        status=classify(pnl),
    )


def to_input(record: TradeRecord) -> TradeInput:
    """The editable fields of a saved record, ready for a re-save."""
    return TradeInput(
        symbol=record.symbol,
        side=record.side,
        entry_price=record.entry_price,
        stop_loss=record.stop_loss,
        take_profit=record.take_profit,
        position_size=record.position_size,
        outcome=record.outcome,
        manual_exit_price=record.manual_exit_price,
        date=record.date,
        setup_id=record.setup_id,
        setup_name=record.setup_name,
        setup_rating=record.setup_rating,
        tags=list(record.tags),
        mistakes=list(record.mistakes),
        psychology=replace(record.psychology),
        notes_before=record.notes_before,
        notes_after=record.notes_after,
        image_url=record.image_url,
        trade_id=record.id,
        created_at=record.created_at,
    )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# TRADING SETUPS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass
class ChecklistItem:
    text: str = ""
    description: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "ChecklistItem":
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


@dataclass
class TradingSetup:
    """A named playbook. Only one setup may be active at a time."""
    name: str = ""
    description: str = ""
    category: str = ""
    checklist: List[ChecklistItem] = field(default_factory=list)
    is_active: bool = False
    default_risk_reward: Optional[float] = None
    default_tags: List[str] = field(default_factory=list)
    default_mistakes: List[str] = field(default_factory=list)
    id: str = field(default_factory=_new_id)

    def apply_defaults(self, data: TradeInput) -> TradeInput:
        """Link a trade input to this setup and pre-fill its tags and mistakes."""
        return replace(
            data,
            setup_id=self.id,
            setup_name=self.name,
            tags=list(self.default_tags) if self.default_tags else list(data.tags),
            mistakes=list(self.default_mistakes) if self.default_mistakes else list(data.mistakes),
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "TradingSetup":
        if not isinstance(d, dict) or not d.get("id"):
            raise CorruptRecordError("Setup record has no id")
        valid: Dict[str, Any] = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        try:
            valid["checklist"] = [ChecklistItem.from_dict(i) for i in valid.get("checklist") or []]
            valid["default_risk_reward"] = _coerce_number(
                valid.get("default_risk_reward"), "default_risk_reward", d["id"])
            valid["is_active"] = bool(valid.get("is_active"))
            return cls(**valid)
        except (TypeError, AttributeError) as e:
            raise CorruptRecordError(f"Unreadable setup record: {e}", d["id"])

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from tradebook.alerts.alert_models import AlertCondition, AlertStatus
from tradebook.alerts.scheduler import PollingScheduler
from tradebook.api.service import JournalService
from tradebook.journal.journal_models import (
    ChecklistItem,
    EmotionAfter,
    EmotionBefore,
    EntryReason,
    Psychology,
    TradeInput,
    TradeOutcome,
    TradeSide,
    TradingSetup,
)
from tradebook.utils.config import get_settings
from tradebook.utils.exceptions import ErrorCategory, TradebookError
from tradebook.utils.logger import get_logger

logger = get_logger(__name__)

_scheduler: Optional[PollingScheduler] = None


def get_scheduler() -> PollingScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = get_service().create_scheduler()
    return _scheduler


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if get_settings().alert_scheduler_autostart:
        await get_scheduler().start()
    yield
    if _scheduler is not None:
        await _scheduler.stop()


app = FastAPI(title="Tradebook", version="1.0", lifespan=lifespan)

_STATUS_BY_CATEGORY = {
    ErrorCategory.VALIDATION: 422,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.STORE: 503,
    ErrorCategory.DATA: 500,
    ErrorCategory.FEED: 503,
    ErrorCategory.SYSTEM: 500,
}


def get_service() -> JournalService:
    return JournalService.get_instance()


@app.exception_handler(TradebookError)
async def tradebook_error_handler(request: Request, exc: TradebookError) -> JSONResponse:
    status = _STATUS_BY_CATEGORY.get(exc.category, 500)
    if status >= 500:
        logger.error("request_failed", path=request.url.path, error=str(exc))
    return JSONResponse({"error": exc.message, "category": exc.category.value}, status_code=status)


# ── Request bodies ─────────────────────────────────────────

class PsychologyBody(BaseModel):
    emotion_before: Optional[EmotionBefore] = None
    entry_reason: Optional[EntryReason] = None
    emotion_after: Optional[EmotionAfter] = None


class TradeBody(BaseModel):
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
    setup_rating: int = Field(default=0, ge=0, le=5)
    tags: list[str] = Field(default_factory=list)
    mistakes: list[str] = Field(default_factory=list)
    psychology: PsychologyBody = Field(default_factory=PsychologyBody)
    notes_before: str = ""
    notes_after: str = ""
    image_url: Optional[str] = None

    def to_input(self, trade_id: Optional[str] = None) -> TradeInput:
        fields = self.model_dump(exclude={"psychology"})
        return TradeInput(
            psychology=Psychology(**self.psychology.model_dump()),
            trade_id=trade_id,
            **fields,
        )


class SetupBody(BaseModel):
    name: str
    description: str = ""
    category: str = ""
    checklist: list[str] = Field(default_factory=list)
    is_active: bool = False
    default_risk_reward: Optional[float] = Field(default=None, gt=0)
    default_tags: list[str] = Field(default_factory=list)
    default_mistakes: list[str] = Field(default_factory=list)

    def to_setup(self, setup_id: Optional[str] = None) -> TradingSetup:
        fields = self.model_dump(exclude={"checklist"})
        setup = TradingSetup(checklist=[ChecklistItem(text=t) for t in self.checklist], **fields)
        if setup_id:
            setup.id = setup_id
        return setup


class PriceAlertBody(BaseModel):
    symbol: str
    condition: AlertCondition
    target_price: float


class NewsAlertBody(BaseModel):
    news_id: str
    news_title: str = ""
    event_time: datetime
    trigger_before_minutes: float


class EventAlertBody(BaseModel):
    event_id: str
    trigger_before_minutes: float


class SizingBody(BaseModel):
    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    side: Optional[TradeSide] = None
    desired_rr: Optional[float] = None
    setup_id: Optional[str] = None


class PriceUpdateBody(BaseModel):
    symbol: str
    price: float


# ── Journal ────────────────────────────────────────────────

@app.get("/api/trades")
async def list_trades(symbol: str = "", limit: int = 0) -> list[dict[str, Any]]:
    return [t.to_dict() for t in get_service().list_trades(symbol, limit)]


@app.post("/api/trades")
async def create_trade(body: TradeBody) -> dict[str, Any]:
    return get_service().save_trade(body.to_input()).to_dict()


@app.get("/api/trades/{trade_id}")
async def get_trade(trade_id: str) -> dict[str, Any]:
    return get_service().get_trade(trade_id).to_dict()


@app.put("/api/trades/{trade_id}")
async def update_trade(trade_id: str, body: TradeBody) -> dict[str, Any]:
    svc = get_service()
    svc.get_trade(trade_id)
    return svc.save_trade(body.to_input(trade_id)).to_dict()


@app.delete("/api/trades/{trade_id}")
async def delete_trade(trade_id: str) -> dict[str, Any]:
    if not get_service().delete_trade(trade_id):
        raise HTTPException(404, "Trade not found")
    return {"deleted": trade_id}


@app.get("/api/tags")
async def tags() -> list[str]:
    return get_service().all_tags()


# ── Reports ────────────────────────────────────────────────

@app.get("/api/reports/summary")
async def summary(days: int = 0) -> dict[str, Any]:
    return get_service().compute_summary(days)


@app.get("/api/reports/equity-curve")
async def equity_curve(days: int = 0) -> list[dict[str, Any]]:
    return get_service().compute_equity_curve(days).to_list()


@app.get("/api/reports/breakdown/{name}")
async def breakdown(name: str, days: int = 0) -> list[dict[str, Any]]:
    return get_service().compute_breakdown(name, days)


@app.get("/api/reports/mistakes")
async def mistakes(days: int = 0) -> dict[str, int]:
    return get_service().compute_mistake_frequency(days)


@app.get("/api/reports/today")
async def today() -> dict[str, Any]:
    return get_service().compute_daily_snapshot()


@app.get("/api/reports/full")
async def full_report(days: int = 0) -> dict[str, Any]:
    return get_service().compute_full_analytics(days)


# ── Setups ─────────────────────────────────────────────────

@app.get("/api/setups")
async def list_setups() -> list[dict[str, Any]]:
    return [s.to_dict() for s in get_service().list_setups()]


@app.post("/api/setups")
async def create_setup(body: SetupBody) -> dict[str, Any]:
    return get_service().save_setup(body.to_setup()).to_dict()


@app.post("/api/setups/{setup_id}/activate")
async def activate_setup(setup_id: str) -> dict[str, Any]:
    return get_service().activate_setup(setup_id).to_dict()


@app.delete("/api/setups/{setup_id}")
async def delete_setup(setup_id: str) -> dict[str, Any]:
    if not get_service().delete_setup(setup_id):
        raise HTTPException(404, "Setup not found")
    return {"deleted": setup_id}


# ── Settings & sizing ──────────────────────────────────────

@app.get("/api/settings")
async def user_settings() -> dict[str, Any]:
    return get_service().get_user_settings().model_dump(mode="json")


@app.post("/api/settings")
async def update_user_settings(request: Request) -> dict[str, Any]:
    body = await request.json()
    if not isinstance(body, dict):
        raise HTTPException(422, "Settings body must be an object")
    return get_service().update_user_settings(body).model_dump(mode="json")


@app.post("/api/sizing")
async def sizing(body: SizingBody) -> dict[str, Any]:
    svc = get_service()
    result = svc.suggest_entry(body.entry_price, body.stop_loss, body.side, body.desired_rr, body.setup_id)
    return {
        "risk_percent": svc.current_risk_percent(),
        "result": result.to_dict() if result else None,
    }


# ── Alerts ─────────────────────────────────────────────────

@app.get("/api/alerts")
async def list_alerts(status: Optional[AlertStatus] = None) -> list[dict[str, Any]]:
    return [a.to_dict() for a in get_service().list_alerts(status)]


@app.post("/api/alerts/price")
async def create_price_alert(body: PriceAlertBody) -> dict[str, Any]:
    return get_service().create_price_alert(body.symbol, body.condition, body.target_price).to_dict()


@app.post("/api/alerts/news")
async def create_news_alert(body: NewsAlertBody) -> dict[str, Any]:
    alert = get_service().create_news_alert(
        body.news_id, body.news_title, body.event_time, body.trigger_before_minutes
    )
    return alert.to_dict()


@app.post("/api/alerts/from-event")
async def create_alert_for_event(body: EventAlertBody) -> dict[str, Any]:
    return get_service().create_alert_for_event(body.event_id, body.trigger_before_minutes).to_dict()


@app.delete("/api/alerts/{alert_id}")
async def delete_alert(alert_id: str) -> dict[str, Any]:
    if not get_service().delete_alert(alert_id):
        raise HTTPException(404, "Alert not found")
    return {"deleted": alert_id}


@app.get("/api/calendar")
async def calendar() -> list[dict[str, Any]]:
    return [
        {"id": e.id, "title": e.title, "scheduled_time": e.scheduled_time.isoformat()}
        for e in get_service().upcoming_events()
    ]


@app.post("/api/prices")
async def push_price(body: PriceUpdateBody) -> dict[str, Any]:
    feed = get_service().price_feed
    if not hasattr(feed, "set_price"):
        raise HTTPException(409, "Price feed does not accept pushed prices")
    feed.set_price(body.symbol, body.price)
    return {"symbol": body.symbol.upper(), "price": body.price}


# ── Alert scheduler ────────────────────────────────────────

@app.get("/api/alerts/scheduler")
async def scheduler_status() -> dict[str, Any]:
    scheduler = get_scheduler()
    return {
        "running": scheduler.is_running,
        "interval": scheduler.interval,
        "ticks": scheduler.tick_count,
        "last_report": scheduler.last_report.to_dict() if scheduler.last_report else None,
        "last_error": scheduler.last_error,
    }


@app.post("/api/alerts/scheduler/start")
async def scheduler_start() -> dict[str, Any]:
    await get_scheduler().start()
    return {"running": True}


@app.post("/api/alerts/scheduler/stop")
async def scheduler_stop() -> dict[str, Any]:
    await get_scheduler().stop()
    return {"running": False}


@app.post("/api/alerts/tick")
async def alert_tick() -> dict[str, Any]:
    report = await get_scheduler().run_once()
    if report is None:
        return {"skipped": True}
    return report.to_dict()

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class AlertStatus(str, Enum):
    ACTIVE = "active"
    TRIGGERED = "triggered"


class AlertCondition(str, Enum):
    CROSSES_ABOVE = "crosses_above"
    CROSSES_BELOW = "crosses_below"


def _alert_id() -> str:
    return uuid.uuid4().hex[:16]


class AlertBase(BaseModel):
    id: str = Field(default_factory=_alert_id)
    status: AlertStatus = AlertStatus.ACTIVE
    created_at: datetime = Field(default_factory=datetime.now)
    triggered_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == AlertStatus.ACTIVE

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")


class PriceAlert(AlertBase):
    type: Literal["price"] = "price"
    symbol: str
    condition: AlertCondition
    target_price: float = Field(gt=0)

    @field_validator("symbol")
    @classmethod
    def _normalise_symbol(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol must not be empty")
        return v

    def is_met(self, price: float) -> bool:
        if self.condition == AlertCondition.CROSSES_ABOVE:
            return price >= self.target_price
        return price <= self.target_price

    def describe(self, price: float) -> str:
        direction = "above" if self.condition == AlertCondition.CROSSES_ABOVE else "below"
        return f"{self.symbol} crossed {direction} {self.target_price} (last {price})"


class NewsAlert(AlertBase):
    type: Literal["news"] = "news"
    news_id: str
    news_title: str = ""
    event_time: datetime
    trigger_before_minutes: float = Field(gt=0)

    def minutes_until(self, now: datetime) -> float:
        event_time = self.event_time
        # naive timestamps are local time
        if event_time.tzinfo is not None and now.tzinfo is None:
            now = now.astimezone()
        elif event_time.tzinfo is None and now.tzinfo is not None:
            event_time = event_time.astimezone()
        return (event_time - now).total_seconds() / 60

    def is_due(self, now: datetime) -> bool:
        """
        Inside the (0, trigger_before_minutes] window before the event.
        Once the event time has passed the alert is never due again.
        """
        minutes = self.minutes_until(now)
        return 0 < minutes <= self.trigger_before_minutes

    def describe(self, now: datetime) -> str:
        return f"{self.news_title or self.news_id} in {self.minutes_until(now):.0f} min"


Alert = Annotated[Union[PriceAlert, NewsAlert], Field(discriminator="type")]

_alert_adapter: TypeAdapter = TypeAdapter(Alert)


def parse_alert(data: dict) -> Union[PriceAlert, NewsAlert]:
    """Build the concrete alert from a stored dict. Raises pydantic.ValidationError."""
    return _alert_adapter.validate_python(data)

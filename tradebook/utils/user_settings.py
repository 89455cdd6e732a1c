from __future__ import annotations

import abc
import json
import os
import threading
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from tradebook.utils.config import get_settings
from tradebook.utils.logger import get_logger

logger = get_logger(__name__)


class RiskStrategy(str, Enum):
    FIXED_PERCENT = "fixed_percent"
    ANTI_MARTINGALE = "anti_martingale"


class FixedPercentSettings(BaseModel):
    risk: float = Field(default=1.0, gt=0)


class AntiMartingaleSettings(BaseModel):
    base_risk: float = Field(default=1.0, gt=0)
    increment: float = Field(default=0.5, ge=0)
    max_risk: float = Field(default=4.0, gt=0)


class RiskSettings(BaseModel):
    account_balance: float = Field(default=10000.0, gt=0)
    strategy: RiskStrategy = RiskStrategy.FIXED_PERCENT
    fixed_percent: FixedPercentSettings = Field(default_factory=FixedPercentSettings)
    anti_martingale: AntiMartingaleSettings = Field(default_factory=AntiMartingaleSettings)


class NotificationSettings(BaseModel):
    global_enable: bool = True
    price_alerts: bool = True
    news_alerts: bool = True


class SettingsSnapshot(BaseModel):
    """Risk and notification settings as read at one instant."""
    risk: RiskSettings = Field(default_factory=RiskSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)

    model_config = {"frozen": True}


def default_snapshot() -> SettingsSnapshot:
    """Defaults from the process config (env / .env)."""
    s = get_settings()
    return SettingsSnapshot(
        risk=RiskSettings(
            account_balance=s.default_account_balance,
            fixed_percent=FixedPercentSettings(risk=s.default_fixed_risk_pct),
            anti_martingale=AntiMartingaleSettings(
                base_risk=s.default_base_risk_pct,
                increment=s.default_risk_increment_pct,
                max_risk=s.default_max_risk_pct,
            ),
        ),
    )


class SettingsProvider(abc.ABC):
    @abc.abstractmethod
    def snapshot(self) -> SettingsSnapshot:
        pass

    @abc.abstractmethod
    def save(self, snapshot: SettingsSnapshot) -> SettingsSnapshot:
        pass


class InMemorySettingsProvider(SettingsProvider):
    def __init__(self, snapshot: Optional[SettingsSnapshot] = None) -> None:
        self._snapshot = snapshot or SettingsSnapshot()

    def snapshot(self) -> SettingsSnapshot:
        return self._snapshot

    def save(self, snapshot: SettingsSnapshot) -> SettingsSnapshot:
        self._snapshot = snapshot
        return snapshot


class JsonFileSettingsProvider(SettingsProvider):
    """
    Settings kept in a JSON file.

    The file is read on every snapshot() so edits made by another process
    apply at the next alert tick. A missing or unreadable file yields the
    defaults.
    """

    def __init__(self, path: Optional[str] = None) -> None:
        self._path = path or get_settings().settings_file
        self._lock = threading.Lock()

    @property
    def path(self) -> str:
        return self._path

    def snapshot(self) -> SettingsSnapshot:
        if not os.path.exists(self._path):
            return default_snapshot()
        try:
            with open(self._path, "r") as f:
                data = json.load(f)
            return SettingsSnapshot.model_validate(data)
        except (OSError, ValueError, PydanticValidationError) as e:
            logger.error("settings_load_failed", path=self._path, error=str(e))
            return default_snapshot()

    def save(self, snapshot: SettingsSnapshot) -> SettingsSnapshot:
        os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
        tmp_path = f"{self._path}.tmp"
        with self._lock:
            with open(tmp_path, "w") as f:
                json.dump(snapshot.model_dump(mode="json"), f, indent=2)
            os.replace(tmp_path, self._path)
        logger.info("settings_saved", path=self._path, strategy=snapshot.risk.strategy.value)
        return snapshot

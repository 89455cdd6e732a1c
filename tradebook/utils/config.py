from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    db_path: str = Field(default="data/tradebook.db", description="SQLite keyed store path")
    settings_file: str = Field(default="data/settings.json", description="Risk / notification settings file")

    alert_poll_interval: float = Field(default=5.0, description="Seconds between alert engine ticks")
    alert_scheduler_autostart: bool = Field(default=True, description="Start the alert scheduler with the HTTP app")

    default_account_balance: float = Field(default=10000.0, description="Account balance when no settings saved")
    default_fixed_risk_pct: float = Field(default=1.0, description="Fixed-percent risk per trade")
    default_base_risk_pct: float = Field(default=1.0, description="Anti-martingale base risk")
    default_risk_increment_pct: float = Field(default=0.5, description="Anti-martingale increment per win")
    default_max_risk_pct: float = Field(default=4.0, description="Anti-martingale risk ceiling")
    default_reward_risk: float = Field(default=2.0, description="Desired R:R when none is given")

    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/tradebook.log", description="Log file path")
    log_format: str = Field(default="json", description="json | console")

    http_host: str = Field(default="0.0.0.0", description="HTTP bind host")
    http_port: int = Field(default=5000, description="HTTP bind port")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "TRADEBOOK_", "extra": "ignore"}


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    global _settings
    _settings = Settings()
    return _settings

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from tradebook.utils.config import get_settings, reload_settings
from tradebook.utils.user_settings import (
    InMemorySettingsProvider,
    JsonFileSettingsProvider,
    NotificationSettings,
    RiskSettings,
    RiskStrategy,
    SettingsSnapshot,
)


class TestRiskSettings:

    def test_defaults(self):
        risk = RiskSettings()
        assert risk.account_balance == 10_000
        assert risk.strategy == RiskStrategy.FIXED_PERCENT
        assert risk.fixed_percent.risk == 1.0
        assert risk.anti_martingale.base_risk == 1.0
        assert risk.anti_martingale.increment == 0.5
        assert risk.anti_martingale.max_risk == 4.0

    def test_balance_must_be_positive(self):
        with pytest.raises(ValidationError):
            RiskSettings(account_balance=0)

    def test_snapshot_is_frozen(self):
        snap = SettingsSnapshot()
        with pytest.raises(ValidationError):
            snap.risk = RiskSettings(account_balance=5)


class TestJsonFileSettingsProvider:

    def test_missing_file_uses_config_defaults(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TRADEBOOK_DEFAULT_ACCOUNT_BALANCE", "25000")
        reload_settings()
        provider = JsonFileSettingsProvider(str(tmp_path / "nope.json"))
        assert provider.snapshot().risk.account_balance == 25_000

    def test_save_then_snapshot(self, tmp_path):
        provider = JsonFileSettingsProvider(str(tmp_path / "s" / "settings.json"))
        snap = SettingsSnapshot(
            risk=RiskSettings(account_balance=5000, strategy=RiskStrategy.ANTI_MARTINGALE),
            notifications=NotificationSettings(news_alerts=False),
        )
        provider.save(snap)
        assert provider.snapshot() == snap

    def test_reads_external_edits_each_time(self, tmp_path):
        path = tmp_path / "settings.json"
        provider = JsonFileSettingsProvider(str(path))
        provider.save(SettingsSnapshot())
        assert provider.snapshot().notifications.global_enable is True

        path.write_text(json.dumps({"notifications": {"global_enable": False}}))
        assert provider.snapshot().notifications.global_enable is False

    def test_unreadable_file_falls_back(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{broken")
        assert JsonFileSettingsProvider(str(path)).snapshot() == SettingsSnapshot()

    def test_invalid_values_fall_back(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"risk": {"account_balance": -1}}))
        assert JsonFileSettingsProvider(str(path)).snapshot().risk.account_balance == 10_000

    def test_default_path_from_config(self):
        assert JsonFileSettingsProvider().path == get_settings().settings_file


def test_in_memory_provider():
    provider = InMemorySettingsProvider()
    new = SettingsSnapshot(notifications=NotificationSettings(price_alerts=False))
    provider.save(new)
    assert provider.snapshot().notifications.price_alerts is False

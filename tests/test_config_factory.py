"""
test_config_factory.py — Settings loading and lifecycle wiring.

Run with:
    pytest tests/test_config_factory.py -v
"""

from __future__ import annotations

import pytest

from sosguard.app.core.config import Settings
from sosguard.app.sos.factory import build_lifecycle_manager, build_notifier
from sosguard.app.sos.notifier import CompositeNotifier, LoggingNotifier, WebhookNotifier
from sosguard.app.sos.store import InMemoryAlertStore


class TestSettings:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("GRACE_PERIOD_SECONDS", raising=False)
        cfg = Settings(_env_file=None)
        assert cfg.GRACE_PERIOD_SECONDS == 30.0
        assert cfg.ESCALATION_WEBHOOK_URL is None
        assert cfg.DATABASE_URL.startswith("sqlite+aiosqlite")

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("GRACE_PERIOD_SECONDS", "5")
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("ESCALATION_WEBHOOK_URL", "https://monitor.example/hooks/sos")
        cfg = Settings(_env_file=None)
        assert cfg.GRACE_PERIOD_SECONDS == 5.0
        assert cfg.is_production
        assert cfg.ESCALATION_WEBHOOK_URL == "https://monitor.example/hooks/sos"


class TestFactory:

    def test_log_only_without_webhook(self):
        notifier = build_notifier(Settings(_env_file=None, ESCALATION_WEBHOOK_URL=None))
        assert isinstance(notifier, LoggingNotifier)

    def test_webhook_added_when_configured(self):
        cfg = Settings(
            _env_file=None,
            ESCALATION_WEBHOOK_URL="https://monitor.example/hooks/sos",
            ESCALATION_WEBHOOK_TIMEOUT=2.5,
        )
        notifier = build_notifier(cfg)
        assert isinstance(notifier, CompositeNotifier)
        webhook = notifier.notifiers[1]
        assert isinstance(webhook, WebhookNotifier)
        assert webhook.timeout_seconds == 2.5

    def test_in_memory_manager_uses_configured_grace(self):
        cfg = Settings(_env_file=None, GRACE_PERIOD_SECONDS=12.0)
        manager = build_lifecycle_manager(cfg, in_memory=True)
        assert isinstance(manager.store, InMemoryAlertStore)
        assert manager.grace_period_seconds == 12.0

    def test_negative_grace_rejected(self):
        with pytest.raises(ValueError):
            build_lifecycle_manager(
                Settings(_env_file=None, GRACE_PERIOD_SECONDS=-1.0), in_memory=True,
            )

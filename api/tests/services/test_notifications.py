"""
Tests for notification messages and delivery fan-out.

Run with:
    pytest api/tests/services/test_notifications.py -v
"""
from decimal import Decimal

import requests

from fintrack.core.config import settings
from fintrack.services import notifications, whatsapp
from fintrack.services.notifications import (
    NotificationService,
    confirmation_message,
    processed_message,
)


# ── message text ─────────────────────────────────────────────────────────────

class TestMessages:
    def test_single_processed(self):
        assert processed_message(1, Decimal("1500")) == (
            "*1 Recurring Transaction Processed*\nTotal amount: $1,500.00"
        )

    def test_several_processed(self):
        assert processed_message(3, Decimal("25000.5")).startswith("*3 Recurring Transactions Processed*")
        assert processed_message(3, Decimal("25000.5")).endswith("$25,000.50")

    def test_zero_total(self):
        assert processed_message(2, Decimal("0")).endswith("Total amount: $0")

    def test_confirmation(self):
        assert confirmation_message(2, Decimal("750")) == (
            "*Recurring Transactions Ready*\n"
            "2 transaction(s) ready to process ($750.00)\n"
            "Review & process them in the app."
        )


# ── delivery ─────────────────────────────────────────────────────────────────

class TestNotificationService:
    def test_no_phones_only_logs(self, monkeypatch, caplog):
        sent = []
        monkeypatch.setattr(notifications, "broadcast", lambda to, msg: sent.append((to, msg)))

        with caplog.at_level("INFO", logger="fintrack.services.notifications"):
            NotificationService(phones=[]).notify_summary(1, Decimal("10"))

        assert sent == []
        assert "1 Recurring Transaction Processed" in caplog.text

    def test_fans_out_to_every_phone(self, monkeypatch):
        sent = []
        monkeypatch.setattr(notifications, "broadcast", lambda to, msg: sent.append((to, msg)))

        NotificationService(phones=["+15550001", "+15550002"]).notify_confirmation_needed(1, Decimal("99"))

        [(to, msg)] = sent
        assert to == ["+15550001", "+15550002"]
        assert msg.startswith("*Recurring Transactions Ready*")


class TestWhatsApp:
    def test_disabled_sends_nothing(self, monkeypatch):
        calls = []
        monkeypatch.setattr(settings, "whatsapp_enabled", False)
        monkeypatch.setattr(requests, "post", lambda *a, **kw: calls.append(a))
        assert whatsapp.send_whatsapp("+15550001", "hi") is False
        assert calls == []

    def test_request_failure_is_swallowed(self, monkeypatch):
        def refuse(*args, **kwargs):
            raise requests.ConnectionError("bot offline")

        monkeypatch.setattr(settings, "whatsapp_enabled", True)
        monkeypatch.setattr(requests, "post", refuse)
        assert whatsapp.send_whatsapp("+15550001", "hi") is False
        assert whatsapp.broadcast(["+15550001", "", "+15550002"], "hi") == 0

    def test_broadcast_sends_once_per_recipient(self, monkeypatch):
        class Ok:
            status_code = 200
            text = ""

        posted = []
        monkeypatch.setattr(settings, "whatsapp_enabled", True)
        monkeypatch.setattr(requests, "post", lambda url, json, timeout: posted.append(json["to"]) or Ok())

        assert whatsapp.broadcast(["+15550001", " +15550001 ", "+15550002", ""], "hi") == 2
        assert posted == ["+15550001", "+15550002"]

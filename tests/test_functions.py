"""Tests for the HTTP entry points when configuration cannot be read."""

import importlib.util
from pathlib import Path

import serve

from tests.conftest import FakeHandler

PROJECT_ROOT = Path(__file__).parent.parent
CHECKOUT_BODY = b'{"price_id": "price_1", "creator_slug": "jane"}'


def _load_checkout_function():
    spec = importlib.util.spec_from_file_location(
        "checkout_function", PROJECT_ROOT / "api" / "checkout.py"
    )
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestCheckoutFunction:
    def test_bad_environment_answers_500(self, monkeypatch, caplog):
        monkeypatch.setenv("PERSONACORE_PERIOD_DAYS", "thirty")
        module = _load_checkout_function()
        assert module.SETTINGS is None
        assert "Invalid checkout configuration" in caplog.text

        handler = FakeHandler(CHECKOUT_BODY)
        module.handler.do_POST(handler)
        assert handler.status == 500
        assert handler.json() == {"error": "Service configuration error"}

    def test_missing_stripe_key_answers_500(self, monkeypatch):
        monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
        module = _load_checkout_function()

        handler = FakeHandler(CHECKOUT_BODY)
        module.handler.do_POST(handler)
        assert handler.status == 500


class TestDevServer:
    def test_webhook_without_settings_answers_500(self, monkeypatch):
        monkeypatch.setattr(serve, "SETTINGS", None)
        handler = FakeHandler(b"{}")
        serve.FunctionsHandler._handle_webhook(handler)
        assert handler.status == 500
        assert handler.json() == {"error": "Service configuration error"}

    def test_checkout_without_settings_answers_500(self, monkeypatch):
        monkeypatch.setattr(serve, "SETTINGS", None)
        handler = FakeHandler(CHECKOUT_BODY)
        serve.FunctionsHandler._handle_checkout(handler)
        assert handler.status == 500

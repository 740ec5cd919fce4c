"""Tests for logging setup and secret redaction."""

import logging

from commitcaster.core.logging import redact_secrets, setup_logging


def test_redacts_token_fields():
    event = {"event": "vault.stored", "access_token": "gho_abc", "refresh_token": None, "subject": "42"}
    out = redact_secrets(None, "info", event)
    assert out["access_token"] == "***"
    assert out["refresh_token"] is None
    assert out["subject"] == "42"


def test_setup_logging_levels():
    setup_logging(level="debug", fmt="json")
    assert logging.getLogger("commitcaster").level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING
    setup_logging(level="INFO")

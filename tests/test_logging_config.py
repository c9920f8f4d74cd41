import io
import json
import logging

import pytest
import structlog

from polygon_agent.logging_config import REDACTED, redact_secrets, setup_logging


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    structlog.reset_defaults()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_redact_secrets_masks_key_material():
    event = {"event": "stored", "private_key": "0xdead", "passphrase": "pw", "wallet": "main"}
    out = redact_secrets(None, "info", event)
    assert out["private_key"] == REDACTED
    assert out["passphrase"] == REDACTED
    assert out["wallet"] == "main"


def test_redact_secrets_leaves_missing_values_alone():
    out = redact_secrets(None, "info", {"event": "x", "secret": None})
    assert out["secret"] is None


def test_json_lines_at_info(restore_logging):
    stream = io.StringIO()
    setup_logging("INFO", stream=stream)

    structlog.get_logger("polygon_agent.test").info("wallet saved", wallet="main", ciphertext="abc")

    line = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert line["event"] == "wallet saved"
    assert line["wallet"] == "main"
    assert line["ciphertext"] == REDACTED
    assert line["level"] == "info"


def test_stdlib_loggers_routed_and_filtered(restore_logging):
    stream = io.StringIO()
    setup_logging("WARNING", stream=stream)

    logging.getLogger("polygon_agent.core").info("hidden")
    logging.getLogger("polygon_agent.core").warning("shown")

    output = stream.getvalue()
    assert "hidden" not in output
    assert "shown" in output
    assert logging.getLogger("httpx").level == logging.WARNING

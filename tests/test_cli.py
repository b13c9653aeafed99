"""Tests for CLI helpers and logging setup."""

import json
import logging
import sys

from treemirror.__main__ import JSONFormatter, build_transport, main, setup_logging
from treemirror.config import Config
from treemirror.transport import HTTPTransport


class TestJSONFormatter:
    """Tests for structured log output."""

    def test_format(self):
        record = logging.LogRecord(
            name="treemirror.consumer.store",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="Applied snapshot: %d nodes",
            args=(3,),
            exc_info=None,
        )

        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "treemirror.consumer.store"
        assert data["message"] == "Applied snapshot: 3 nodes"

    def test_exception_included(self):
        try:
            raise ValueError("bad")
        except ValueError:
            exc_info = sys.exc_info()

        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), exc_info)

        data = json.loads(JSONFormatter().format(record))

        assert data["error"] == "ValueError"
        assert "ValueError: bad" in data["traceback"]

    def test_role_tag(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "tick", (), None)

        tagged = json.loads(JSONFormatter(role="producer").format(record))
        untagged = json.loads(JSONFormatter().format(record))

        assert tagged["role"] == "producer"
        assert "role" not in untagged


class TestSetupLogging:
    """Tests for level selection."""

    def test_levels(self):
        assert setup_logging() == logging.INFO
        assert setup_logging(verbose=True) == logging.DEBUG
        assert setup_logging(verbose=True, log_level="warning") == logging.WARNING

    def test_quiets_http_client_logs(self):
        setup_logging(log_level="info")

        assert logging.getLogger("httpx").level == logging.WARNING


class TestBuildTransport:
    """Tests for producer transport selection."""

    def test_http_without_codec(self):
        transport = build_transport(Config())

        assert isinstance(transport, HTTPTransport)
        assert transport.codec is None

    def test_http_with_codec(self):
        config = Config()
        config.codec.enabled = True
        config.codec.level = 6

        transport = build_transport(config)

        assert transport.codec.level == 6


class TestMain:
    """Tests for argument handling."""

    def test_no_command_prints_help(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["treemirror"])

        assert main() == 1
        assert "usage" in capsys.readouterr().out

    def test_produce_missing_source(self, monkeypatch, tmp_path, capsys):
        monkeypatch.setattr(
            sys, "argv", ["treemirror", "produce", "--source", str(tmp_path / "none.json"), "--once"]
        )

        assert main() == 1
        assert "Source file not found" in capsys.readouterr().err

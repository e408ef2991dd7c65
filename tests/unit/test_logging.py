# ABOUTME: Unit tests for logging utilities
# ABOUTME: Tests correlation IDs, configure_logging, and AuditLogger class

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from gitops_mcp.utils.logging import (
    AuditLogger,
    add_correlation_id,
    configure_logging,
    correlation_id,
    get_correlation_id,
    set_correlation_id,
)


def read_entries(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text().splitlines()]


@pytest.mark.unit
class TestCorrelationId:
    """Tests for correlation ID generation and context management."""

    def test_generates_new_when_empty(self):
        """Test that an 8-character hex ID is generated when none exists."""
        correlation_id.set("")

        cid = get_correlation_id()

        assert len(cid) == 8
        int(cid, 16)

    def test_returns_existing(self):
        """Test that a set ID is returned unchanged."""
        set_correlation_id("req-42")

        assert get_correlation_id() == "req-42"

    def test_generated_id_is_kept(self):
        """Test that subsequent calls return the same generated ID."""
        correlation_id.set("")

        assert get_correlation_id() == get_correlation_id()

    def test_processor_adds_id(self):
        """Test the structlog processor stamps every event."""
        set_correlation_id("proc1234")

        result = add_correlation_id(MagicMock(), "info", {"event": "Committed path"})

        assert result == {"event": "Committed path", "correlation_id": "proc1234"}


@pytest.mark.unit
class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_console_output_to_stderr(self):
        """Test the default pipeline renders to stderr without colors."""
        with patch("gitops_mcp.utils.logging.structlog") as mock_structlog:
            configure_logging()

            mock_structlog.dev.ConsoleRenderer.assert_called_once_with(colors=False)
            mock_structlog.PrintLoggerFactory.assert_called_once_with(file=sys.stderr)
            mock_structlog.make_filtering_bound_logger.assert_called_once_with(logging.INFO)
            mock_structlog.configure.assert_called_once()

    def test_json_output(self):
        """Test JSON rendering replaces the console renderer."""
        with patch("gitops_mcp.utils.logging.structlog") as mock_structlog:
            configure_logging(level="DEBUG", json_output=True)

            mock_structlog.processors.JSONRenderer.assert_called_once()
            mock_structlog.dev.ConsoleRenderer.assert_not_called()
            mock_structlog.make_filtering_bound_logger.assert_called_once_with(logging.DEBUG)

    def test_processors_order(self):
        """Test the correlation id is added before rendering."""
        with patch("gitops_mcp.utils.logging.structlog") as mock_structlog:
            configure_logging(json_output=True)

            processors = mock_structlog.configure.call_args.kwargs["processors"]
            assert processors[0] is mock_structlog.contextvars.merge_contextvars
            assert processors[3] is add_correlation_id
            assert processors[-1] is mock_structlog.processors.JSONRenderer.return_value

    def test_unknown_level_falls_back_to_info(self):
        """Test an unknown level name does not break startup."""
        with patch("gitops_mcp.utils.logging.structlog") as mock_structlog:
            configure_logging(level="chatty")

            mock_structlog.make_filtering_bound_logger.assert_called_once_with(logging.INFO)


@pytest.mark.unit
class TestAuditLogger:
    """Tests for AuditLogger entries."""

    def test_log_to_file(self, tmp_path: Path):
        """Test entries are appended to the audit file as JSON lines."""
        log_file = tmp_path / "audit.log"
        set_correlation_id("req-7")
        audit = AuditLogger(log_file)

        audit.log_write(
            "create_artifact",
            "acme/infra:manifests/billing/deployment.yaml",
            details={"url": "https://github.com/acme/infra/blob/main/manifests/billing/deployment.yaml"},
        )
        audit.log_read("list_existing", "acme/infra:app")

        first, second = read_entries(log_file)
        assert first["action"] == "create_artifact"
        assert first["result"] == "success"
        assert first["correlation_id"] == "req-7"
        assert first["details"]["url"].endswith("deployment.yaml")
        assert second["action"] == "list_existing"
        assert "details" not in second

    def test_blocked_entry(self, tmp_path: Path):
        """Test blocked calls record the reason."""
        log_file = tmp_path / "audit.log"

        AuditLogger(log_file).log_blocked("set_token", "token", "Server is running in read-only mode")

        (entry,) = read_entries(log_file)
        assert entry["result"] == "blocked"
        assert entry["details"] == {"reason": "Server is running in read-only mode"}

    def test_error_entry(self, tmp_path: Path):
        """Test failed calls record the error text."""
        log_file = tmp_path / "audit.log"

        AuditLogger(log_file).log_error("create_artifact", "acme/infra:project", 'Project "shop" already exists')

        (entry,) = read_entries(log_file)
        assert entry["result"] == "error"
        assert entry["details"] == {"error": 'Project "shop" already exists'}

    def test_connect_existing_result(self, tmp_path: Path):
        """Test a custom result string is kept."""
        log_file = tmp_path / "audit.log"

        AuditLogger(log_file).log_write("connect_organization", "org=acme", "existing", {"repos": 2})

        (entry,) = read_entries(log_file)
        assert entry["result"] == "existing"

    def test_timestamp_is_utc_iso(self, tmp_path: Path):
        """Test timestamps are timezone-aware ISO strings."""
        log_file = tmp_path / "audit.log"

        AuditLogger(log_file).log_read("check_token", "token")

        (entry,) = read_entries(log_file)
        assert datetime.fromisoformat(entry["timestamp"]).utcoffset().total_seconds() == 0

    def test_log_through_structlog(self):
        """Test entries go to the audit logger when no file is set."""
        with patch("gitops_mcp.utils.logging.structlog") as mock_structlog:
            mock_logger = MagicMock()
            mock_structlog.get_logger.return_value = mock_logger

            AuditLogger().log_read("check_folder_exists", "acme/infra:manifests")

            mock_structlog.get_logger.assert_called_once_with("audit")
            mock_logger.info.assert_called_once_with(
                "audit",
                action="check_folder_exists",
                target="acme/infra:manifests",
                result="success",
                details=None,
            )

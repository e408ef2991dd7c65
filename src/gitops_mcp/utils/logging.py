# ABOUTME: Structured logging with correlation IDs for GitOps MCP Server
# ABOUTME: Configures structlog and records an audit trail of every tool call

"""
Structured logging, correlation IDs and the audit trail.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

1. configure_logging(): one structlog pipeline for the whole process
2. Correlation IDs: every log line from one tool call carries the same id
3. AuditLogger: one record per tool call (success, blocked or error)

=============================================================================
WHY STDERR?
=============================================================================

The MCP stdio transport speaks JSON-RPC over stdout. A single log line on
stdout would corrupt the stream the client is parsing, so every logger here
writes to stderr. The audit trail can go to its own file (MCP_AUDIT_LOG).

=============================================================================
CORRELATION IDs
=============================================================================

One create_artifact call can produce a dozen remote calls:

    {"correlation_id": "7", "event": "Making GitHub API request", "url": ".../manifests"}
    {"correlation_id": "7", "event": "Created directory", "path": "manifests"}
    {"correlation_id": "7", "event": "Committed path", "path": "manifests/billing/.keep"}
    {"correlation_id": "7", "event": "Created artifact", "domain": "app"}
    {"correlation_id": "7", "event": "audit", "action": "create_artifact"}

Each tool sets the id from the MCP request id before doing anything else.
The id lives in a ContextVar, so concurrent tool calls never see each
other's id.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from pathlib import Path


# =============================================================================
# CORRELATION ID MANAGEMENT
# =============================================================================

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """
    Current correlation ID, generating one when none was set.

    Code running outside a tool call (startup, lifespan) still gets a
    short random id so its lines can be grouped.
    """
    cid = correlation_id.get()
    if not cid:
        cid = uuid.uuid4().hex[:8]
        correlation_id.set(cid)
    return cid


def set_correlation_id(cid: str) -> None:
    """Set correlation ID for the current context ("" means generate on next use)."""
    correlation_id.set(cid)


def add_correlation_id(
    logger: structlog.types.WrappedLogger,  # noqa: ARG001 - Required by structlog Processor API
    method_name: str,  # noqa: ARG001 - Required by structlog Processor API
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Structlog processor adding correlation_id to every event."""
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure structured logging. Call once at startup.

    Pipeline: contextvars merge -> level -> ISO timestamp -> correlation id
    -> JSON or console renderer, printed to stderr.

    Args:
        level: "DEBUG", "INFO", "WARNING", "ERROR" or "CRITICAL"
        json_output: JSON lines for log shippers instead of console output
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_correlation_id,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        # No colors: stderr is usually captured by the MCP client, not a tty
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# =============================================================================
# AUDIT LOGGER
# =============================================================================


class AuditLogger:
    """
    Audit trail of tool calls.

    Every entry records what was attempted against which repository and how
    it ended:

        {"timestamp": "2026-10-18T09:00:00+00:00", "correlation_id": "7",
         "action": "create_artifact", "target": "acme/infra:manifests/billing/deployment.yaml",
         "result": "success", "details": {"url": "https://github.com/..."}}

        {"timestamp": "...", "correlation_id": "8", "action": "create_artifact",
         "target": "acme/infra:projects/checkout.yaml", "result": "blocked",
         "details": {"reason": "Server is running in read-only mode"}}

    With a log_path, entries are appended to that file as JSON lines.
    Without one, they go through structlog under the "audit" logger.
    """

    def __init__(self, log_path: Path | None = None) -> None:
        self._log_path = log_path
        self._logger = structlog.get_logger("audit")

    def log(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Record one audit entry.

        Args:
            action: Tool name ("create_artifact", "set_token")
            target: What it touched ("acme/infra:cicd/build.groovy", "org=acme")
            result: "success", "blocked" or "error"
            details: Extra context (commit URL, block reason, error text)
        """
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "correlation_id": get_correlation_id(),
            "action": action,
            "target": target,
            "result": result,
        }
        if details:
            entry["details"] = details

        if self._log_path:
            with self._log_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\n")
        else:
            self._logger.info(
                "audit",
                action=action,
                target=target,
                result=result,
                details=details,
            )

    def log_read(self, action: str, target: str) -> None:
        self.log(action, target, "success")

    def log_write(
        self,
        action: str,
        target: str,
        result: str = "success",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Record a tool call that committed to GitHub or changed the connection cache."""
        self.log(action, target, result, details)

    def log_blocked(self, action: str, target: str, reason: str) -> None:
        """Record a call refused by the safety guard (read-only mode, rate limit)."""
        self.log(action, target, "blocked", {"reason": reason})

    def log_error(self, action: str, target: str, error: str) -> None:
        self.log(action, target, "error", {"error": error})

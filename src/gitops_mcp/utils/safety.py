# ABOUTME: Safety utilities for GitOps MCP Server
# ABOUTME: Read-only mode and per-tool rate limiting in front of every commit

"""Read-only guard and rate limiting for tool calls."""

from __future__ import annotations

import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from gitops_mcp.config import SecuritySettings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OperationBlocked:
    """Why a tool call was refused."""

    operation: str
    reason: str
    setting: str
    hint: str = ""

    def format_message(self) -> str:
        """Text returned to the agent in place of the tool result."""
        lines = [
            f"OPERATION BLOCKED: {self.operation}",
            f"Reason: {self.reason}",
            f"Setting: {self.setting}",
        ]
        if self.hint:
            lines.append(self.hint)
        return "\n".join(lines)


class RateLimiter:
    """
    Sliding-window call counter per key.

    Each key keeps the monotonic timestamps of its accepted calls, oldest
    first; timestamps that fall out of the window are dropped on the next
    check. Refused calls are not recorded.
    """

    def __init__(self, max_calls: int = 100, window_seconds: int = 60) -> None:
        self._max_calls = max_calls
        self._window = window_seconds
        self._calls: defaultdict[str, deque[float]] = defaultdict(deque)

    def check(self, key: str) -> bool:
        """Record a call for key; False when key is over its limit."""
        now = time.monotonic()
        calls = self._calls[key]
        while calls and now - calls[0] >= self._window:
            calls.popleft()

        if len(calls) >= self._max_calls:
            logger.warning("Rate limit exceeded", key=key, calls=len(calls), window=self._window)
            return False

        calls.append(now)
        return True

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._calls.clear()
        else:
            self._calls.pop(key, None)


class SafetyGuard:
    """
    Gate in front of every tool.

    Reads are only rate limited. Writes (commits and connection cache
    changes) are refused outright in read-only mode, then rate limited.
    Reads and writes of the same tool are counted under separate keys.
    """

    def __init__(self, settings: SecuritySettings) -> None:
        self._read_only = settings.read_only
        self._window = settings.rate_limit_window
        self._limiter = RateLimiter(settings.rate_limit_calls, settings.rate_limit_window)

    def _admit(self, kind: str, operation: str) -> OperationBlocked | None:
        if self._limiter.check(f"{kind}:{operation}"):
            return None
        return OperationBlocked(
            operation=operation,
            reason="Rate limit exceeded",
            setting="MCP_RATE_LIMIT_CALLS",
            hint=f"Wait up to {self._window}s and try again",
        )

    def check_read_operation(self, operation: str) -> OperationBlocked | None:
        """None when allowed."""
        return self._admit("read", operation)

    def check_write_operation(self, operation: str) -> OperationBlocked | None:
        """None when allowed."""
        if self._read_only:
            logger.info("Write refused in read-only mode", operation=operation)
            return OperationBlocked(
                operation=operation,
                reason="Server is running in read-only mode",
                setting="MCP_READ_ONLY",
                hint="To enable: Set MCP_READ_ONLY=false in server configuration",
            )
        return self._admit("write", operation)

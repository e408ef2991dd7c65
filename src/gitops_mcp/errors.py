# ABOUTME: Exception taxonomy for GitOps MCP Server
# ABOUTME: Remote tree failures, conflicts, format errors, and missing configuration

"""
Exception taxonomy shared by the client, the sync protocol and the workflows.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

Every failure that can reach a caller is one of the classes below. They all
derive from GitOpsError so the MCP tools need a single except clause:

    try:
        result = await workflow.create(ref, name, content)
    except GitOpsError as e:
        return str(e)

=============================================================================
WHAT IS NOT HERE?
=============================================================================

"Path does not exist" is not an exception in this codebase. The client raises
RemoteTreeError(kind=NOT_FOUND), but sync.exists() turns that into the Absent
value and nothing downstream ever sees it as an error.

    RemoteTreeError kinds:
        NOT_FOUND        -> 404 (becomes Absent in sync.exists)
        UNAUTHENTICATED  -> 401, bad or expired token
        FORBIDDEN        -> 403, token lacks scope
        RATE_LIMITED     -> 429, or 403 with X-RateLimit-Remaining: 0
        UNKNOWN          -> anything else, including transport failures

    Workflow errors:
        ConflictError          -> 422, project already exists
        InvalidFormatError     -> 400, manifest text does not parse
        NotConfiguredError     -> 400, no GitHub token registered
        MissingManifestError   -> 400, registration before manifests
        ConnectionNotFoundError -> 404, no stored connection for an org
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification of remote tree failures."""

    NOT_FOUND = "not_found"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"

    @classmethod
    def from_status(cls, code: int, rate_limit_remaining: str | None = None) -> ErrorKind:
        """
        Map an HTTP status code to an error kind.

        GitHub reports an exhausted rate limit as 403 with the
        X-RateLimit-Remaining header set to "0", so the header decides
        between FORBIDDEN and RATE_LIMITED.
        """
        if code == 404:
            return cls.NOT_FOUND
        if code == 401:
            return cls.UNAUTHENTICATED
        if code == 429:
            return cls.RATE_LIMITED
        if code == 403:
            if rate_limit_remaining == "0":
                return cls.RATE_LIMITED
            return cls.FORBIDDEN
        return cls.UNKNOWN


class GitOpsError(Exception):
    """
    Base class for every caller-visible failure.

    status_code is the HTTP-style code a boundary layer should report.
    It is informational; the MCP tools return str(error) either way.
    """

    status_code = 500

    def __init__(self, message: str, details: str | None = None) -> None:
        self.message = message
        self.details = details
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class RemoteTreeError(GitOpsError):
    """
    Failure reported by the GitHub contents API or the transport under it.

    USAGE:
    ------
    try:
        entry = await client.read_path(ref, "manifests")
    except RemoteTreeError as e:
        if e.kind is ErrorKind.FORBIDDEN:
            ...
    """

    def __init__(
        self,
        code: int,
        message: str,
        details: str | None = None,
        kind: ErrorKind | None = None,
    ) -> None:
        """
        Initialize remote tree error.

        Args:
            code: HTTP status code, or 0 when no response was received
            message: Primary error message from GitHub
            details: Additional error details (optional)
            kind: Explicit classification; derived from code when omitted
        """
        self.code = code
        self.kind = kind if kind is not None else ErrorKind.from_status(code)
        self.status_code = code or 502
        super().__init__(message, details)

    def __str__(self) -> str:
        base = f"GitHub API error ({self.code}): {self.message}"
        if self.details:
            base += f" - {self.details}"
        return base


class ConflictError(GitOpsError):
    """Target leaf already exists in a domain that rejects duplicates."""

    status_code = 422


class InvalidFormatError(GitOpsError):
    """Caller-supplied manifest text or template parameters are not usable."""

    status_code = 400


class MissingParameterError(InvalidFormatError):
    """A required template or workflow parameter was empty or absent."""


class UnsupportedLanguageError(InvalidFormatError):
    """Pipeline or bootstrap template requested for an unknown language."""

    def __init__(self, language: str, supported: tuple[str, ...]) -> None:
        self.language = language
        self.supported = supported
        super().__init__(
            f"Unsupported language '{language}'",
            f"supported: {', '.join(supported)}",
        )


class NotConfiguredError(GitOpsError):
    """No GitHub credential has been registered."""

    status_code = 400

    def __init__(self, message: str = "GitHub token not configured") -> None:
        super().__init__(message, "call set_token with a valid GitHub token first")


class MissingManifestError(GitOpsError):
    """Registration requested before the manifests it points at were created."""

    status_code = 400


class ConnectionNotFoundError(GitOpsError):
    """No stored connection for the requested organization."""

    status_code = 404

    def __init__(self, org: str) -> None:
        self.org = org
        super().__init__(f"Connection for organization '{org}' not found")

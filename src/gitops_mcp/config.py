# ABOUTME: Configuration management for GitOps MCP Server
# ABOUTME: Handles environment variables, GitHub access, GitOps defaults, and security modes

"""
Configuration management using pydantic-settings.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module handles all configuration for the MCP server. It:

1. READS environment variables (like GITHUB_API_URL, GITOPS_BRANCH)
2. VALIDATES them (URLs get a scheme, log levels must be real levels, etc.)
3. PROVIDES typed access to settings throughout the application

Settings are loaded ONCE, in the server lifespan, and handed to everything
that needs them. Nothing in this package reads os.environ on its own.

=============================================================================
ARCHITECTURE: FOUR CONFIGURATION CLASSES
=============================================================================

1. GitHubSettings (GITHUB_ prefix): where and how to reach GitHub
   - API URL, web URL (for clone URLs), fallback token, timeout

2. GitOpsSettings (GITOPS_ prefix): what the generated files look like
   - Target branch, default ArgoCD destination, container registry,
     location of the connection cache file

3. SecuritySettings (MCP_ prefix): what the AI is allowed to do
   - Read-only mode, audit log, rate limiting

4. ServerSettings: main container holding the three above plus logging
   and server metadata

=============================================================================
ENVIRONMENT VARIABLE MAPPING
=============================================================================

GitHub:
    GITHUB_API_URL      -> REST API base (default: https://api.github.com)
    GITHUB_WEB_URL      -> Web base used for clone URLs (default: https://github.com)
    GITHUB_TOKEN        -> Fallback token when none was stored with set_token
    GITHUB_TIMEOUT      -> Request timeout in seconds (default: 30)

GitOps defaults:
    GITOPS_BRANCH                  -> Branch every commit targets (default: main)
    GITOPS_DEST_SERVER             -> ArgoCD destination server
    GITOPS_DEST_NAMESPACE          -> ArgoCD destination namespace
    GITOPS_REGISTRY                -> Container registry host for pipelines
    GITOPS_REGISTRY_CREDENTIAL_ID  -> Jenkins credential id for the registry
    GITOPS_STORE_PATH              -> Connection cache JSON file

Security (MCP_ prefix):
    MCP_READ_ONLY           -> Block all commits (default: true)
    MCP_AUDIT_LOG           -> Path to audit log file
    MCP_RATE_LIMIT_CALLS    -> Max tool calls per window (default: 100)
    MCP_RATE_LIMIT_WINDOW   -> Rate limit window in seconds (default: 60)
"""

from __future__ import annotations

import os
from pathlib import Path  # noqa: TC003 - Required at runtime for Pydantic
from typing import Annotated

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _normalize_url(v: str) -> str:
    # Default to https and strip trailing slashes so paths can be appended
    if not v.startswith(("http://", "https://")):
        v = f"https://{v}"
    return v.rstrip("/")


# =============================================================================
# GITHUB SETTINGS
# =============================================================================


class GitHubSettings(BaseSettings):
    """
    How to reach the GitHub REST API.

    WHY A FALLBACK TOKEN?
    ---------------------
    The normal flow stores a token through the set_token tool, which verifies
    it first. GITHUB_TOKEN exists for headless deployments (CI, containers)
    where nobody is around to call set_token. A stored token always wins.

    GITHUB ENTERPRISE:
    ------------------
    Point api_url at https://ghe.example.com/api/v3 and web_url at
    https://ghe.example.com. Clone URLs written into config_dir.json are
    derived from web_url.
    """

    model_config = SettingsConfigDict(env_prefix="GITHUB_", extra="ignore")

    api_url: str = Field(
        default="https://api.github.com",
        description="GitHub REST API base URL",
    )

    web_url: str = Field(
        default="https://github.com",
        description="GitHub web base URL, used to build clone URLs",
    )

    token: SecretStr = Field(
        default=SecretStr(""),
        description="Fallback GitHub token (stored token takes precedence)",
    )
    # SecretStr prints as "**********"; use token.get_secret_value() to read it.

    timeout: float = Field(
        default=30.0,
        gt=0,
        description="HTTP request timeout in seconds",
    )

    @field_validator("api_url", "web_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """
        Ensure URL has a scheme and no trailing slash.

        "api.github.com" becomes "https://api.github.com", and
        "https://github.com/" becomes "https://github.com".
        """
        return _normalize_url(v)

    def clone_url(self, org: str, repo: str) -> str:
        """Clone URL ArgoCD should pull from, e.g. https://github.com/acme/infra.git"""
        return f"{self.web_url}/{org}/{repo}.git"


# =============================================================================
# GITOPS DEFAULTS
# =============================================================================


class GitOpsSettings(BaseSettings):
    """
    Defaults baked into generated files and commits.

    These are DEFAULTS only: every tool that uses one accepts an explicit
    override (dest_server, dest_namespace, registry, credential id).
    """

    model_config = SettingsConfigDict(env_prefix="GITOPS_", extra="ignore")

    branch: str = Field(default="main", description="Branch every commit targets")

    dest_server: str = Field(
        default="https://kubernetes.default.svc",
        description="Default ArgoCD destination server",
    )
    # "https://kubernetes.default.svc" is the cluster ArgoCD itself runs in.

    dest_namespace: str = Field(
        default="default",
        description="Default ArgoCD destination namespace",
    )

    registry: str = Field(
        default="docker.io",
        description="Container registry host used by pipeline templates",
    )

    registry_credential_id: str = Field(
        default="dockerhub-creds",
        description="Jenkins credential id for the container registry",
    )

    store_path: Path = Field(
        default=Path("~/.gitops-mcp/connections.json"),
        validate_default=True,
        description="JSON file holding the token and organization connections",
    )

    @field_validator("store_path")
    @classmethod
    def expand_store_path(cls, v: Path) -> Path:
        return v.expanduser()


# =============================================================================
# SECURITY SETTINGS
# =============================================================================


class SecuritySettings(BaseSettings):
    """
    Security-related configuration.

    DEFENSE IN DEPTH:
    -----------------
    Layer 1: MCP_READ_ONLY=true (default)
        - Every tool that commits to GitHub or changes the connection
          cache is blocked
        - Folder checks, listings and template previews still work

    Layer 2: Rate limiting (MCP_RATE_LIMIT_*)
        - Every commit is a real commit in someone's repository
        - A runaway loop should hit this limit long before it fills
          the history with marker files
    """

    model_config = SettingsConfigDict(env_prefix="MCP_")

    read_only: bool = Field(
        default=True,  # SAFE DEFAULT: nothing is committed until enabled
        description="Block all write operations when true",
    )

    audit_log: Path | None = Field(
        default=None,
        description="Path to audit log file",
    )
    # When set, each tool call appends one JSON line to this file.
    # When None (default), audit entries go through structlog.

    rate_limit_calls: int = Field(
        default=100,
        description="Maximum tool calls per window",
    )

    rate_limit_window: int = Field(
        default=60,
        description="Rate limit window in seconds",
    )


# =============================================================================
# MAIN SERVER SETTINGS
# =============================================================================


class ServerSettings(BaseSettings):
    """
    Main server configuration.

    USAGE:
    ------
        settings = load_settings()          # Reads from environment
        settings.github.api_url             # "https://api.github.com"
        settings.gitops.branch              # "main"
        settings.security.read_only         # True
    """

    model_config = SettingsConfigDict(
        env_prefix="GITOPS_MCP_",
        env_nested_delimiter="__",
        extra="ignore",
        populate_by_name=True,
    )

    server_name: str = Field(default="gitops-mcp", description="MCP server name")

    server_version: str = Field(default="0.1.0", description="MCP server version")

    log_level: Annotated[str, Field(pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")] = Field(
        default="INFO",
        description="Logging level",
    )

    json_logs: bool = Field(
        default=False,
        description="Emit JSON log lines instead of console output",
    )

    # Each nested group reads its own prefix (GITHUB_, GITOPS_, MCP_)
    github: GitHubSettings = Field(default_factory=GitHubSettings)
    gitops: GitOpsSettings = Field(default_factory=GitOpsSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)


# =============================================================================
# SETTINGS LOADER
# =============================================================================


def load_settings() -> ServerSettings:
    """
    Load settings from environment with validation.

    If GITOPS_MCP_ENV_FILE is set, additional variables are read from that
    file. Useful for local development:

        GITHUB_TOKEN=ghp_devtoken
        GITOPS_BRANCH=develop
        MCP_READ_ONLY=false

    Returns:
        Fully validated ServerSettings instance.

    Raises:
        pydantic.ValidationError: If configuration is invalid.
    """
    return ServerSettings(
        _env_file=os.environ.get("GITOPS_MCP_ENV_FILE"),
    )

# ABOUTME: Connection cache for GitOps MCP Server
# ABOUTME: Persists the GitHub token and organization connections in a JSON file

"""
Connection cache: the stored token and the organizations connected so far.

The whole cache is one JSON document, read and rewritten as a unit:

    {
      "token": {"token": "ghp_...", "updatedAt": "2026-10-18T09:00:00Z"},
      "connections": [
        {
          "orgName": "acme",
          "orgId": 4242,
          "avatarUrl": "https://avatars.githubusercontent.com/u/4242",
          "connectedAt": "2026-10-18T09:01:00Z",
          "updatedAt": null,
          "reposCount": 2,
          "repos": [{"id": 1, "name": "infra", "fullName": "acme/infra", ...}]
        }
      ]
    }

The file holds a credential, so it is written with owner-only permissions.
Organization names are matched case-insensitively, like GitHub logins.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime
from pathlib import Path  # noqa: TC003 - Required at runtime for Pydantic
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_serializer

if TYPE_CHECKING:
    from gitops_mcp.models import RepositorySummary

logger = structlog.get_logger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


class _Record(BaseModel):
    # Stored keys are camelCase; Python attributes are snake_case
    model_config = ConfigDict(populate_by_name=True)


class TokenRecord(_Record):
    token: SecretStr
    updated_at: datetime = Field(default_factory=_now, alias="updatedAt")

    @field_serializer("token", when_used="json")
    def dump_token(self, v: SecretStr) -> str:
        return v.get_secret_value()


class RepositoryRecord(_Record):
    id: int
    name: str
    full_name: str = Field(alias="fullName")
    private: bool = False
    url: str = ""
    default_branch: str = Field(default="main", alias="defaultBranch")

    @classmethod
    def from_summary(cls, summary: RepositorySummary) -> RepositoryRecord:
        return cls(
            id=summary.id,
            name=summary.name,
            full_name=summary.full_name,
            private=summary.private,
            url=summary.url,
            default_branch=summary.default_branch,
        )


class OrganizationConnection(_Record):
    org_name: str = Field(alias="orgName")
    org_id: int = Field(alias="orgId")
    avatar_url: str = Field(default="", alias="avatarUrl")
    connected_at: datetime = Field(default_factory=_now, alias="connectedAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")
    repos_count: int = Field(default=0, alias="reposCount")
    repos: list[RepositoryRecord] = Field(default_factory=list)


class CacheDocument(BaseModel):
    token: TokenRecord | None = None
    connections: list[OrganizationConnection] = Field(default_factory=list)


class ConnectionStore:
    """
    JSON-file backed connection cache.

    Every method reads the file fresh and every mutation rewrites it, so two
    server processes sharing a file see each other's changes (last write
    wins).
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def _load(self) -> CacheDocument:
        if not self.path.exists():
            return CacheDocument()
        return CacheDocument.model_validate_json(self.path.read_text(encoding="utf-8"))

    def _save(self, doc: CacheDocument) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(doc.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        os.chmod(tmp, 0o600)
        tmp.replace(self.path)

    # Token

    def get_token(self) -> SecretStr | None:
        doc = self._load()
        if doc.token is None or not doc.token.token.get_secret_value():
            return None
        return doc.token.token

    def set_token(self, token: str) -> None:
        doc = self._load()
        doc.token = TokenRecord(token=SecretStr(token))
        self._save(doc)
        logger.info("Stored GitHub token", path=str(self.path))

    # Connections

    def get_connection(self, org: str) -> OrganizationConnection | None:
        key = org.lower()
        for conn in self._load().connections:
            if conn.org_name.lower() == key:
                return conn
        return None

    def save_connection(self, connection: OrganizationConnection) -> None:
        """Insert or replace the connection for connection.org_name."""
        doc = self._load()
        key = connection.org_name.lower()
        doc.connections = [c for c in doc.connections if c.org_name.lower() != key]
        doc.connections.append(connection)
        self._save(doc)

    def list_connections(self) -> list[OrganizationConnection]:
        """All connections, most recently connected first."""
        return sorted(self._load().connections, key=lambda c: c.connected_at, reverse=True)

    def delete_connection(self, org: str) -> bool:
        doc = self._load()
        key = org.lower()
        remaining = [c for c in doc.connections if c.org_name.lower() != key]
        if len(remaining) == len(doc.connections):
            return False
        doc.connections = remaining
        self._save(doc)
        return True

    def touch_connection(self, org: str) -> None:
        """Record that files were committed to one of org's repositories."""
        connection = self.get_connection(org)
        if connection is None:
            return
        connection.updated_at = _now()
        self.save_connection(connection)

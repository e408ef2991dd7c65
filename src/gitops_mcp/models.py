# ABOUTME: Data model for GitOps MCP Server
# ABOUTME: Repository references, remote tree entries, artifacts, and sync outcomes

"""
Plain data carried between the client, the sync protocol and the workflows.

None of these objects outlive a single request. A PathEntry is a snapshot of
the remote tree at read time; the tree can change under us at any moment, so
entries are never cached.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class Domain(str, Enum):
    """The five resource categories sharing the sync protocol."""

    APP = "app"
    PIPELINE = "pipeline"
    PROJECT = "project"
    MONITORING = "monitoring"
    ML = "ml"


class EntryKind(str, Enum):
    """Node type in the remote tree."""

    FILE = "file"
    DIRECTORY = "directory"

    @classmethod
    def from_api(cls, value: str) -> EntryKind:
        # GitHub says "dir"; symlinks and submodules are treated as files
        return cls.DIRECTORY if value == "dir" else cls.FILE


@dataclass(frozen=True)
class RepositoryRef:
    """Identifies a remote repository (organization or user, and name)."""

    org: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.org}/{self.name}"


@dataclass(frozen=True)
class PathEntry:
    """
    Snapshot of one node in the remote tree.

    content is only populated for files read directly (not for directory
    listings), and holds the decoded UTF-8 text.
    """

    path: str
    kind: EntryKind
    sha: str
    url: str
    name: str = ""
    content: str | None = None
    size: int = 0

    @classmethod
    def from_api_response(cls, data: dict[str, Any], content: str | None = None) -> PathEntry:
        """Create PathEntry from a GitHub contents API item."""
        path = data.get("path", "")
        return cls(
            path=path,
            kind=EntryKind.from_api(data.get("type", "file")),
            sha=data.get("sha", ""),
            url=data.get("html_url") or "",
            name=data.get("name") or path.rsplit("/", 1)[-1],
            content=content,
            size=data.get("size", 0) or 0,
        )

    @property
    def is_directory(self) -> bool:
        return self.kind is EntryKind.DIRECTORY


@dataclass(frozen=True)
class WriteResult:
    """Commit produced by one write_path call."""

    url: str
    sha: str
    commit_sha: str = ""


@dataclass(frozen=True)
class RepositorySummary:
    """Repository as listed for an organization."""

    id: int
    name: str
    full_name: str
    private: bool
    url: str
    default_branch: str

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> RepositorySummary:
        return cls(
            id=data.get("id", 0),
            name=data.get("name", ""),
            full_name=data.get("full_name", ""),
            private=bool(data.get("private", False)),
            url=data.get("html_url", ""),
            default_branch=data.get("default_branch") or "main",
        )


@dataclass(frozen=True)
class ManifestArtifact:
    """Generated text plus the path it will be committed to."""

    domain: Domain
    name: str
    content: str
    target_path: str


@dataclass(frozen=True)
class SyncOutcome:
    """Result of one directory-ensure or leaf-write step."""

    created: bool
    already_existed: bool
    url: str | None = None
    path: str = ""

    @classmethod
    def existing(cls, path: str, url: str | None = None) -> SyncOutcome:
        return cls(created=False, already_existed=True, url=url, path=path)

    @classmethod
    def new(cls, path: str, url: str | None) -> SyncOutcome:
        return cls(created=True, already_existed=False, url=url, path=path)

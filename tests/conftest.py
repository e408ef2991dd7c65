# ABOUTME: Pytest fixtures and configuration for GitOps MCP Server tests
# ABOUTME: Provides an in-memory remote tree, settings, and safety fixtures

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest
from pydantic import SecretStr

from gitops_mcp.config import GitHubSettings, GitOpsSettings, SecuritySettings, ServerSettings
from gitops_mcp.connections import ConnectionService
from gitops_mcp.errors import RemoteTreeError
from gitops_mcp.models import (
    EntryKind,
    PathEntry,
    RepositoryRef,
    RepositorySummary,
    WriteResult,
)
from gitops_mcp.store import ConnectionStore
from gitops_mcp.utils.safety import SafetyGuard


@dataclass(frozen=True)
class RecordedWrite:
    path: str
    content: str
    message: str
    branch: str


class FakeRemoteTree:
    """
    In-memory repository implementing the remote tree protocol.

    Like git, a directory exists only while some file lives under it.
    Every write is recorded so tests can count commits.
    """

    def __init__(self, files: dict[str, str] | None = None) -> None:
        self.files: dict[str, str] = dict(files or {})
        self.writes: list[RecordedWrite] = []
        self.reads: list[str] = []
        self.read_failures: dict[str, RemoteTreeError] = {}
        self.write_failures: dict[str, RemoteTreeError] = {}
        self.missing_repositories: set[str] = set()
        self.org_repositories: list[RepositorySummary] = []

    @staticmethod
    def _sha(content: str) -> str:
        return hashlib.sha1(content.encode("utf-8")).hexdigest()

    @staticmethod
    def _url(ref: RepositoryRef, path: str) -> str:
        return f"https://github.com/{ref.full_name}/blob/main/{path}"

    async def read_path(
        self, ref: RepositoryRef, path: str, branch: str | None = None
    ) -> PathEntry | list[PathEntry]:
        path = path.strip("/")
        self.reads.append(path)
        if path in self.read_failures:
            raise self.read_failures[path]

        if path in self.files:
            content = self.files[path]
            return PathEntry(
                path=path,
                kind=EntryKind.FILE,
                sha=self._sha(content),
                url=self._url(ref, path),
                name=path.rsplit("/", 1)[-1],
                content=content,
                size=len(content),
            )

        prefix = f"{path}/"
        children: dict[str, EntryKind] = {}
        for file_path in self.files:
            if file_path.startswith(prefix):
                rest = file_path[len(prefix) :]
                head = rest.split("/", 1)[0]
                children[head] = EntryKind.DIRECTORY if "/" in rest else EntryKind.FILE
        if not children:
            raise RemoteTreeError(404, "Not Found")

        return [
            PathEntry(
                path=f"{path}/{name}",
                kind=kind,
                sha=self._sha(name),
                url=self._url(ref, f"{path}/{name}"),
                name=name,
            )
            for name, kind in sorted(children.items())
        ]

    async def write_path(
        self, ref: RepositoryRef, path: str, content: str, message: str, branch: str
    ) -> WriteResult:
        if path in self.write_failures:
            raise self.write_failures[path]
        self.files[path] = content
        self.writes.append(RecordedWrite(path, content, message, branch))
        return WriteResult(
            url=self._url(ref, path),
            sha=self._sha(content),
            commit_sha=f"commit-{len(self.writes)}",
        )

    async def list_org_repositories(self, org: str) -> list[RepositorySummary]:
        return list(self.org_repositories)

    async def get_repository(self, ref: RepositoryRef) -> dict[str, Any]:
        if ref.full_name in self.missing_repositories:
            raise RemoteTreeError(404, "Not Found")
        return {"full_name": ref.full_name, "default_branch": "main"}

    @property
    def written_paths(self) -> list[str]:
        return [w.path for w in self.writes]


class FakeGitHub:
    """
    Stand-in for GitHub as a whole: which tokens it accepts, which
    organizations exist, and one repository tree behind them.

    Its client() method has the ClientFactory signature, so it can be
    handed to ConnectionService and build_app_context directly.
    """

    def __init__(self, tree: FakeRemoteTree) -> None:
        self.tree = tree
        self.accepted_tokens = {"ghp_valid"}
        self.organizations: dict[str, dict[str, Any]] = {
            "acme": {"login": "acme", "id": 4242, "avatar_url": "https://avatars.example.com/u/4242"},
        }
        self.tokens_used: list[str] = []

    def client(self, token: SecretStr) -> FakeGitHubClient:
        self.tokens_used.append(token.get_secret_value())
        return FakeGitHubClient(self, token.get_secret_value())


class FakeGitHubClient:
    """Async context manager with GitHubClient's methods over FakeGitHub."""

    def __init__(self, github: FakeGitHub, token: str) -> None:
        self._github = github
        self._token = token

    async def __aenter__(self) -> FakeGitHubClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        return None

    def _authenticate(self) -> None:
        if self._token not in self._github.accepted_tokens:
            raise RemoteTreeError(401, "Bad credentials")

    async def get_authenticated_user(self) -> dict[str, Any]:
        self._authenticate()
        return {"login": "octocat"}

    async def get_organization(self, org: str) -> dict[str, Any]:
        self._authenticate()
        if org.lower() not in self._github.organizations:
            raise RemoteTreeError(404, "Not Found")
        return self._github.organizations[org.lower()]

    async def read_path(self, ref, path, branch=None):
        self._authenticate()
        return await self._github.tree.read_path(ref, path, branch)

    async def write_path(self, ref, path, content, message, branch):
        self._authenticate()
        return await self._github.tree.write_path(ref, path, content, message, branch)

    async def list_org_repositories(self, org):
        self._authenticate()
        return await self._github.tree.list_org_repositories(org)

    async def get_repository(self, ref):
        self._authenticate()
        return await self._github.tree.get_repository(ref)


@pytest.fixture
def github(tree: FakeRemoteTree) -> FakeGitHub:
    """Fake GitHub accepting the token 'ghp_valid' and knowing org 'acme'."""
    tree.org_repositories = [
        RepositorySummary(1, "infra", "acme/infra", True, "https://github.com/acme/infra", "main"),
        RepositorySummary(2, "web", "acme/web", False, "https://github.com/acme/web", "trunk"),
    ]
    return FakeGitHub(tree)


@pytest.fixture
def ref() -> RepositoryRef:
    """The repository most tests write into."""
    return RepositoryRef(org="acme", name="infra")


@pytest.fixture
def tree() -> FakeRemoteTree:
    """An empty in-memory repository."""
    return FakeRemoteTree()


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    """Connection cache location inside the test's temp dir."""
    return tmp_path / "gitops" / "connections.json"


@pytest.fixture
def store(store_path: Path) -> ConnectionStore:
    """An empty connection store."""
    return ConnectionStore(store_path)


@pytest.fixture
def mock_security_settings() -> SecuritySettings:
    """Create security settings with writes enabled."""
    return SecuritySettings(
        read_only=False,
        audit_log=None,
        rate_limit_calls=100,
        rate_limit_window=60,
    )


@pytest.fixture
def read_only_security_settings() -> SecuritySettings:
    """Create read-only security settings for testing."""
    return SecuritySettings(
        read_only=True,
        audit_log=None,
        rate_limit_calls=100,
        rate_limit_window=60,
    )


@pytest.fixture
def settings(store_path: Path, mock_security_settings: SecuritySettings) -> ServerSettings:
    """Server settings with writes enabled and no fallback token."""
    return ServerSettings(
        github=GitHubSettings(
            api_url="https://api.github.com",
            web_url="https://github.com",
            token=SecretStr(""),
        ),
        gitops=GitOpsSettings(branch="main", store_path=store_path),
        security=mock_security_settings,
    )


@pytest.fixture
def connections(store: ConnectionStore, settings: ServerSettings, github: FakeGitHub) -> ConnectionService:
    """Connection service over the fake GitHub and an empty store."""
    return ConnectionService(store, settings, github.client)


@pytest.fixture
def safety_guard(mock_security_settings: SecuritySettings) -> SafetyGuard:
    """Create a safety guard for testing."""
    return SafetyGuard(mock_security_settings)


@pytest.fixture
def read_only_safety_guard(read_only_security_settings: SecuritySettings) -> SafetyGuard:
    """Create a read-only safety guard for testing."""
    return SafetyGuard(read_only_security_settings)

# ABOUTME: GitHub credential and organization connection operations
# ABOUTME: Token verification, org connections, repo listing, file reads, bootstrap files

"""
Everything that happens before a workflow can run: a verified token, a
connected organization, a repository to pick.

ConnectionService is the only thing that knows where the token comes from.
Workflows never see the token; they get a GitHubClient opened with it:

    async with service.open_client() as client:
        workflow = DomainWorkflow.for_domain("app", client, settings)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

import structlog
from pydantic import SecretStr

from gitops_mcp.errors import (
    ConnectionNotFoundError,
    InvalidFormatError,
    NotConfiguredError,
    RemoteTreeError,
)
from gitops_mcp.store import OrganizationConnection, RepositoryRecord
from gitops_mcp.templates import require

if TYPE_CHECKING:
    from gitops_mcp.config import ServerSettings
    from gitops_mcp.models import RepositoryRef
    from gitops_mcp.store import ConnectionStore
    from gitops_mcp.utils.client import GitHubClient

logger = structlog.get_logger(__name__)

ClientFactory = Callable[[SecretStr], "GitHubClient"]


@dataclass(frozen=True)
class TokenStatus:
    configured: bool
    valid: bool
    message: str
    login: str | None = None


@dataclass(frozen=True)
class ConnectResult:
    connection: OrganizationConnection
    existing: bool


@dataclass(frozen=True)
class RepositoryListing:
    source: str  # "cache" or "api"
    repos: list[RepositoryRecord]


@dataclass(frozen=True)
class FileContent:
    content: str
    encoding: str
    size: int
    path: str
    sha: str


@dataclass(frozen=True)
class FileResult:
    """Outcome of one bootstrap file commit."""

    file: str
    status: str  # "created" or "error"
    url: str | None = None
    error: str | None = None


class ConnectionService:
    """Credential flow and organization connections over a ConnectionStore."""

    def __init__(
        self,
        store: ConnectionStore,
        settings: ServerSettings,
        client_factory: ClientFactory,
    ) -> None:
        self._store = store
        self._settings = settings
        self._client_factory = client_factory

    # =========================================================================
    # CREDENTIALS
    # =========================================================================

    def resolve_token(self) -> SecretStr:
        """
        The token every GitHub call uses.

        A token stored with set_token wins; GITHUB_TOKEN is the fallback.

        Raises:
            NotConfiguredError: neither is set
        """
        stored = self._store.get_token()
        if stored is not None:
            return stored
        if self._settings.github.token.get_secret_value():
            return self._settings.github.token
        raise NotConfiguredError()

    def open_client(self) -> GitHubClient:
        """Unopened GitHubClient for the resolved token; use with async with."""
        return self._client_factory(self.resolve_token())

    async def check_token(self) -> TokenStatus:
        """
        Report whether a token is configured and still accepted by GitHub.

        A rejected token is reported in the result, not raised.
        """
        try:
            token = self.resolve_token()
        except NotConfiguredError as e:
            return TokenStatus(configured=False, valid=False, message=e.message)

        try:
            async with self._client_factory(token) as client:
                user = await client.get_authenticated_user()
        except RemoteTreeError as e:
            logger.warning("Configured token rejected", kind=e.kind.value)
            return TokenStatus(configured=True, valid=False, message=str(e))

        return TokenStatus(
            configured=True,
            valid=True,
            message="GitHub token is valid",
            login=user.get("login"),
        )

    async def set_token(self, token: str) -> TokenStatus:
        """
        Verify a token against GitHub, then store it.

        Raises:
            MissingParameterError: token is empty
            RemoteTreeError: GitHub rejected the token (nothing stored)
        """
        require(token=token)
        secret = SecretStr(token.strip())
        async with self._client_factory(secret) as client:
            user = await client.get_authenticated_user()

        self._store.set_token(secret.get_secret_value())
        return TokenStatus(
            configured=True,
            valid=True,
            message="GitHub token stored",
            login=user.get("login"),
        )

    # =========================================================================
    # ORGANIZATIONS
    # =========================================================================

    async def connect_organization(self, org: str) -> ConnectResult:
        """
        Connect an organization and cache its repository list.

        Connecting an organization that is already connected returns the
        stored connection unchanged.
        """
        require(org=org)
        existing = self._store.get_connection(org)
        if existing is not None:
            return ConnectResult(connection=existing, existing=True)

        async with self.open_client() as client:
            details = await client.get_organization(org)
            summaries = await client.list_org_repositories(org)

        repos = [RepositoryRecord.from_summary(s) for s in summaries]
        connection = OrganizationConnection(
            org_name=details.get("login") or org,
            org_id=details.get("id", 0),
            avatar_url=details.get("avatar_url") or "",
            repos_count=len(repos),
            repos=repos,
        )
        self._store.save_connection(connection)
        logger.info("Connected organization", org=connection.org_name, repos=len(repos))
        return ConnectResult(connection=connection, existing=False)

    def list_connections(self) -> list[OrganizationConnection]:
        return self._store.list_connections()

    def delete_connection(self, org: str) -> None:
        require(org=org)
        if not self._store.delete_connection(org):
            raise ConnectionNotFoundError(org)
        logger.info("Deleted organization connection", org=org)

    async def list_repositories(self, org: str) -> RepositoryListing:
        """Repositories of org, from the cache when connected, else from GitHub."""
        require(org=org)
        connection = self._store.get_connection(org)
        if connection is not None:
            return RepositoryListing(source="cache", repos=connection.repos)

        async with self.open_client() as client:
            summaries = await client.list_org_repositories(org)
        return RepositoryListing(
            source="api",
            repos=[RepositoryRecord.from_summary(s) for s in summaries],
        )

    # =========================================================================
    # FILES
    # =========================================================================

    async def get_file_content(self, ref: RepositoryRef, path: str) -> FileContent:
        """
        Read one file's text.

        Raises:
            InvalidFormatError: path is a directory
            RemoteTreeError: path missing (kind not_found) or any other failure
        """
        require(path=path)
        async with self.open_client() as client:
            entry = await client.read_path(ref, path)

        if isinstance(entry, list) or entry.is_directory:
            raise InvalidFormatError(f"'{path}' is a directory")
        content = entry.content or ""
        return FileContent(
            content=content,
            encoding="utf8",
            size=len(content),
            path=entry.path,
            sha=entry.sha,
        )

    async def add_bootstrap_files(
        self,
        ref: RepositoryRef,
        dockerfile: str | None = None,
        jenkinsfile: str | None = None,
    ) -> list[FileResult]:
        """
        Commit a Dockerfile and/or Jenkinsfile at the repository root.

        Each file is its own commit. A failure on one file is reported in
        its FileResult and does not stop the other.
        """
        files = {"Dockerfile": dockerfile, "Jenkinsfile": jenkinsfile}
        files = {name: text for name, text in files.items() if text and text.strip()}
        if not files:
            raise InvalidFormatError("At least one file content is required")

        branch = self._settings.gitops.branch
        results: list[FileResult] = []
        async with self.open_client() as client:
            for name, text in files.items():
                try:
                    written = await client.write_path(
                        ref, name, text, f"Add {name}", branch
                    )
                except RemoteTreeError as e:
                    logger.warning("Bootstrap file failed", repo=ref.full_name, file=name, error=str(e))
                    results.append(FileResult(file=name, status="error", error=str(e)))
                else:
                    results.append(FileResult(file=name, status="created", url=written.url))

        if any(r.status == "created" for r in results):
            self._store.touch_connection(ref.org)
        return results

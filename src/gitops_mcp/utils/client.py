# ABOUTME: GitHub contents API client for GitOps MCP Server
# ABOUTME: Reads, upserts and lists paths in a remote repository over async httpx

"""
GitHub contents API client: the remote tree every workflow writes into.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module provides the HTTP client for the parts of GitHub's REST API the
server needs. It handles:

1. READING PATHS: a file (with decoded content) or a directory listing
2. WRITING PATHS: create-or-overwrite a file, one commit per call
3. LISTING REPOSITORIES: every repository of an organization, all pages
4. ERROR HANDLING: converting HTTP and transport errors into RemoteTreeError

It deliberately does NOT decide whether a missing path is a problem. A 404
is raised as RemoteTreeError(kind=NOT_FOUND) like any other failure; the
sync module is the one place that turns it into "absent".

=============================================================================
GITHUB CONTENTS API OVERVIEW
=============================================================================

    GET /repos/{owner}/{repo}/contents/{path}
        200 -> object (file, base64 content) or array (directory listing)
        404 -> path does not exist on that ref

    PUT /repos/{owner}/{repo}/contents/{path}
        body: {message, content (base64), branch, sha?}
        200 -> updated existing file, 201 -> created new file
        Response: {"content": {"html_url", "sha"}, "commit": {"sha"}}

    GET /orgs/{org}/repos?per_page=100
        Paginated; the Link header carries rel="next" until the last page

Authentication is via Bearer token in the Authorization header:
    Authorization: Bearer <token>

=============================================================================
WHY DOES write_path LOOK UP A SHA?
=============================================================================

The PUT endpoint has no "create if absent" mode and no blind overwrite:
updating an existing file requires the sha of the blob being replaced, or
GitHub answers 422. write_path reads the current sha first and sends it when
there is one, which makes the call a true upsert:

    path absent  -> PUT without sha -> file created
    path present -> PUT with sha    -> file overwritten

Either way the caller sees one successful write and one new commit. The
client never reports which of the two happened; callers that care (the
project workflow) check existence themselves BEFORE writing.

=============================================================================
NO RETRIES
=============================================================================

Every write is a commit in somebody's repository. Retrying a PUT that timed
out after GitHub accepted it would create a second commit, so failures are
raised once and surfaced to the caller as they are.
"""

# =============================================================================
# IMPORTS
# =============================================================================

from __future__ import annotations

import base64
from typing import TYPE_CHECKING, Any, Protocol
from urllib.parse import quote

import httpx
import structlog

from gitops_mcp.errors import ErrorKind, RemoteTreeError
from gitops_mcp.models import PathEntry, RepositoryRef, RepositorySummary, WriteResult

if TYPE_CHECKING:
    from pydantic import SecretStr

    from gitops_mcp.config import GitHubSettings

logger = structlog.get_logger(__name__)

# GitHub returns at most 100 items per page
PAGE_SIZE = 100

API_VERSION = "2022-11-28"


# =============================================================================
# REMOTE TREE CONTRACT
# =============================================================================


class RemoteTree(Protocol):
    """
    What the sync protocol and the workflows need from a remote repository.

    GitHubClient implements it against the REST API; the test suite
    implements it in memory. Workflows only ever see this protocol, so they
    can be handed either one.
    """

    async def read_path(
        self, ref: RepositoryRef, path: str, branch: str | None = None
    ) -> PathEntry | list[PathEntry]: ...

    async def write_path(
        self, ref: RepositoryRef, path: str, content: str, message: str, branch: str
    ) -> WriteResult: ...

    async def list_org_repositories(self, org: str) -> list[RepositorySummary]: ...

    async def get_repository(self, ref: RepositoryRef) -> dict[str, Any]: ...


# =============================================================================
# GITHUB CLIENT
# =============================================================================


class GitHubClient:
    """
    Async GitHub API client.

    LIFECYCLE:
    ----------
    ALWAYS use the context manager pattern:

        async with GitHubClient(settings.github, token) as client:
            entry = await client.read_path(ref, "manifests")

    The HTTP connection pool is opened in __aenter__ and closed in
    __aexit__, even if the body raises.

    WHY IS THE TOKEN SEPARATE FROM THE SETTINGS?
    --------------------------------------------
    The token usually comes from the connection store (set with the
    set_token tool), not from the environment. The server resolves it per
    request and constructs a client with it.
    """

    def __init__(
        self,
        settings: GitHubSettings,
        token: SecretStr,
    ) -> None:
        """
        Initialize GitHub client.

        Args:
            settings: API URL and timeout
            token: GitHub token used as Bearer credential
        """
        self._settings = settings
        self._token = token
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> GitHubClient:
        self._client = httpx.AsyncClient(
            base_url=self._settings.api_url,
            headers={
                "Authorization": f"Bearer {self._token.get_secret_value()}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
            },
            timeout=self._settings.timeout,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # REQUEST CORE
    # =========================================================================

    async def _send(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """
        Make one HTTP request and convert failures to RemoteTreeError.

        This is the CORE REQUEST METHOD. Everything else goes through it.

        Args:
            method: HTTP method ("GET", "PUT")
            url: API path (e.g. "/repos/acme/infra/contents/manifests"),
                 or an absolute URL taken from a Link header
            params: URL query parameters (optional)
            json_data: JSON request body (optional)

        Returns:
            The successful (< 400) httpx.Response

        Raises:
            RemoteTreeError: On API error (4xx, 5xx) or transport failure
            RuntimeError: If client not initialized (forgot async with)
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        log = logger.bind(method=method, url=url)
        log.debug("Making GitHub API request")

        try:
            response = await self._client.request(method, url, params=params, json=json_data)
        except httpx.TransportError as e:
            # Timeouts, DNS failures, refused connections: no response at all
            log.warning("GitHub API transport failure", error=str(e))
            raise RemoteTreeError(
                code=0,
                message="Transport failure",
                details=str(e) or type(e).__name__,
                kind=ErrorKind.UNKNOWN,
            ) from e

        if response.status_code >= 400:
            log.warning("GitHub API error", status=response.status_code, body=response.text[:200])
            raise self._error_from_response(response)

        return response

    @staticmethod
    def _error_from_response(response: httpx.Response) -> RemoteTreeError:
        """Build a classified RemoteTreeError from a 4xx/5xx response."""
        error_body = response.text

        # GitHub errors look like {"message": "...", "documentation_url": "..."}
        message = f"HTTP {response.status_code}"
        details = None
        try:
            error_json = response.json()
            message = error_json.get("message", message)
            details = error_json.get("documentation_url")
        except ValueError:
            details = error_body[:200] if error_body else None

        return RemoteTreeError(
            code=response.status_code,
            message=message,
            details=details,
            kind=ErrorKind.from_status(
                response.status_code,
                response.headers.get("x-ratelimit-remaining"),
            ),
        )

    async def _request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> Any:
        """Make request and return the parsed JSON body ({} when empty)."""
        response = await self._send(method, url, params=params, json_data=json_data)
        return response.json() if response.content else {}

    @staticmethod
    def _contents_url(ref: RepositoryRef, path: str) -> str:
        # Keep "/" separators, escape everything else (spaces, #, ?)
        clean = quote(path.strip("/"), safe="/")
        return f"/repos/{ref.org}/{ref.name}/contents/{clean}"

    # =========================================================================
    # REMOTE TREE OPERATIONS
    # =========================================================================

    async def read_path(
        self,
        ref: RepositoryRef,
        path: str,
        branch: str | None = None,
    ) -> PathEntry | list[PathEntry]:
        """
        Read a file or a directory.

        GitHub API: GET /repos/{owner}/{repo}/contents/{path}

        Args:
            ref: Repository to read from
            path: Path inside the repository ("manifests", "cicd/build.groovy")
            branch: Branch, tag or sha to read (default branch when None)

        Returns:
            PathEntry with decoded content for a file, or a list of child
            PathEntry objects (without content) for a directory

        Raises:
            RemoteTreeError: kind NOT_FOUND when the path does not exist,
                             FORBIDDEN / RATE_LIMITED / UNKNOWN otherwise
        """
        params = {"ref": branch} if branch else None
        data = await self._request("GET", self._contents_url(ref, path), params=params)

        if isinstance(data, list):
            return [PathEntry.from_api_response(item) for item in data]

        content = None
        if data.get("encoding") == "base64" and data.get("content") is not None:
            # GitHub wraps base64 at 60 columns; b64decode drops the newlines
            content = base64.b64decode(data["content"]).decode("utf-8", errors="replace")
        return PathEntry.from_api_response(data, content=content)

    async def write_path(
        self,
        ref: RepositoryRef,
        path: str,
        content: str,
        message: str,
        branch: str,
    ) -> WriteResult:
        """
        Create or overwrite a file. Always produces exactly one commit.

        GitHub API: PUT /repos/{owner}/{repo}/contents/{path}

        Args:
            ref: Repository to commit to
            path: File path ("manifests/.keep", "projects/shop.yaml")
            content: File text; "" writes a zero-byte file
            message: Commit message
            branch: Branch to commit on

        Returns:
            WriteResult with the file's html_url and blob sha

        Raises:
            RemoteTreeError: On authentication, permission or transport failure
        """
        url = self._contents_url(ref, path)
        body: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }

        sha = await self._current_sha(url, branch)
        if sha:
            body["sha"] = sha

        data = await self._request("PUT", url, json_data=body)
        file_info = data.get("content") or {}
        result = WriteResult(
            url=file_info.get("html_url", ""),
            sha=file_info.get("sha", ""),
            commit_sha=(data.get("commit") or {}).get("sha", ""),
        )
        logger.info(
            "Committed path",
            repo=ref.full_name,
            path=path,
            branch=branch,
            overwrite=bool(sha),
            sha=result.sha,
        )
        return result

    async def _current_sha(self, url: str, branch: str) -> str | None:
        """
        Blob sha of the file currently at url, or None when there is none.

        Part of the upsert primitive: a 404 here only means "send no sha".
        Any other failure is raised like every other request.
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")
        try:
            response = await self._client.get(url, params={"ref": branch})
        except httpx.TransportError as e:
            raise RemoteTreeError(
                code=0, message="Transport failure", details=str(e), kind=ErrorKind.UNKNOWN
            ) from e
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise self._error_from_response(response)
        data = response.json() if response.content else {}
        return data.get("sha") if isinstance(data, dict) else None

    async def list_org_repositories(self, org: str) -> list[RepositorySummary]:
        """
        List every repository of an organization.

        GitHub API: GET /orgs/{org}/repos (paginated)

        Follows the Link header until there is no rel="next", so the caller
        always gets the complete list.

        Args:
            org: Organization login

        Returns:
            RepositorySummary for each repository, in API order
        """
        repos: list[RepositorySummary] = []
        url: str | None = f"/orgs/{org}/repos"
        params: dict[str, Any] | None = {"per_page": PAGE_SIZE}

        while url:
            response = await self._send("GET", url, params=params)
            page = response.json() if response.content else []
            repos.extend(RepositorySummary.from_api_response(item) for item in page)

            next_link = response.links.get("next")
            url = next_link.get("url") if next_link else None
            # The next URL already carries per_page and page
            params = None

        logger.debug("Listed organization repositories", org=org, count=len(repos))
        return repos

    # =========================================================================
    # ACCOUNT AND REPOSITORY LOOKUPS
    # =========================================================================

    async def get_authenticated_user(self) -> dict[str, Any]:
        """
        Get the user the token belongs to.

        GitHub API: GET /user

        Used to verify a token before storing it. A bad token raises
        RemoteTreeError with kind UNAUTHENTICATED.
        """
        data = await self._request("GET", "/user")
        return data if isinstance(data, dict) else {}

    async def get_organization(self, org: str) -> dict[str, Any]:
        """
        Get organization details (login, id, avatar_url).

        GitHub API: GET /orgs/{org}
        """
        data = await self._request("GET", f"/orgs/{org}")
        return data if isinstance(data, dict) else {}

    async def get_repository(self, ref: RepositoryRef) -> dict[str, Any]:
        """
        Get repository details.

        GitHub API: GET /repos/{owner}/{repo}

        Raises:
            RemoteTreeError: kind NOT_FOUND when the repository does not exist
                             or the token cannot see it
        """
        data = await self._request("GET", f"/repos/{ref.org}/{ref.name}")
        return data if isinstance(data, dict) else {}

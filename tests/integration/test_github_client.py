# ABOUTME: Integration tests for the GitHub client against a live scratch repository
# ABOUTME: Requires GITHUB_TOKEN and GITOPS_TEST_REPO (owner/name) in the environment

"""Integration tests for GitHubClient and the domain workflows against GitHub.

These tests require:
- GITHUB_TOKEN with contents write access
- GITOPS_TEST_REPO naming a scratch repository ("acme/gitops-scratch")
- GITOPS_TEST_BRANCH (optional, default "main")

Every run commits under a fresh gitops-it-<id> name. Nothing is deleted
afterwards; point GITOPS_TEST_REPO at a repository you do not mind filling.
"""

from __future__ import annotations

import os
import uuid

import pytest
from pydantic import SecretStr

from gitops_mcp.config import GitHubSettings, GitOpsSettings, ServerSettings
from gitops_mcp.errors import ErrorKind, RemoteTreeError
from gitops_mcp.models import Domain, RepositoryRef
from gitops_mcp.sync import Absent, Present, exists
from gitops_mcp.templates import deployment_manifest
from gitops_mcp.utils.client import GitHubClient
from gitops_mcp.workflows import DomainWorkflow

TOKEN = os.environ.get("GITHUB_TOKEN", "")
TEST_REPO = os.environ.get("GITOPS_TEST_REPO", "")
TEST_BRANCH = os.environ.get("GITOPS_TEST_BRANCH", "main")

requires_github = pytest.mark.skipif(
    not (TOKEN and "/" in TEST_REPO),
    reason="GITHUB_TOKEN and GITOPS_TEST_REPO not set",
)


@pytest.fixture(scope="module")
def live_ref() -> RepositoryRef:
    org, name = TEST_REPO.split("/", 1)
    return RepositoryRef(org=org, name=name)


@pytest.fixture(scope="module")
def live_settings() -> ServerSettings:
    return ServerSettings(
        github=GitHubSettings(token=SecretStr(TOKEN)),
        gitops=GitOpsSettings(branch=TEST_BRANCH),
    )


@pytest.fixture
def run_name() -> str:
    return f"gitops-it-{uuid.uuid4().hex[:8]}"


@requires_github
@pytest.mark.integration
class TestGitHubClientIntegration:
    """Integration tests for GitHubClient against a live repository."""

    async def test_authenticated_user(self, live_settings):
        """Test the token is accepted."""
        async with GitHubClient(live_settings.github, live_settings.github.token) as client:
            user = await client.get_authenticated_user()

        assert user.get("login")

    async def test_missing_path_is_absent(self, live_settings, live_ref, run_name):
        """Test a path that was never written resolves Absent."""
        async with GitHubClient(live_settings.github, live_settings.github.token) as client:
            result = await exists(client, live_ref, f"{run_name}/nothing-here", TEST_BRANCH)

        assert result == Absent()

    async def test_bad_token_is_unauthenticated(self, live_settings, live_ref):
        """Test a bogus token is classified as unauthenticated."""
        async with GitHubClient(live_settings.github, SecretStr("ghp_not_a_token")) as client:
            with pytest.raises(RemoteTreeError) as exc_info:
                await client.read_path(live_ref, "")

        assert exc_info.value.kind is ErrorKind.UNAUTHENTICATED

    async def test_create_application_twice(self, live_settings, live_ref, run_name):
        """Test an app commit creates its folders once and upserts the leaf."""
        content = deployment_manifest(run_name, "nginx:1.25")

        async with GitHubClient(live_settings.github, live_settings.github.token) as client:
            workflow = DomainWorkflow.for_domain(Domain.APP, client, live_settings)
            first = await workflow.create(live_ref, run_name, content)
            second = await workflow.create(live_ref, run_name, deployment_manifest(run_name, "nginx:1.26"))
            leaf = await exists(client, live_ref, first.artifact.target_path, TEST_BRANCH)

        assert f"manifests/{run_name}" in first.created_directories
        assert second.created_directories == []
        assert isinstance(leaf, Present)
        assert "nginx:1.26" in leaf.entry.content

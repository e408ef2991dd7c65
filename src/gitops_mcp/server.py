# ABOUTME: FastMCP server initialization and main entry point
# ABOUTME: Exposes domain workflows and GitHub connection operations as MCP tools

"""GitOps MCP Server - stage manifests, pipelines and ArgoCD registrations in GitHub."""

from __future__ import annotations

import json
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, Any

import structlog
from mcp.server.fastmcp import Context, FastMCP
from pydantic import BaseModel, Field

from gitops_mcp.config import ServerSettings, load_settings
from gitops_mcp.connections import ClientFactory, ConnectionService
from gitops_mcp.errors import GitOpsError
from gitops_mcp.models import Domain, RepositoryRef
from gitops_mcp.store import ConnectionStore
from gitops_mcp.templates import SUPPORTED_LANGUAGES, bootstrap_files
from gitops_mcp.utils.client import GitHubClient
from gitops_mcp.utils.logging import AuditLogger, configure_logging, set_correlation_id
from gitops_mcp.utils.safety import SafetyGuard
from gitops_mcp.workflows import DOMAINS, DomainWorkflow, TemplateRequest, render_template

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

MCPContext = Context[Any, Any]
logger = structlog.get_logger(__name__)


@dataclass
class AppContext:
    """Everything a tool needs, built once per server run."""

    settings: ServerSettings
    connections: ConnectionService
    guard: SafetyGuard
    audit: AuditLogger


def build_app_context(
    settings: ServerSettings,
    client_factory: ClientFactory | None = None,
) -> AppContext:
    """Wire the collaborators; tests pass their own client_factory."""
    if client_factory is None:
        client_factory = partial(GitHubClient, settings.github)

    return AppContext(
        settings=settings,
        connections=ConnectionService(
            ConnectionStore(settings.gitops.store_path),
            settings,
            client_factory,
        ),
        guard=SafetyGuard(settings.security),
        audit=AuditLogger(settings.security.audit_log),
    )


@asynccontextmanager
async def lifespan(_server: FastMCP) -> AsyncIterator[AppContext]:
    """Load config and build the application context for the server's lifetime."""
    settings = load_settings()
    configure_logging(level=settings.log_level, json_output=settings.json_logs)
    logger.info(
        "Starting GitOps MCP Server",
        read_only=settings.security.read_only,
        branch=settings.gitops.branch,
        store=str(settings.gitops.store_path),
    )

    yield build_app_context(settings)

    logger.info("GitOps MCP Server stopped")


mcp = FastMCP("gitops-mcp", lifespan=lifespan)


def get_app(ctx: MCPContext) -> AppContext:
    """Application context injected by the lifespan."""
    return ctx.request_context.lifespan_context


def _begin(ctx: MCPContext) -> AppContext:
    set_correlation_id(str(ctx.request_id) if hasattr(ctx, "request_id") else "")
    return get_app(ctx)


# =============================================================================
# PARAMETER MODELS
# =============================================================================


class RepoParams(BaseModel):
    org: str = Field(description="GitHub organization (or user) owning the repository")
    repo: str = Field(description="Repository name")

    def ref(self) -> RepositoryRef:
        return RepositoryRef(org=self.org.strip(), name=self.repo.strip())


class DomainRepoParams(RepoParams):
    domain: Domain = Field(description="Artifact domain: app, pipeline, project, monitoring or ml")


class GetTemplateParams(BaseModel):
    """Parameters for get_template tool."""

    domain: Domain = Field(description="Artifact domain: app, pipeline, project, monitoring or ml")
    name: str | None = Field(default=None, description="Application, model or project name")
    image: str | None = Field(default=None, description="Container image (app, ml)")
    language: str | None = Field(
        default=None, description=f"Pipeline language: {', '.join(SUPPORTED_LANGUAGES)}"
    )
    docker_image: str | None = Field(default=None, description="Image the pipeline builds and pushes")
    registry: str | None = Field(default=None, description="Registry host (default: settings)")
    credential_id: str | None = Field(
        default=None, description="Jenkins registry credential id (default: settings)"
    )
    cluster_url: str | None = Field(
        default=None, description="Project destination cluster (default: settings)"
    )
    repo_url: str | None = Field(default=None, description="Repository URL the project watches")

    def request(self) -> TemplateRequest:
        return TemplateRequest(**self.model_dump(exclude={"domain"}))


class CreateArtifactParams(DomainRepoParams):
    """Parameters for create_artifact tool."""

    name: str | None = Field(
        default=None, description="Artifact name (ignored for monitoring, always 'grafana')"
    )
    content: str = Field(description="File content, usually from get_template")


class RegisterParams(DomainRepoParams):
    """Parameters for register_with_deployment_controller tool."""

    name: str | None = Field(default=None, description="Artifact name (ignored for monitoring)")
    dest_server: str | None = Field(default=None, description="ArgoCD destination server")
    dest_namespace: str | None = Field(default=None, description="ArgoCD destination namespace")


class SetTokenParams(BaseModel):
    token: str = Field(description="GitHub personal access token with repo scope")


class OrgParams(BaseModel):
    org: str = Field(description="GitHub organization")


class FileContentParams(RepoParams):
    path: str = Field(description="File path inside the repository")


class LanguageParams(BaseModel):
    language: str = Field(description=f"One of: {', '.join(SUPPORTED_LANGUAGES)}")


class BootstrapFilesParams(RepoParams):
    """Parameters for add_bootstrap_files tool."""

    dockerfile: str | None = Field(default=None, description="Dockerfile content")
    jenkinsfile: str | None = Field(default=None, description="Jenkinsfile content")


# =============================================================================
# DOMAIN WORKFLOW TOOLS
# =============================================================================


@mcp.tool()
async def check_folder_exists(params: DomainRepoParams, ctx: MCPContext) -> str:
    """
    Check whether a domain's folder (manifests, cicd, projects, monitoring,
    ml-models) exists in a repository.
    """
    app = _begin(ctx)
    ref = params.ref()
    folder = DOMAINS[params.domain].folder
    target = f"{ref.full_name}:{folder}"

    blocked = app.guard.check_read_operation("check_folder_exists")
    if blocked:
        app.audit.log_blocked("check_folder_exists", target, blocked.reason)
        return blocked.format_message()

    try:
        async with app.connections.open_client() as client:
            workflow = DomainWorkflow.for_domain(params.domain, client, app.settings)
            found = await workflow.check_folder_exists(ref)

        app.audit.log_read("check_folder_exists", target)
        if found:
            return f"Folder '{folder}' exists in {ref.full_name}"
        return f"Folder '{folder}' not found in {ref.full_name}. It is created with the first artifact."

    except GitOpsError as e:
        app.audit.log_error("check_folder_exists", target, str(e))
        return str(e)


@mcp.tool()
async def list_existing(params: DomainRepoParams, ctx: MCPContext) -> str:
    """
    List artifacts already committed for a domain: application and model
    directories, pipeline scripts, or project files.
    """
    app = _begin(ctx)
    ref = params.ref()
    target = f"{ref.full_name}:{params.domain.value}"

    blocked = app.guard.check_read_operation("list_existing")
    if blocked:
        app.audit.log_blocked("list_existing", target, blocked.reason)
        return blocked.format_message()

    try:
        async with app.connections.open_client() as client:
            workflow = DomainWorkflow.for_domain(params.domain, client, app.settings)
            entries = await workflow.list_existing(ref)

        app.audit.log_read("list_existing", target)
        if not entries:
            return f"No {workflow.descriptor.label} artifacts found in {ref.full_name}"

        lines = [f"Found {len(entries)} {workflow.descriptor.label} artifact(s):", ""]
        for entry in entries:
            lines.append(f"- {entry.name} ({entry.path}) {entry.url}".rstrip())
        return "\n".join(lines)

    except GitOpsError as e:
        app.audit.log_error("list_existing", target, str(e))
        return str(e)


@mcp.tool()
async def get_template(params: GetTemplateParams, ctx: MCPContext) -> str:
    """
    Render the starting content for an artifact without committing anything.

    app/ml need name and image; pipeline needs language and docker_image;
    project needs name and repo_url; monitoring needs nothing.
    """
    app = _begin(ctx)
    target = params.domain.value

    blocked = app.guard.check_read_operation("get_template")
    if blocked:
        app.audit.log_blocked("get_template", target, blocked.reason)
        return blocked.format_message()

    try:
        content = render_template(params.domain, params.request(), app.settings)
        app.audit.log_read("get_template", target)
        return content

    except GitOpsError as e:
        app.audit.log_error("get_template", target, str(e))
        return str(e)


@mcp.tool()
async def create_artifact(params: CreateArtifactParams, ctx: MCPContext) -> str:
    """
    Commit an artifact, creating its folders first.

    Apps, pipelines, monitoring and ML models overwrite an existing file.
    Projects are refused if projects/<name>.yaml already exists.
    """
    app = _begin(ctx)
    ref = params.ref()
    target = f"{ref.full_name}:{params.domain.value}/{params.name or ''}".rstrip("/")

    blocked = app.guard.check_write_operation("create_artifact")
    if blocked:
        app.audit.log_blocked("create_artifact", target, blocked.reason)
        return blocked.format_message()

    try:
        async with app.connections.open_client() as client:
            workflow = DomainWorkflow.for_domain(params.domain, client, app.settings)
            result = await workflow.create(ref, params.name, params.content)

        app.audit.log_write(
            "create_artifact",
            f"{ref.full_name}:{result.artifact.target_path}",
            details={"url": result.url},
        )

        lines = [
            f"Created {workflow.descriptor.label} '{result.artifact.name}'",
            f"Path: {result.artifact.target_path}",
            f"URL: {result.url}",
        ]
        if result.created_directories:
            lines.append(f"New folders: {', '.join(result.created_directories)}")
        if workflow.descriptor.registers:
            lines.extend(["", "Use register_with_deployment_controller to deploy it with ArgoCD."])
        return "\n".join(lines)

    except GitOpsError as e:
        app.audit.log_error("create_artifact", target, str(e))
        return str(e)


@mcp.tool()
async def register_with_deployment_controller(params: RegisterParams, ctx: MCPContext) -> str:
    """
    Register an app, monitoring stack or ML model with ArgoCD by writing
    apps/<name>/config_dir.json, which the project's ApplicationSet watches.
    """
    app = _begin(ctx)
    ref = params.ref()
    target = f"{ref.full_name}:apps/{params.name or params.domain.value}"

    blocked = app.guard.check_write_operation("register_with_deployment_controller")
    if blocked:
        app.audit.log_blocked("register_with_deployment_controller", target, blocked.reason)
        return blocked.format_message()

    try:
        async with app.connections.open_client() as client:
            workflow = DomainWorkflow.for_domain(params.domain, client, app.settings)
            result = await workflow.register(
                ref,
                params.name,
                dest_server=params.dest_server,
                dest_namespace=params.dest_namespace,
            )

        app.audit.log_write(
            "register_with_deployment_controller",
            f"{ref.full_name}:{result.artifact.target_path}",
            details={"url": result.url},
        )
        return (
            f"Registered '{result.artifact.name}' with ArgoCD\n"
            f"Config: {result.artifact.target_path}\n"
            f"URL: {result.url}\n\n"
            f"{result.artifact.content}"
        )

    except GitOpsError as e:
        app.audit.log_error("register_with_deployment_controller", target, str(e))
        return str(e)


# =============================================================================
# GITHUB CONNECTION TOOLS
# =============================================================================


@mcp.tool()
async def check_token(ctx: MCPContext) -> str:
    """Report whether a GitHub token is configured and still valid."""
    app = _begin(ctx)

    blocked = app.guard.check_read_operation("check_token")
    if blocked:
        app.audit.log_blocked("check_token", "token", blocked.reason)
        return blocked.format_message()

    status = await app.connections.check_token()
    app.audit.log_read("check_token", "token")
    lines = [
        f"Configured: {status.configured}",
        f"Valid: {status.valid}",
        status.message,
    ]
    if status.login:
        lines.append(f"Authenticated as: {status.login}")
    return "\n".join(lines)


@mcp.tool()
async def set_token(params: SetTokenParams, ctx: MCPContext) -> str:
    """Verify a GitHub token and store it for all later calls."""
    app = _begin(ctx)

    blocked = app.guard.check_write_operation("set_token")
    if blocked:
        app.audit.log_blocked("set_token", "token", blocked.reason)
        return blocked.format_message()

    try:
        status = await app.connections.set_token(params.token)
        app.audit.log_write("set_token", "token", details={"login": status.login})
        return f"{status.message} (authenticated as {status.login})"

    except GitOpsError as e:
        app.audit.log_error("set_token", "token", str(e))
        return str(e)


@mcp.tool()
async def connect_organization(params: OrgParams, ctx: MCPContext) -> str:
    """Connect a GitHub organization and cache its repository list."""
    app = _begin(ctx)
    target = f"org={params.org}"

    blocked = app.guard.check_write_operation("connect_organization")
    if blocked:
        app.audit.log_blocked("connect_organization", target, blocked.reason)
        return blocked.format_message()

    try:
        result = await app.connections.connect_organization(params.org)
        conn = result.connection
        app.audit.log_write(
            "connect_organization",
            target,
            "existing" if result.existing else "success",
            {"repos": conn.repos_count},
        )
        state = "Already connected" if result.existing else "Connected"
        return (
            f"{state}: {conn.org_name} (id {conn.org_id})\n"
            f"Repositories: {conn.repos_count}\n"
            f"Connected at: {conn.connected_at.isoformat()}"
        )

    except GitOpsError as e:
        app.audit.log_error("connect_organization", target, str(e))
        return str(e)


@mcp.tool()
async def list_connections(ctx: MCPContext) -> str:
    """List connected organizations, most recent first."""
    app = _begin(ctx)

    blocked = app.guard.check_read_operation("list_connections")
    if blocked:
        app.audit.log_blocked("list_connections", "all", blocked.reason)
        return blocked.format_message()

    connections = app.connections.list_connections()
    app.audit.log_read("list_connections", "all")
    if not connections:
        return "No organizations connected. Use connect_organization first."

    lines = [f"{len(connections)} connected organization(s):", ""]
    for conn in connections:
        lines.append(
            f"- {conn.org_name}: {conn.repos_count} repositories, "
            f"connected {conn.connected_at.isoformat()}"
        )
    return "\n".join(lines)


@mcp.tool()
async def delete_connection(params: OrgParams, ctx: MCPContext) -> str:
    """Forget a connected organization and its cached repository list."""
    app = _begin(ctx)
    target = f"org={params.org}"

    blocked = app.guard.check_write_operation("delete_connection")
    if blocked:
        app.audit.log_blocked("delete_connection", target, blocked.reason)
        return blocked.format_message()

    try:
        app.connections.delete_connection(params.org)
        app.audit.log_write("delete_connection", target)
        return f"Connection for '{params.org}' deleted"

    except GitOpsError as e:
        app.audit.log_error("delete_connection", target, str(e))
        return str(e)


@mcp.tool()
async def list_repositories(params: OrgParams, ctx: MCPContext) -> str:
    """List an organization's repositories (cached when connected)."""
    app = _begin(ctx)
    target = f"org={params.org}"

    blocked = app.guard.check_read_operation("list_repositories")
    if blocked:
        app.audit.log_blocked("list_repositories", target, blocked.reason)
        return blocked.format_message()

    try:
        listing = await app.connections.list_repositories(params.org)
        app.audit.log_read("list_repositories", target)
        if not listing.repos:
            return f"No repositories found for {params.org}"

        lines = [f"{len(listing.repos)} repositories (source: {listing.source}):", ""]
        for repo in listing.repos:
            visibility = "private" if repo.private else "public"
            lines.append(f"- {repo.full_name} [{visibility}] default={repo.default_branch}")
        return "\n".join(lines)

    except GitOpsError as e:
        app.audit.log_error("list_repositories", target, str(e))
        return str(e)


@mcp.tool()
async def get_file_content(params: FileContentParams, ctx: MCPContext) -> str:
    """Read a file from a repository."""
    app = _begin(ctx)
    ref = params.ref()
    target = f"{ref.full_name}:{params.path}"

    blocked = app.guard.check_read_operation("get_file_content")
    if blocked:
        app.audit.log_blocked("get_file_content", target, blocked.reason)
        return blocked.format_message()

    try:
        file = await app.connections.get_file_content(ref, params.path)
        app.audit.log_read("get_file_content", target)
        return f"# {file.path} (sha {file.sha}, {file.size} chars)\n\n{file.content}"

    except GitOpsError as e:
        app.audit.log_error("get_file_content", target, str(e))
        return str(e)


@mcp.tool()
async def get_bootstrap_templates(params: LanguageParams, ctx: MCPContext) -> str:
    """Dockerfile and Jenkinsfile starting points for java, python or nodejs."""
    app = _begin(ctx)

    blocked = app.guard.check_read_operation("get_bootstrap_templates")
    if blocked:
        app.audit.log_blocked("get_bootstrap_templates", params.language, blocked.reason)
        return blocked.format_message()

    try:
        files = bootstrap_files(params.language)
        app.audit.log_read("get_bootstrap_templates", files.language)
        return (
            f"## Dockerfile ({files.dockerfile_description})\n\n{files.dockerfile}\n"
            f"## Jenkinsfile ({files.jenkinsfile_description})\n\n{files.jenkinsfile}"
        )

    except GitOpsError as e:
        app.audit.log_error("get_bootstrap_templates", params.language, str(e))
        return str(e)


@mcp.tool()
async def add_bootstrap_files(params: BootstrapFilesParams, ctx: MCPContext) -> str:
    """Commit a Dockerfile and/or Jenkinsfile to the repository root."""
    app = _begin(ctx)
    ref = params.ref()
    target = ref.full_name

    blocked = app.guard.check_write_operation("add_bootstrap_files")
    if blocked:
        app.audit.log_blocked("add_bootstrap_files", target, blocked.reason)
        return blocked.format_message()

    try:
        results = await app.connections.add_bootstrap_files(
            ref, dockerfile=params.dockerfile, jenkinsfile=params.jenkinsfile
        )
        app.audit.log_write(
            "add_bootstrap_files",
            target,
            details={r.file: r.status for r in results},
        )
        lines = ["Files processed:", ""]
        for r in results:
            if r.status == "created":
                lines.append(f"- {r.file}: created {r.url}")
            else:
                lines.append(f"- {r.file}: error {r.error}")
        return "\n".join(lines)

    except GitOpsError as e:
        app.audit.log_error("add_bootstrap_files", target, str(e))
        return str(e)


# =============================================================================
# MCP RESOURCES
# =============================================================================


@mcp.resource("gitops://settings")
async def get_settings_resource() -> str:
    """Current GitOps defaults and security settings."""
    settings = get_app(mcp.get_context()).settings
    gitops, sec = settings.gitops, settings.security

    return (
        "GitOps Settings:\n"
        f"  GitHub API: {settings.github.api_url}\n"
        f"  Branch: {gitops.branch}\n"
        f"  Default destination: {gitops.dest_namespace}@{gitops.dest_server}\n"
        f"  Registry: {gitops.registry} (credential {gitops.registry_credential_id})\n"
        "Security Settings:\n"
        f"  Read-only mode: {sec.read_only}\n"
        f"  Rate limit: {sec.rate_limit_calls} calls per {sec.rate_limit_window}s"
    )


@mcp.resource("gitops://domains")
async def get_domains_resource() -> str:
    """Where each domain keeps its files, as JSON."""
    domains = {
        d.domain.value: {
            "folder": d.folder,
            "leaf": d.leaf_pattern,
            "conflict_policy": d.conflict_policy.value,
            "registers": d.registers,
        }
        for d in DOMAINS.values()
    }
    return json.dumps(domains, indent=2)


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main() -> None:
    """Run the GitOps MCP server."""
    configure_logging(level="INFO")
    logger.info("GitOps MCP Server starting")

    try:
        mcp.run()
    except KeyboardInterrupt:
        logger.info("Server interrupted")
        sys.exit(0)
    except Exception as e:
        logger.error("Server error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()

# ABOUTME: Domain workflows for GitOps MCP Server
# ABOUTME: One generic create/list/register flow configured by five domain descriptors

"""
Domain workflows: apps, pipelines, projects, monitoring, ML models.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

All five domains do the same thing with different paths:

    check folder  ->  list what is there  ->  preview a template
        ->  create (ensure directories, write the leaf)
        ->  register with ArgoCD (write apps/<name>/config_dir.json)

So there is ONE workflow class, DomainWorkflow, and five DomainDescriptor
values that say where each domain keeps its files and how it behaves:

    Domain      Leaf                                  On existing leaf
    ------      ----                                  ----------------
    app         manifests/<name>/deployment.yaml      overwrite
    pipeline    cicd/<name>.groovy                    overwrite
    project     projects/<name>.yaml                  ConflictError
    monitoring  monitoring/grafana/deployment.yaml    overwrite
    ml          ml-models/<name>/deployment.yaml      overwrite

=============================================================================
CREATE, STEP BY STEP
=============================================================================

    1. Validate the name and the content (YAML must parse)
    2. Ensure every ancestor directory, shallowest first
    3. Projects only: resolve the leaf; Present -> ConflictError, no write
    4. Write the leaf (one commit)

Nothing is retried and nothing is rolled back. If step 4 fails after step 2
created directories, the directories stay; running create again finds them
Present and skips straight to the leaf.

=============================================================================
THE CONFLICT WINDOW
=============================================================================

The project check (step 3) and the write (step 4) are two separate requests
with no lock between them. Two callers creating the same project at the same
moment can both see Absent and both write; the later commit wins. The check
catches the common case (creating a project twice by mistake), not a race.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

import structlog

from gitops_mcp import templates
from gitops_mcp.errors import (
    ConflictError,
    InvalidFormatError,
    MissingManifestError,
)
from gitops_mcp.models import Domain, ManifestArtifact, SyncOutcome
from gitops_mcp.sync import Absent, Failure, Present, ensure_ancestors, exists

if TYPE_CHECKING:
    from gitops_mcp.config import ServerSettings
    from gitops_mcp.models import PathEntry, RepositoryRef
    from gitops_mcp.utils.client import RemoteTree

logger = structlog.get_logger(__name__)

REGISTRATION_FOLDER = "apps"


class ConflictPolicy(str, Enum):
    """What create does when the leaf file is already there."""

    UPSERT = "upsert"
    REJECT = "reject"


class ListMode(str, Enum):
    DIRECTORIES = "directories"
    FILES = "files"


class ContentFormat(str, Enum):
    YAML = "yaml"
    TEXT = "text"


@dataclass(frozen=True)
class TemplateRequest:
    """Parameters for get_template; each domain reads the ones it needs."""

    name: str | None = None
    image: str | None = None
    language: str | None = None
    docker_image: str | None = None
    registry: str | None = None
    credential_id: str | None = None
    cluster_url: str | None = None
    repo_url: str | None = None


Renderer = Callable[[TemplateRequest, "ServerSettings"], str]


def _render_app(req: TemplateRequest, settings: ServerSettings) -> str:
    return templates.deployment_manifest(req.name, req.image, templates.APP_PORT)


def _render_ml(req: TemplateRequest, settings: ServerSettings) -> str:
    return templates.deployment_manifest(req.name, req.image, templates.ML_PORT)


def _render_monitoring(req: TemplateRequest, settings: ServerSettings) -> str:
    return templates.grafana_manifest()


def _render_project(req: TemplateRequest, settings: ServerSettings) -> str:
    return templates.project_document(
        req.name,
        req.cluster_url or settings.gitops.dest_server,
        req.repo_url,
    )


def _render_pipeline(req: TemplateRequest, settings: ServerSettings) -> str:
    return templates.pipeline_script(
        req.language,
        req.docker_image or req.image,
        req.registry or settings.gitops.registry,
        req.credential_id or settings.gitops.registry_credential_id,
    )


@dataclass(frozen=True)
class DomainDescriptor:
    """
    Everything that differs between domains.

    leaf_pattern is formatted with the artifact name; its parent directory
    is what a registration points ArgoCD at.
    """

    domain: Domain
    folder: str
    label: str
    leaf_pattern: str
    render: Renderer
    list_mode: ListMode
    extensions: tuple[str, ...] = ()
    conflict_policy: ConflictPolicy = ConflictPolicy.UPSERT
    registers: bool = False
    manifest_required_for_registration: bool = False
    verify_repository: bool = False
    fixed_name: str | None = None
    content_format: ContentFormat = ContentFormat.YAML

    def resolve_name(self, name: str | None) -> str:
        if self.fixed_name:
            return self.fixed_name
        name = (name or "").strip()
        for ext in self.extensions:
            if name.endswith(ext):
                name = name[: -len(ext)]
                break
        if not name:
            raise InvalidFormatError(f"A {self.label} name is required")
        if "/" in name or name in (".", ".."):
            raise InvalidFormatError(f"Invalid {self.label} name '{name}'", "names cannot contain '/'")
        return name

    def leaf_path(self, name: str) -> str:
        return self.leaf_pattern.format(name=name)

    def manifest_dir(self, name: str) -> str:
        return self.leaf_path(name).rsplit("/", 1)[0]


DOMAINS: dict[Domain, DomainDescriptor] = {
    Domain.APP: DomainDescriptor(
        domain=Domain.APP,
        folder="manifests",
        label="application",
        leaf_pattern="manifests/{name}/deployment.yaml",
        render=_render_app,
        list_mode=ListMode.DIRECTORIES,
        registers=True,
    ),
    Domain.PIPELINE: DomainDescriptor(
        domain=Domain.PIPELINE,
        folder="cicd",
        label="pipeline",
        leaf_pattern="cicd/{name}.groovy",
        render=_render_pipeline,
        list_mode=ListMode.FILES,
        extensions=(".groovy",),
        content_format=ContentFormat.TEXT,
    ),
    Domain.PROJECT: DomainDescriptor(
        domain=Domain.PROJECT,
        folder="projects",
        label="project",
        leaf_pattern="projects/{name}.yaml",
        render=_render_project,
        list_mode=ListMode.FILES,
        extensions=(".yaml", ".yml"),
        conflict_policy=ConflictPolicy.REJECT,
        verify_repository=True,
    ),
    Domain.MONITORING: DomainDescriptor(
        domain=Domain.MONITORING,
        folder="monitoring",
        label="monitoring stack",
        leaf_pattern="monitoring/{name}/deployment.yaml",
        render=_render_monitoring,
        list_mode=ListMode.DIRECTORIES,
        registers=True,
        manifest_required_for_registration=True,
        fixed_name="grafana",
    ),
    Domain.ML: DomainDescriptor(
        domain=Domain.ML,
        folder="ml-models",
        label="ML model",
        leaf_pattern="ml-models/{name}/deployment.yaml",
        render=_render_ml,
        list_mode=ListMode.DIRECTORIES,
        registers=True,
    ),
}


def parse_domain(value: str | Domain) -> Domain:
    """Domain for a tool argument, or InvalidFormatError listing the valid ones."""
    try:
        return Domain(value.strip().lower() if isinstance(value, str) else value)
    except ValueError:
        valid = ", ".join(d.value for d in Domain)
        raise InvalidFormatError(f"Unknown domain '{value}'", f"valid domains: {valid}") from None


def render_template(
    domain: str | Domain,
    request: TemplateRequest,
    settings: ServerSettings,
) -> str:
    """Render a domain's template without a remote tree."""
    return DOMAINS[parse_domain(domain)].render(request, settings)


@dataclass(frozen=True)
class CommitResult:
    """A leaf or registration file committed by a workflow."""

    artifact: ManifestArtifact
    url: str
    directories: list[SyncOutcome] = field(default_factory=list)

    @property
    def created_directories(self) -> list[str]:
        return [d.path for d in self.directories if d.created]


class DomainWorkflow:
    """
    Create, list and register the artifacts of one domain.

    The remote tree is passed in, never looked up, so the same workflow
    runs against GitHubClient in production and an in-memory tree in tests.
    """

    def __init__(
        self,
        descriptor: DomainDescriptor,
        tree: RemoteTree,
        settings: ServerSettings,
    ) -> None:
        self.descriptor = descriptor
        self._tree = tree
        self._settings = settings

    @classmethod
    def for_domain(
        cls,
        domain: str | Domain,
        tree: RemoteTree,
        settings: ServerSettings,
    ) -> DomainWorkflow:
        return cls(DOMAINS[parse_domain(domain)], tree, settings)

    @property
    def branch(self) -> str:
        return self._settings.gitops.branch

    def _log(self, ref: RepositoryRef, **kw: object) -> Any:
        return logger.bind(domain=self.descriptor.domain.value, repo=ref.full_name, **kw)

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def check_folder_exists(self, ref: RepositoryRef) -> bool:
        """
        Whether the domain's top-level folder exists.

        For projects the repository is looked up first, so a missing
        repository fails with a not_found error instead of answering False.
        """
        if self.descriptor.verify_repository:
            await self._tree.get_repository(ref)

        match await exists(self._tree, ref, self.descriptor.folder, self.branch):
            case Present():
                return True
            case Absent():
                return False
            case Failure(error=error):
                raise error

    async def list_existing(self, ref: RepositoryRef) -> list[PathEntry]:
        """
        Artifacts already in the domain folder.

        Nested domains list their subdirectories, flat domains their files
        with a matching extension. A missing folder lists as empty.
        """
        match await exists(self._tree, ref, self.descriptor.folder, self.branch):
            case Absent():
                return []
            case Failure(error=error):
                raise error
            case Present(entry=list() as entries):
                pass
            case Present():
                # A file sits where the folder should be
                return []

        if self.descriptor.list_mode is ListMode.DIRECTORIES:
            return [e for e in entries if e.is_directory]
        return [
            e
            for e in entries
            if not e.is_directory and e.name.endswith(self.descriptor.extensions)
        ]

    def get_template(self, request: TemplateRequest) -> str:
        """Render the domain's template. Pure; nothing is read or written."""
        return render_template(self.descriptor.domain, request, self._settings)

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    async def create(
        self,
        ref: RepositoryRef,
        name: str | None,
        content: str,
    ) -> CommitResult:
        """
        Commit an artifact, creating its directories first.

        Raises:
            InvalidFormatError: empty name or content, or content that does
                                not parse as YAML for YAML domains
            ConflictError: project already exists (nothing written)
            RemoteTreeError: any remote failure, unchanged
        """
        name = self.descriptor.resolve_name(name)
        templates.require(content=content)
        if self.descriptor.content_format is ContentFormat.YAML:
            templates.validate_yaml(content)

        leaf = self.descriptor.leaf_path(name)
        log = self._log(ref, name=name, path=leaf)

        directories = await ensure_ancestors(self._tree, ref, leaf, self.branch)

        if self.descriptor.conflict_policy is ConflictPolicy.REJECT:
            match await exists(self._tree, ref, leaf, self.branch):
                case Present():
                    log.info("Rejected existing artifact")
                    raise ConflictError(f'{self.descriptor.label.capitalize()} "{name}" already exists')
                case Failure(error=error):
                    raise error
                case Absent():
                    pass

        result = await self._tree.write_path(
            ref,
            leaf,
            content,
            f"Add {self.descriptor.label} {name}",
            self.branch,
        )
        log.info("Created artifact", url=result.url)

        return CommitResult(
            artifact=ManifestArtifact(
                domain=self.descriptor.domain,
                name=name,
                content=content,
                target_path=leaf,
            ),
            url=result.url,
            directories=directories,
        )

    async def register(
        self,
        ref: RepositoryRef,
        name: str | None,
        dest_server: str | None = None,
        dest_namespace: str | None = None,
    ) -> CommitResult:
        """
        Write apps/<name>/config_dir.json so the project's ApplicationSet
        deploys the artifact.

        Registration always overwrites: re-registering with a different
        destination simply updates it.

        Raises:
            InvalidFormatError: the domain has nothing to register
            MissingManifestError: monitoring manifests not created yet
            RemoteTreeError: any remote failure, unchanged
        """
        if not self.descriptor.registers:
            raise InvalidFormatError(
                f"{self.descriptor.label.capitalize()} artifacts are not registered with ArgoCD"
            )

        name = self.descriptor.resolve_name(name)
        log = self._log(ref, name=name)

        if self.descriptor.manifest_required_for_registration:
            match await exists(self._tree, ref, self.descriptor.leaf_path(name), self.branch):
                case Absent():
                    raise MissingManifestError(
                        f"{self.descriptor.label.capitalize()} manifests not found",
                        "create them first",
                    )
                case Failure(error=error):
                    raise error
                case Present():
                    pass

        content = templates.registration_config(
            app_name=name,
            dest_server=dest_server or self._settings.gitops.dest_server,
            dest_namespace=dest_namespace or self._settings.gitops.dest_namespace,
            src_path=f"{self.descriptor.manifest_dir(name)}/",
            repo_url=self._settings.github.clone_url(ref.org, ref.name),
        )
        path = f"{REGISTRATION_FOLDER}/{name}/config_dir.json"

        directories = await ensure_ancestors(self._tree, ref, path, self.branch)
        result = await self._tree.write_path(
            ref,
            path,
            content,
            f"Register {name} with ArgoCD",
            self.branch,
        )
        log.info("Registered with ArgoCD", path=path, url=result.url)

        return CommitResult(
            artifact=ManifestArtifact(
                domain=self.descriptor.domain,
                name=name,
                content=content,
                target_path=path,
            ),
            url=result.url,
            directories=directories,
        )

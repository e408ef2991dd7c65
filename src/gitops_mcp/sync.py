# ABOUTME: Existence resolution and idempotent directory creation in the remote tree
# ABOUTME: Translates "not found" into a value and materializes folders with marker files

"""
The sync protocol every workflow shares.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

Two operations:

1. exists(): ask the remote tree whether a path is there. The answer is one
   of three VALUES, never an exception for the "not there" case:

       Present(entry)        -> the path exists, here is what it is
       Absent()              -> the remote tree said 404
       Failure(kind, error)  -> anything else (auth, permission, transport)

2. ensure_directory(): make sure a directory exists. Git has no empty
   directories, so "create a directory" means "commit a zero-byte marker
   file inside it":

       manifests/billing/      ->  manifests/billing/.keep
                                   commit message: "create manifests/billing"

=============================================================================
WHY IS "NOT FOUND" A VALUE HERE?
=============================================================================

Absence is the normal answer to "does manifests/billing exist yet?". Every
caller has to branch on it, and the branch has to be exhaustive:

    match await exists(tree, ref, path, branch):
        case Present(entry=entry): ...
        case Absent(): ...
        case Failure(error=error): raise error

This is the ONLY place a NOT_FOUND RemoteTreeError is caught. Everything
above this module handles real failures only.

=============================================================================
IDEMPOTENCE AND ITS LIMIT
=============================================================================

Running ensure_directory twice on the same path writes once: the second run
resolves Present and returns without touching the tree.

There is no lock between the existence check and the write. Two callers
racing on the same new directory can both resolve Absent and both commit a
marker; the second commit overwrites the first with identical content, so
the tree ends up the same, with one extra commit in the history.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from gitops_mcp.errors import ErrorKind, RemoteTreeError
from gitops_mcp.models import SyncOutcome

if TYPE_CHECKING:
    from gitops_mcp.models import PathEntry, RepositoryRef
    from gitops_mcp.utils.client import RemoteTree

logger = structlog.get_logger(__name__)

# Zero-byte file committed to materialize a directory
MARKER_FILE = ".keep"


# =============================================================================
# EXISTENCE RESULT
# =============================================================================


@dataclass(frozen=True)
class Present:
    """The path exists."""

    entry: PathEntry | list[PathEntry]

    @property
    def url(self) -> str | None:
        if isinstance(self.entry, list):
            return None
        return self.entry.url or None


@dataclass(frozen=True)
class Absent:
    """The remote tree reported the path as missing."""


@dataclass(frozen=True)
class Failure:
    """The remote tree could not answer."""

    kind: ErrorKind
    error: RemoteTreeError


ExistenceResult = Present | Absent | Failure


# =============================================================================
# RESOLVER
# =============================================================================


async def exists(
    tree: RemoteTree,
    ref: RepositoryRef,
    path: str,
    branch: str | None = None,
) -> ExistenceResult:
    """
    Resolve whether a path exists.

    Args:
        tree: Remote tree to ask
        ref: Repository
        path: File or directory path
        branch: Ref to read (default branch when None)

    Returns:
        Present, Absent or Failure. Never raises RemoteTreeError.
    """
    try:
        entry = await tree.read_path(ref, path, branch)
    except RemoteTreeError as e:
        if e.kind is ErrorKind.NOT_FOUND:
            return Absent()
        logger.debug("Existence check failed", repo=ref.full_name, path=path, kind=e.kind.value)
        return Failure(kind=e.kind, error=e)
    return Present(entry)


# =============================================================================
# ENSURER
# =============================================================================


def marker_path(dir_path: str) -> str:
    """Path of the marker file that materializes dir_path."""
    return f"{dir_path.strip('/')}/{MARKER_FILE}"


def ancestors(leaf_path: str) -> list[str]:
    """
    Every proper ancestor directory of leaf_path, shallowest first.

        ancestors("manifests/billing/deployment.yaml")
        -> ["manifests", "manifests/billing"]
    """
    parts = [p for p in leaf_path.strip("/").split("/") if p]
    return ["/".join(parts[:i]) for i in range(1, len(parts))]


async def ensure_directory(
    tree: RemoteTree,
    ref: RepositoryRef,
    dir_path: str,
    branch: str,
) -> SyncOutcome:
    """
    Make sure dir_path exists, committing a marker file if it does not.

    Args:
        tree: Remote tree to write into
        ref: Repository
        dir_path: Directory to ensure ("manifests", "manifests/billing")
        branch: Branch to read and commit on

    Returns:
        SyncOutcome with created=True when a marker was committed,
        already_existed=True otherwise

    Raises:
        RemoteTreeError: When the existence check or the write fails
    """
    dir_path = dir_path.strip("/")
    log = logger.bind(repo=ref.full_name, path=dir_path)

    match await exists(tree, ref, dir_path, branch):
        case Present() as present:
            log.debug("Directory already exists")
            return SyncOutcome.existing(dir_path, present.url)
        case Absent():
            result = await tree.write_path(
                ref,
                marker_path(dir_path),
                "",
                f"create {dir_path}",
                branch,
            )
            log.info("Created directory", marker=MARKER_FILE)
            return SyncOutcome.new(dir_path, result.url or None)
        case Failure(error=error):
            raise error


async def ensure_ancestors(
    tree: RemoteTree,
    ref: RepositoryRef,
    leaf_path: str,
    branch: str,
) -> list[SyncOutcome]:
    """
    Ensure every ancestor directory of leaf_path, shallowest first.

    A shallower directory is always resolved before a deeper one, so a
    failure part way leaves the tree with a valid prefix of the hierarchy.
    """
    return [await ensure_directory(tree, ref, d, branch) for d in ancestors(leaf_path)]

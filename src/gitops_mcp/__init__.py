# ABOUTME: GitOps MCP Server package initialization
# ABOUTME: Exposes version information and describes the package layout

"""
GitOps MCP Server - stage Kubernetes manifests, Jenkins pipelines and ArgoCD
registrations in GitHub repositories via Model Context Protocol.

=============================================================================
WHAT DOES IT DO?
=============================================================================

An AI assistant connected to this server can, for a GitHub repository:

1. CREATE Deployment manifests for applications and ML model servers
2. CREATE ArgoCD projects (an AppProject plus an ApplicationSet)
3. CREATE Jenkins pipeline scripts for java, python and nodejs
4. CREATE a Grafana monitoring deployment
5. REGISTER any of the deployments with ArgoCD

Every one of those is a commit. The server never talks to a cluster: ArgoCD
picks the files up from Git on its own.

=============================================================================
PACKAGE STRUCTURE OVERVIEW
=============================================================================

gitops_mcp/
├── __init__.py          <- YOU ARE HERE: Package entry point
├── config.py            <- Configuration management (env vars, settings)
├── errors.py            <- Exception taxonomy
├── models.py            <- Repository refs, path entries, artifacts
├── sync.py              <- Existence checks and idempotent folder creation
├── templates.py         <- Manifest, project, pipeline and bootstrap templates
├── workflows.py         <- One workflow, five domain descriptors
├── store.py             <- Token and organization connection cache
├── connections.py       <- Token verification, org connections, file reads
├── server.py            <- Main MCP server with all tools defined
└── utils/
    ├── __init__.py      <- Utils subpackage marker
    ├── client.py        <- HTTP client for the GitHub contents API
    ├── logging.py       <- Structured logging with audit trails
    └── safety.py        <- Read-only guard and rate limiting
"""

__version__ = "0.1.0"

__all__ = ["__version__"]

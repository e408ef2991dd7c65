# ABOUTME: Utilities package initialization for GitOps MCP Server
# ABOUTME: Contains shared utilities for the GitHub client, safety, and logging

"""
GitOps MCP Utilities Package

Shared utilities:
    - client.py: GitHub contents API client
    - safety.py: Read-only mode and rate limiting
    - logging.py: Structured logging with correlation IDs
"""

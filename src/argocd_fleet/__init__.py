# ABOUTME: Argo CD fleet client package initialization
# ABOUTME: Exposes version information

"""
argocd-fleet - Locate, create, delete and resync applications across many
independent Argo CD instances.

=============================================================================
PACKAGE STRUCTURE OVERVIEW
=============================================================================

argocd_fleet/
├── __init__.py          <- Package entry point
├── config.py            <- Settings: credentials, instances, security modes
├── registry.py          <- Ordered, read-only set of configured instances
├── models.py            <- AppQuery, SyncResult, FleetContext, ...
├── session.py           <- Per-instance session token acquisition
├── locator.py           <- Which instances host an application?
├── mutator.py           <- Create / delete / sync on a single instance
├── aggregator.py        <- Resync on every hosting instance
├── server.py            <- MCP server exposing the above as tools
└── utils/
    ├── client.py        <- HTTP boundary, errors, response classification
    ├── logging.py       <- Structured logging with audit trails
    └── safety.py        <- Read-only and destructive-operation guards

The orchestration modules are plain async functions taking a FleetContext;
the MCP server is one consumer of them.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]

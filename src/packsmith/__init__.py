"""
packsmith - Declarative pack manager for MCP servers, hooks, settings and templates.

packsmith installs self-contained "packs" into either the global machine scope
or a single project, and keeps them converged:
- Manifest loading, normalization and validation (techpack.yaml)
- Content-addressed trust with approve-once, verify-forever consent
- Dependency resolution over each pack's component graph
- Idempotent convergence with a per-project artifact ledger

Example usage:
    $ packsmith pack add user/my-pack
    $ packsmith sync . --pack my-pack
    $ packsmith sync . --lock
"""

__version__ = "0.4.0"
__author__ = "packsmith Contributors"

__all__ = [
    "__version__",
    "__author__",
]

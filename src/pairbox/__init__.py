"""pairbox - sandboxed script execution for a terminal pair-programming agent.

The model proposes small scripts; pairbox runs them in a persistent,
capability-restricted interpreter scoped to one workspace directory, and
holds model-issued writes for explicit user approval.

Exports:
    __version__: Package version string.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"

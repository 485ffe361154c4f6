"""Core shared infrastructure for pairbox.

This package contains foundational utilities:
    - config: Application and capability configuration
    - console: Rich console output and logging
    - security: Workspace path guard and command policy
    - result: Error taxonomy and Result types
    - templates: Jinja2 prompt rendering
"""

from __future__ import annotations

from . import config, console

__all__ = ["config", "console"]

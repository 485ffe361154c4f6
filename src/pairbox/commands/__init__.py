"""CLI command modules for pairbox.

    - script: one-shot runs and the model-facing schema and prompt
    - shell: the interactive sandbox shell
"""

from __future__ import annotations

from . import script, shell

__all__ = ["script", "shell"]

"""Bootstrap script evaluated once per fresh interpreter.

Only composes existing capabilities and interpreter-native constructs.
"""

from __future__ import annotations

PRELUDE_SOURCE = '''
def pretty(value, indent=0):
    pad = " " * (indent + 2)
    if isinstance(value, dict):
        if len(value) == 0:
            return "{}"
        parts = []
        for key in sorted(value, key=str):
            parts.append(pad + str(key) + " = " + pretty(value[key], indent + 2))
        return "{\\n" + ",\\n".join(parts) + "\\n" + " " * indent + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join([pretty(item, indent + 2) for item in value]) + "]"
    return repr(value)

def fmap(fn, items):
    return [fn(item) for item in items]

def keep(fn, items):
    return [item for item in items if fn(item)]

def read_lines(path):
    return read_file(path).splitlines()

def list_files(path="."):
    return [entry["name"] for entry in list_dir(path) if not entry["is_dir"]]

def _tree_lines(path, prefix, level, depth):
    lines = []
    for entry in list_dir(path):
        suffix = "/" if entry["is_dir"] else ""
        lines.append(prefix + entry["name"] + suffix)
        if entry["is_dir"] and level < depth:
            lines.extend(_tree_lines(path + "/" + entry["name"], prefix + "  ", level + 1, depth))
    return lines

def tree(path=".", depth=2):
    return "\\n".join(_tree_lines(path, "", 1, depth))

def grep_file(path, needle):
    found = []
    number = 0
    for line in read_lines(path):
        number += 1
        if needle in line:
            found.append([number, line])
    return found
'''

PRELUDE_NAMES: frozenset[str] = frozenset(
    {"pretty", "fmap", "keep", "read_lines", "list_files", "_tree_lines", "tree", "grep_file"}
)

__all__ = ["PRELUDE_NAMES", "PRELUDE_SOURCE"]

# dotstow - dotfiles installer with a Stow-style link planner
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Utility functions for dotstow.

This module contains the verbosity-levelled debug channel, the user-facing
message helpers, and path helpers used for ownership checks.
"""

from __future__ import annotations

import os
import shutil
import sys

from dotstow.types import MissingPackageError

VERSION = "1.0.0"
PROGRAM_NAME = "dotstow"

# Debug level is module-level state
_debug_level = 0

_COLORS = {
    "INFO": "\033[0;34m",
    "SUCCESS": "\033[0;32m",
    "WARNING": "\033[1;33m",
    "ERROR": "\033[0;31m",
}
_RESET = "\033[0m"


def set_debug_level(level: int) -> None:
    """Set verbosity level for debug()."""
    global _debug_level
    _debug_level = level


def debug(level: int, *args) -> None:
    """
    Log to STDERR based on debug_level setting.

    Verbosity rules:
        0: errors only
        >= 1: print operations: LINK/UNLINK/MKDIR/RMDIR/MV
        >= 2: print operation exceptions (skipping, replacing, conflicts)
        >= 3: print trace detail: package/contents/node
        >= 4: debug helper routines

    Supports two calling conventions:
        debug(level, msg)
        debug(level, indent_level, msg)
    """
    if len(args) >= 2 and isinstance(args[0], int):
        indent_level = args[0]
        msg = args[1]
    elif len(args) >= 1:
        indent_level = 0
        msg = args[0]
    else:
        return

    if _debug_level >= level:
        indent = "    " * indent_level
        print(f"{indent}{msg}", file=sys.stderr)


def _emit(tag: str, msg: str, stream=None) -> None:
    stream = stream or sys.stdout
    if stream.isatty():
        print(f"{_COLORS[tag]}[{tag}]{_RESET} {msg}", file=stream)
    else:
        print(f"[{tag}] {msg}", file=stream)


def info(msg: str) -> None:
    _emit("INFO", msg)


def success(msg: str) -> None:
    _emit("SUCCESS", msg)


def warning(msg: str) -> None:
    _emit("WARNING", msg, sys.stderr)


def error(msg: str) -> None:
    _emit("ERROR", msg, sys.stderr)


def tildify(path: str) -> str:
    """Replace $HOME with ~ for readability."""
    home = os.environ.get("HOME", "")
    if home and (path == home or path.startswith(home + "/")):
        return "~" + path[len(home):]
    return path


def is_within(path: str, root: str) -> bool:
    """Return True if ``path`` is ``root`` or lies beneath it (no resolution)."""
    path = os.path.normpath(path)
    root = os.path.normpath(root)
    return path == root or path.startswith(root.rstrip("/") + "/")


def resolve_link(link: str) -> str:
    """
    Resolve a symlink's destination by one hop.

    The link's parent directory is canonicalized, the destination is joined
    onto it and normalized. The destination itself is not followed, so a
    chain of links is never mistaken for a link into the repository.
    """
    dest = os.readlink(link)
    base = os.path.realpath(os.path.dirname(os.path.abspath(link)))
    return os.path.normpath(os.path.join(base, dest))


def require_directory(path: str, message: str, exc_type=None) -> None:
    """Raise ``exc_type(message)`` unless path is a directory."""
    if not os.path.isdir(path):
        raise (exc_type or MissingPackageError)(message)


def move(src: str, dst: str) -> None:
    """Move a file, creating the destination's parent if needed."""
    parent = os.path.dirname(dst)
    if parent:
        os.makedirs(parent, exist_ok=True)
    shutil.move(src, dst)

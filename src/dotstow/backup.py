# dotstow - dotfiles installer with a Stow-style link planner
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Backup of real files that stand where links are about to go.

Backups land in ``~/dotfiles-backup-<YYYYmmdd-HHMMSS>/`` mirroring the
home-relative path. The directory is created on the first hit only, and
nothing here ever deletes a backup.
"""

from __future__ import annotations

import os
import shutil
from datetime import datetime
from typing import Iterable, Optional

from dotstow.types import BackupError, BackupRecord
from dotstow.util import debug, info, is_within, success, tildify, warning

BACKUP_PREFIX = "dotfiles-backup-"


def backup_root(home: str, now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    return os.path.join(home, BACKUP_PREFIX + stamp)


def _outermost(paths: Iterable[str]) -> list[str]:
    """Drop paths that lie inside another candidate; the ancestor covers them."""
    result: list[str] = []
    for path in sorted(set(paths)):
        if not any(is_within(path, kept) for kept in result):
            result.append(path)
    return result


def _make_root(root: str) -> str:
    """Create a fresh backup root, suffixing the name if it already exists."""
    candidate = root
    for n in range(1, 100):
        try:
            os.makedirs(candidate)
            return candidate
        except FileExistsError:
            candidate = f"{root}-{n}"
        except OSError as e:
            raise BackupError(f"Could not create backup directory {tildify(candidate)}: {e}") from e
    raise BackupError(f"Could not find a free backup directory name for {tildify(root)}")


def _copy(src: str, dst: str) -> None:
    os.makedirs(os.path.dirname(dst), exist_ok=True)
    if os.path.isdir(src) and not os.path.islink(src):
        shutil.copytree(src, dst, symlinks=True)
    else:
        shutil.copy2(src, dst, follow_symlinks=False)


def _remove(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.unlink(path)


def backup_conflicts(
    candidates: Iterable[str],
    home: str,
    *,
    remove: bool = False,
    simulate: bool = False,
    now: Optional[datetime] = None,
) -> BackupRecord | None:
    """Copy every existing, non-symlink candidate into a fresh backup directory.

    Args:
        candidates: Absolute or home-relative paths
        home: Home directory the backup mirrors
        remove: Remove each original after it was copied (install flow)
        simulate: Only report what would be copied
        now: Timestamp for the backup directory name

    Returns:
        The BackupRecord, or None if there was nothing to back up.

    Raises:
        BackupError: if any copy or removal fails
    """
    home = os.path.abspath(home)
    paths = [p if os.path.isabs(p) else os.path.join(home, p) for p in candidates]

    record: BackupRecord | None = None
    for path in _outermost(os.path.normpath(p) for p in paths):
        if not os.path.lexists(path) or os.path.islink(path):
            debug(3, 1, f"Nothing to back up at {path}")
            continue
        if not is_within(path, home) or path == home:
            warning(f"Not backing up {path}: outside of {home}")
            continue

        rel = os.path.relpath(path, home)
        if record is None:
            root = backup_root(home, now)
            if simulate:
                info(f"Would create backup directory: {tildify(root)}")
            else:
                root = _make_root(root)
                info(f"Creating backup directory: {tildify(root)}")
            record = BackupRecord(root, simulate=simulate)

        if simulate:
            info(f"Would back up {tildify(path)}")
            record.entries.append(rel)
            continue

        dest = os.path.join(record.root, rel)
        try:
            _copy(path, dest)
        except (OSError, shutil.Error) as e:
            raise BackupError(f"Could not back up {tildify(path)}: {e}") from e
        debug(1, 0, f"BACKUP: {path} -> {dest}")

        if remove:
            try:
                _remove(path)
            except OSError as e:
                raise BackupError(f"Could not remove {tildify(path)} after backing it up: {e}") from e
        record.entries.append(rel)
        info(f"Backed up {rel}")

    if record is not None and not simulate:
        success(f"Backed up {len(record)} item(s) to {tildify(record.root)}")
    return record

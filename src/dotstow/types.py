# dotstow - dotfiles installer with a Stow-style link planner
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Type definitions for dotstow.

This module contains the enums, dataclasses and exceptions shared by the
planner, the status reporter and the installer.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple, Optional


# =============================================================================
# Platform
# =============================================================================


class OS(Enum):
    """Operating systems the installer knows how to handle."""

    MACOS = "macos"
    LINUX = "linux"
    WINDOWS = "windows"


class Arch(Enum):
    """CPU architectures, normalized."""

    X64 = "x64"
    ARM64 = "arm64"
    X86 = "x86"
    OTHER = "other"


@dataclass(frozen=True)
class Platform:
    os: OS
    arch: Arch
    machine: str = ""

    def __str__(self) -> str:
        arch = self.machine if self.arch is Arch.OTHER and self.machine else self.arch.value
        return f"{self.os.value}-{arch}"


# =============================================================================
# Planning
# =============================================================================


class TaskAction(Enum):
    """Actions that can be performed on filesystem nodes."""

    CREATE = "create"
    REMOVE = "remove"
    SKIP = "skip"
    MOVE = "move"


class TaskType(Enum):
    """Types of filesystem nodes that tasks operate on."""

    LINK = "link"
    DIR = "dir"
    FILE = "file"


@dataclass(slots=True)
class Task:
    """
    A deferred filesystem operation.

    Tasks are queued during the planning phase and executed only after
    all potential conflicts have been assessed. Paths are absolute.
    """

    action: TaskAction
    type: TaskType
    path: str
    source: Optional[str] = None  # For links: the symlink destination
    dest: Optional[str] = None  # For moves: the destination path

    def describe(self) -> str:
        match (self.action, self.type):
            case (TaskAction.CREATE, TaskType.LINK):
                return f"LINK: {self.path} => {self.source}"
            case (TaskAction.REMOVE, TaskType.LINK):
                return f"UNLINK: {self.path}"
            case (TaskAction.CREATE, TaskType.DIR):
                return f"MKDIR: {self.path}"
            case (TaskAction.REMOVE, TaskType.DIR):
                return f"RMDIR: {self.path}"
            case (TaskAction.MOVE, _):
                return f"MV: {self.path} -> {self.dest}"
        return f"SKIP: {self.path}"


@dataclass
class LinkReport:
    """Outcome of executing (or simulating) a link plan."""

    success: bool
    tasks: list[Task] = field(default_factory=list)
    conflicts: dict[str, list[str]] = field(default_factory=dict)
    simulate: bool = False

    @property
    def trace(self) -> list[str]:
        return [t.describe() for t in self.tasks]


class IgnorePatterns(NamedTuple):
    """Compiled ignore regexps: full-path patterns and basename patterns."""

    path_regexp: Optional[re.Pattern]
    segment_regexp: Optional[re.Pattern]


class LinkState(Enum):
    """State of a single target path under the home directory."""

    UNMANAGED = "unmanaged"
    MANAGED = "managed"
    FOREIGN = "foreign"
    MISSING = "missing"


@dataclass(frozen=True)
class AppDescriptor:
    """
    Unit of per-application linking.

    ``paths`` holds (package, package-relative path) pairs, for example
    ``("common", ".config/alacritty")`` and ``("macos", ".alacritty.toml")``.
    """

    name: str
    paths: tuple[tuple[str, str], ...]

    @property
    def targets(self) -> tuple[str, ...]:
        """Home-relative target paths, in registry order, without duplicates."""
        seen: dict[str, None] = {}
        for _, rel in self.paths:
            seen.setdefault(rel, None)
        return tuple(seen)


@dataclass
class BackupRecord:
    root: str
    entries: list[str] = field(default_factory=list)
    simulate: bool = False

    def __len__(self) -> int:
        return len(self.entries)


# =============================================================================
# Tools
# =============================================================================


@dataclass(frozen=True)
class ProbeResult:
    """Structured result of looking for a binary on PATH."""

    name: str
    path: Optional[str] = None
    version: Optional[str] = None

    @property
    def present(self) -> bool:
        return self.path is not None

    def __bool__(self) -> bool:
        return self.present


class OutcomeStatus(Enum):
    ALREADY_PRESENT = "already-present"
    INSTALLED = "installed"
    FAILED = "failed"


@dataclass(frozen=True)
class InstallOutcome:
    status: OutcomeStatus
    tool: str
    reason: str = ""
    manager: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is not OutcomeStatus.FAILED


# =============================================================================
# Configuration
# =============================================================================

DEFAULT_NO_FOLD = (
    ".config",
    ".local",
    ".local/bin",
    ".local/share",
    ".local/state",
)


@dataclass(frozen=True)
class InstallerConfig:
    """
    Explicit configuration passed into every operation.

    Attributes:
        dotfiles_dir: Repository root containing the packages
        home: Target root where symlinks are created
        platform: Detected platform; selects the OS package
        simulate: If True, don't make filesystem changes
        backup: Back up conflicting real files before linking
        interactive: Ask before backing up and for package choice
        adopt: Move conflicting real files into the package instead of failing
        with_tools: Install mise tools after linking
        update_subs: Update git submodules after linking
        verbose: Verbosity level (0-5)
        ignore: Extra patterns of package paths never linked
        no_fold: Home-relative directories that are never linked whole
    """

    dotfiles_dir: str
    home: str
    platform: Platform
    simulate: bool = False
    backup: bool = True
    interactive: bool = False
    adopt: bool = False
    with_tools: bool = False
    update_subs: bool = False
    verbose: int = 0
    ignore: tuple[re.Pattern, ...] = ()
    no_fold: tuple[str, ...] = DEFAULT_NO_FOLD

    @property
    def os(self) -> OS:
        return self.platform.os

    @property
    def packages(self) -> tuple[str, str]:
        """Packages linked by a full install, in link order."""
        return ("common", self.platform.os.value)

    def package_dir(self, package: str) -> str:
        return os.path.join(self.dotfiles_dir, package)


# =============================================================================
# Errors
# =============================================================================


class DotfilesError(Exception):
    """Base for errors reported to the user; ``errno`` is the exit code."""

    def __init__(self, message: str, errno: int = 1):
        super().__init__(message)
        self.message = message
        self.errno = errno


class FatalPrecondition(DotfilesError):
    """A prerequisite is not met; nothing else may run."""

    def __init__(self, message: str, errno: int = 2):
        super().__init__(message, errno)


class UnsupportedPlatformError(FatalPrecondition):
    pass


class NoPackageManagerError(FatalPrecondition):
    pass


class MissingPackageError(FatalPrecondition):
    pass


class HomeNotWritableError(FatalPrecondition):
    pass


class BackupError(FatalPrecondition):
    pass


class LinkError(DotfilesError):
    """A planned filesystem task could not be carried out."""


class ConflictError(DotfilesError):
    """A link plan was abandoned because of conflicts."""

    def __init__(self, conflicts: dict[str, list[str]]):
        count = sum(len(v) for v in conflicts.values())
        super().__init__(f"{count} conflict(s) found; all operations aborted")
        self.conflicts = conflicts


class DotfilesCLIError(DotfilesError):
    """Usage error; the message is printed without a prefix."""


class StepFailure(DotfilesError):
    """An optional step failed; logged and summarized, never fatal."""


class UserCancelled(Exception):
    """The user declined an interactive prompt."""


class DotfilesProgrammingError(DotfilesError):
    """Internal inconsistency in the planner. This is a bug."""

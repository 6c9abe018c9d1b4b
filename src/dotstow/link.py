# dotstow - dotfiles installer with a Stow-style link planner
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Link manager - symlink package contents into the home directory.

This module provides the public API for linking and unlinking packages and
single apps, the Linker class that plans and executes the filesystem tasks,
and the orphan finder used by ``cleanup``.

Planning never touches the filesystem. Every operation is queued as a Task
and the "current or planned" helpers (_is_a_link, _is_a_dir, _is_a_node,
_read_a_link) answer questions about the tree as it will look once the
queued tasks have run. Nothing is executed if any conflict was recorded.
"""

from __future__ import annotations

import errno
import functools
import os
import re
import stat
from typing import Iterable, Iterator, Optional, Sequence

from dotstow.types import (
    AppDescriptor,
    DotfilesProgrammingError,
    HomeNotWritableError,
    IgnorePatterns,
    InstallerConfig,
    LinkError,
    LinkReport,
    MissingPackageError,
    Task,
    TaskAction,
    TaskType,
)
from dotstow.util import (
    debug,
    info,
    is_within,
    move,
    require_directory,
    resolve_link,
    set_debug_level,
    success,
    tildify,
    warning,
)

LOCAL_IGNORE_FILE = ".stow-local-ignore"
GLOBAL_IGNORE_FILE = ".stow-global-ignore"


# =============================================================================
# Public API
# =============================================================================


def link(*packages: str, config: InstallerConfig) -> LinkReport:
    """Link packages into the home directory.

    Returns:
        LinkReport with success status, conflicts (if any), and tasks performed
    """
    linker = Linker(config)
    for package in packages:
        linker.plan_link(package)
    return linker.execute()


def unlink(*packages: str, config: InstallerConfig) -> LinkReport:
    """Remove the links that point into the given packages."""
    linker = Linker(config)
    for package in packages:
        linker.plan_unlink(package)
    return linker.execute()


def relink(*packages: str, config: InstallerConfig) -> LinkReport:
    """Unlink then link packages in a single plan.

    Links that are still wanted cancel out during planning, so only
    stale links are removed and only new ones are created.
    """
    linker = Linker(config)
    for package in packages:
        linker.plan_unlink(package)
    for package in packages:
        linker.plan_link(package)
    return linker.execute()


def link_app(app: AppDescriptor, config: InstallerConfig) -> LinkReport:
    linker = Linker(config)
    linker.plan_link_app(app)
    return linker.execute()


def unlink_app(app: AppDescriptor, config: InstallerConfig) -> LinkReport:
    linker = Linker(config)
    linker.plan_unlink_app(app)
    return linker.execute()


def unlink_packages(packages: Sequence[str], config: InstallerConfig) -> list[str]:
    """Unlink each package on its own, falling back to orphan cleanup.

    Returns the list of packages whose unlink did not fully succeed.
    """
    failed = []
    for package in packages:
        try:
            report = unlink(package, config=config)
        except (MissingPackageError, LinkError) as e:
            warning(f"Failed to unlink {package}: {e.message}")
            failed.append(package)
            continue
        if report.success:
            success(f"Unlinked {package} package")
        else:
            warning(f"Failed to unlink {package}")
            failed.append(package)

    if failed:
        info("Falling back to orphaned symlink cleanup...")
        cleanup_orphans(config)
    return failed


# =============================================================================
# Planner
# =============================================================================


def _join(subdir: str, node: str) -> str:
    return f"{subdir}/{node}" if subdir else node


class Linker:
    """
    Plans and executes link/unlink operations for one configuration.

    Package and target subpaths are home-relative with "/" separators;
    "" is the package root or the home directory itself. Task paths are
    absolute.

    ``vacated`` lists paths that are treated as absent during planning,
    which lets a simulated run plan as if conflicting files had already
    been moved to a backup.
    """

    def __init__(self, config: InstallerConfig, vacated: Iterable[str] = ()):
        self.c = config
        set_debug_level(config.verbose)

        self.home = os.path.abspath(config.home)
        self.home_real = os.path.realpath(self.home)
        self.dotfiles_dir = os.path.abspath(config.dotfiles_dir)
        self.dotfiles_real = os.path.realpath(self.dotfiles_dir)
        self.no_fold = {os.path.normpath(p) for p in config.no_fold}
        self.vacated = {os.path.abspath(p) for p in vacated}
        debug(2, 0, f"dotfiles dir is {self.dotfiles_real}")
        debug(2, 0, f"target dir is {self.home}")

        # State
        self.conflicts: dict[str, list[str]] = {}
        self.conflict_paths: list[str] = []
        self.warnings: list[str] = []
        self.tasks: list[Task] = []
        self.dir_task_for: dict[str, Task] = {}
        self.link_task_for: dict[str, Task] = {}

    def plan_link(self, package: str) -> None:
        """Plan linking of every node of the given package."""
        self._require_home()
        require_directory(
            self.c.package_dir(package),
            f"Package directory not found: {self.c.package_dir(package)}",
        )
        debug(2, 0, f"Planning link of package {package}...")
        self.link_contents(package, "", "")
        debug(2, 0, f"Planning link of package {package}... done")

    def plan_unlink(self, package: str) -> None:
        """Plan removal of the links that point into the given package."""
        require_directory(
            self.c.package_dir(package),
            f"Package directory not found: {self.c.package_dir(package)}",
        )
        debug(2, 0, f"Planning unlink of package {package}...")
        self.unlink_contents(package, "", "")
        debug(2, 0, f"Planning unlink of package {package}... done")

    def plan_link_app(self, app: AppDescriptor) -> None:
        """Plan linking of one app's paths, preparing their parents first."""
        self._require_home()
        debug(2, 0, f"Planning link of app {app.name}...")
        for package, rel in app.paths:
            if not os.path.lexists(self._source(package, rel)):
                warning(f"{package}/{rel} does not exist; skipping")
                continue
            if self._prepare_parents(package, rel, create=True):
                self._link_node(package, rel, rel)
        debug(2, 0, f"Planning link of app {app.name}... done")

    def plan_unlink_app(self, app: AppDescriptor) -> None:
        """Plan removal of one app's links; anything else is left alone."""
        debug(2, 0, f"Planning unlink of app {app.name}...")
        for package, rel in app.paths:
            if self._prepare_parents(package, rel, create=False):
                self._unlink_node(package, rel, rel)
        debug(2, 0, f"Planning unlink of app {app.name}... done")

    def execute(self) -> LinkReport:
        """Execute planned tasks and return the report.

        Returns a LinkReport with success=False if there were conflicts, or
        success=True with the list of executed (or, when simulating,
        planned) tasks.
        """
        if self.conflicts:
            return LinkReport(
                success=False,
                conflicts=dict(self.conflicts),
                simulate=self.c.simulate,
            )

        # Strip out all tasks with a skip action
        self.tasks = [t for t in self.tasks if t.action != TaskAction.SKIP]

        if not self.c.simulate:
            self.process_tasks()
        return LinkReport(success=True, tasks=list(self.tasks), simulate=self.c.simulate)

    def process_tasks(self) -> None:
        debug(2, 0, "Processing tasks...")
        for task in self.tasks:
            self._process_task(task)
        debug(2, 0, "Processing tasks... done")

    # -------------------------------------------------------------------------
    # Linking
    # -------------------------------------------------------------------------

    def link_contents(self, package: str, pkg_subdir: str, target_subdir: str) -> None:
        """Link the contents of the given package directory.

        Note: link_contents() and _link_node() are mutually recursive."""
        debug(3, 0, f"Linking contents of {package} / {pkg_subdir or '.'}")
        debug(4, 1, f"target subdir is {target_subdir or '.'}")

        target_dir = self._target(target_subdir)
        if not self._is_a_node(target_dir):
            raise DotfilesProgrammingError(
                f"link_contents() called with non-directory target: {target_dir}"
            )

        for node in self._listing(self._source(package, pkg_subdir)):
            pkg_subpath = _join(pkg_subdir, node)
            if self._should_ignore(package, pkg_subpath):
                continue
            self._link_node(package, pkg_subpath, _join(target_subdir, node))

    def _link_node(self, package: str, pkg_subpath: str, target_subpath: str) -> None:
        debug(3, 0, f"Linking entry {package} / {pkg_subpath}")

        target = self._target(target_subpath)

        if self._is_a_link(target):
            self._link_node_for_existing_link(package, pkg_subpath, target_subpath)
        elif self._is_a_node(target):
            self._link_node_for_existing_node(package, pkg_subpath, target_subpath)
        elif self._keeps_real_dir(package, pkg_subpath, target_subpath):
            self._do_mkdir(target)
            self.link_contents(package, pkg_subpath, target_subpath)
        else:
            self._do_link(self._link_dest(package, pkg_subpath, target_subpath), target)

    def _link_node_for_existing_link(
        self, package: str, pkg_subpath: str, target_subpath: str
    ) -> None:
        target = self._target(target_subpath)
        debug(4, 1, f"Evaluate existing link: {target_subpath}")

        existing = self._read_a_link(target)
        resolved = self._resolve(target, existing)

        if resolved == self._source_real(package, pkg_subpath):
            debug(2, 0, f"--- Skipping {target_subpath} as it already points to {existing}")
            return

        owner = self._owning_package(resolved)
        if owner and os.path.isdir(resolved) and os.path.isdir(self._source(package, pkg_subpath)):
            debug(2, 0, f"--- Unfolding {target_subpath} which was already owned by {owner}")
            self._unfold(target_subpath, resolved, owner)
            self.link_contents(package, pkg_subpath, target_subpath)
            return

        if owner:
            debug(2, 0, f"--- Replacing {target_subpath} => {existing} owned by {owner}")
        else:
            debug(2, 0, f"--- Replacing foreign link {target_subpath} => {existing}")
        self._do_unlink(target)
        if self._keeps_real_dir(package, pkg_subpath, target_subpath):
            self._do_mkdir(target)
            self.link_contents(package, pkg_subpath, target_subpath)
        else:
            self._do_link(self._link_dest(package, pkg_subpath, target_subpath), target)

    def _keeps_real_dir(self, package: str, pkg_subpath: str, target_subpath: str) -> bool:
        """True if the target must be a real directory instead of a folded link."""
        source = self._source(package, pkg_subpath)
        return target_subpath in self.no_fold and os.path.isdir(source) and not os.path.islink(source)

    def _link_node_for_existing_node(
        self, package: str, pkg_subpath: str, target_subpath: str
    ) -> None:
        source = self._source(package, pkg_subpath)
        target = self._target(target_subpath)

        if self._is_a_dir(target):
            if os.path.isdir(source):
                debug(3, 0, f"--- {target_subpath} is a directory; linking its contents")
                self.link_contents(package, pkg_subpath, target_subpath)
            else:
                self._record_conflict(
                    package,
                    f"cannot link {package}/{pkg_subpath} over existing directory {tildify(target)}",
                    target,
                )
        elif self.c.adopt and not os.path.isdir(source):
            self._do_mv(target, source)
            self._do_link(self._link_dest(package, pkg_subpath, target_subpath), target)
        else:
            self._record_conflict(
                package,
                f"existing target is neither a link nor a directory: {tildify(target)}",
                target,
            )

    def _unfold(self, target_subpath: str, resolved: str, owner: str) -> None:
        """Replace a folded directory link with a directory of per-entry links."""
        target = self._target(target_subpath)
        self._do_unlink(target)
        self._do_mkdir(target)
        owner_subpath = os.path.relpath(resolved, self._source_real(owner, ""))
        self.link_contents(owner, owner_subpath, target_subpath)

    def _prepare_parents(self, package: str, rel: str, create: bool) -> bool:
        """Make every parent of ``rel`` a (planned) real directory.

        Missing parents are created when ``create`` is set, managed folded
        parents are unfolded, and anything else blocks the path. Returns
        False when the path cannot be handled.
        """
        subpath = ""
        for part in rel.split("/")[:-1]:
            subpath = _join(subpath, part)
            target = self._target(subpath)

            if self._is_a_link(target):
                link_dest = self._read_a_link(target)
                resolved = self._resolve(target, link_dest)
                owner = self._owning_package(resolved)
                if owner and os.path.isdir(resolved):
                    debug(2, 0, f"--- Unfolding {subpath} which was already owned by {owner}")
                    self._unfold(subpath, resolved, owner)
                elif os.path.exists(target):
                    return self._blocked(
                        package, rel, target, create,
                        f"parent {tildify(target)} is a symlink not managed by dotfiles",
                    )
                elif create:
                    debug(2, 0, f"--- Replacing broken link {subpath} => {link_dest}")
                    self._do_unlink(target)
                    self._do_mkdir(target)
                else:
                    return False
            elif self._is_a_dir(target):
                continue
            elif self._is_a_node(target):
                return self._blocked(
                    package, rel, target, create,
                    f"parent {tildify(target)} exists and is not a directory",
                )
            elif create:
                self._do_mkdir(target)
            else:
                return False
        return True

    def _blocked(self, package: str, rel: str, target: str, create: bool, reason: str) -> bool:
        if create:
            self._record_conflict(package, f"cannot link {package}/{rel}: {reason}", target)
        else:
            self._leave_alone(f"cannot unlink {package}/{rel}: {reason}")
        return False

    # -------------------------------------------------------------------------
    # Unlinking
    # -------------------------------------------------------------------------

    def unlink_contents(
        self, package: str, pkg_subdir: str, target_subdir: str
    ) -> None:
        """Unlink the contents of the given package directory.

        Note: unlink_contents() and _unlink_node() are mutually recursive."""
        debug(3, 0, f"Unlinking contents of {package} / {pkg_subdir or '.'}")

        for node in self._listing(self._source(package, pkg_subdir)):
            pkg_subpath = _join(pkg_subdir, node)
            if self._should_ignore(package, pkg_subpath):
                continue
            self._unlink_node(package, pkg_subpath, _join(target_subdir, node))

        target_dir = self._target(target_subdir)
        if os.path.isdir(target_dir) and not os.path.islink(target_dir):
            self._cleanup_invalid_links(target_dir)

    def _unlink_node(
        self, package: str, pkg_subpath: str, target_subpath: str
    ) -> None:
        debug(3, 0, f"Unlinking entry from target: {target_subpath}")
        target = self._target(target_subpath)

        if self._is_a_link(target):
            self._unlink_link_node(package, pkg_subpath, target_subpath)
        elif os.path.isdir(target):
            if os.path.isdir(self._source(package, pkg_subpath)):
                self.unlink_contents(package, pkg_subpath, target_subpath)
            else:
                self._leave_alone(f"{tildify(target)} is a real directory; leaving it alone")
        elif os.path.lexists(target):
            self._leave_alone(
                f"{tildify(target)} is a real file, not managed by dotfiles; leaving it alone",
            )
        else:
            debug(2, 1, f"{target_subpath} did not exist to be unlinked")

    def _unlink_link_node(
        self, package: str, pkg_subpath: str, target_subpath: str
    ) -> None:
        target = self._target(target_subpath)
        debug(4, 2, f"Evaluate existing link: {target_subpath}")

        link_dest = self._read_a_link(target)
        resolved = self._resolve(target, link_dest)
        owner = self._owning_package(resolved)

        if owner is None:
            self._leave_alone(
                f"{tildify(target)} is a symlink not managed by dotfiles "
                f"(=> {link_dest}); leaving it alone",
            )
        elif resolved == self._source_real(package, pkg_subpath):
            self._do_unlink(target)
        elif not os.path.lexists(resolved):
            debug(2, 0, f"--- removing invalid link into dotfiles: {target_subpath} => {link_dest}")
            self._do_unlink(target)
        else:
            debug(5, 3, f"Ignoring link {target_subpath} => {link_dest} owned by {owner}")

    def _cleanup_invalid_links(self, dir_path: str) -> None:
        """Queue removal of broken links in dir_path that point into the repository."""
        debug(2, 0, f"Cleaning up any invalid links in {tildify(dir_path)}")

        for node in self._listing(dir_path):
            node_path = os.path.join(dir_path, node)
            if not os.path.islink(node_path):
                continue

            if node_path in self.link_task_for:
                debug(4, 2, f"{node_path} already has a planned task; skipping clean-up")
                continue

            if os.path.exists(node_path):
                continue

            try:
                link_dest = os.readlink(node_path)
            except OSError as e:
                raise LinkError(f"Could not read link {node_path}") from e

            if owner := self._owning_package(self._resolve(node_path, link_dest)):
                debug(2, 0, f"--- removing link owned by {owner}: {node_path} => {link_dest}")
                self._do_unlink(node_path)

    def _leave_alone(self, message: str) -> None:
        warning(message)
        self.warnings.append(message)

    # -------------------------------------------------------------------------
    # Paths and ownership
    # -------------------------------------------------------------------------

    def _require_home(self) -> None:
        require_directory(
            self.home, f"Target directory does not exist: {self.home}", HomeNotWritableError
        )

    def _target(self, subpath: str) -> str:
        return os.path.join(self.home, subpath) if subpath else self.home

    def _source(self, package: str, subpath: str) -> str:
        return os.path.join(self.dotfiles_dir, package, subpath) if subpath else os.path.join(self.dotfiles_dir, package)

    def _source_real(self, package: str, subpath: str) -> str:
        base = os.path.join(self.dotfiles_real, package)
        return os.path.join(base, subpath) if subpath else base

    def _link_dest(self, package: str, pkg_subpath: str, target_subpath: str) -> str:
        """Relative destination for a link at target_subpath pointing to the source."""
        link_dir = os.path.dirname(os.path.join(self.home_real, target_subpath))
        return os.path.relpath(self._source_real(package, pkg_subpath), link_dir)

    def _resolve(self, target: str, link_dest: str) -> str:
        """Resolve a current or planned link one hop.

        Parents inside the home directory are taken textually because a
        parent may be a folded link that is planned to become a directory.
        """
        if os.path.isabs(link_dest):
            resolved = os.path.normpath(link_dest)
        else:
            rel = os.path.relpath(target, self.home)
            link_dir = os.path.dirname(os.path.join(self.home_real, rel))
            resolved = os.path.normpath(os.path.join(link_dir, link_dest))
        if self.dotfiles_dir != self.dotfiles_real and is_within(resolved, self.dotfiles_dir):
            resolved = self.dotfiles_real + resolved[len(self.dotfiles_dir):]
        return resolved

    def _owning_package(self, resolved: str) -> str | None:
        """Return the package a resolved path lies in, or None if outside the repo."""
        if not is_within(resolved, self.dotfiles_real) or resolved == self.dotfiles_real:
            return None
        return os.path.relpath(resolved, self.dotfiles_real).split(os.sep, 1)[0]

    def _listing(self, dir_path: str) -> list[str]:
        try:
            return sorted(os.listdir(dir_path))
        except OSError as e:
            raise LinkError(f"cannot read directory: {dir_path} ({e.strerror})") from e

    def _record_conflict(self, package: str, message: str, target: str) -> None:
        debug(2, 0, f"CONFLICT when linking {package}: {message}")
        self.conflicts.setdefault(package, []).append(message)
        if target not in self.conflict_paths:
            self.conflict_paths.append(target)

    # -------------------------------------------------------------------------
    # Ignore lists
    # -------------------------------------------------------------------------

    def _should_ignore(self, package: str, pkg_subpath: str) -> bool:
        """Determine if the given package path matches a regex in our ignore list."""
        if not pkg_subpath:
            raise DotfilesProgrammingError("_should_ignore() called with empty path")

        for pattern in self.c.ignore:
            if pattern.search(pkg_subpath):
                debug(4, 1, f"Ignoring path {pkg_subpath} due to --ignore={pattern.pattern}")
                return True

        patterns = self._get_ignore_regexps(self.c.package_dir(package))

        if patterns.path_regexp is not None and patterns.path_regexp.search("/" + pkg_subpath):
            debug(4, 1, f"Ignoring path /{pkg_subpath}")
            return True

        basename = pkg_subpath.rpartition("/")[2]
        if patterns.segment_regexp is not None and patterns.segment_regexp.search(basename):
            debug(4, 1, f"Ignoring path segment {basename}")
            return True

        debug(5, 1, f"Not ignoring {pkg_subpath}")
        return False

    def _get_ignore_regexps(self, package_dir: str) -> IgnorePatterns:
        local_ignore = os.path.join(package_dir, LOCAL_IGNORE_FILE)
        global_ignore = os.path.join(self.home, GLOBAL_IGNORE_FILE)

        for file_path in (local_ignore, global_ignore):
            if os.path.exists(file_path):
                debug(5, 1, f"Using ignore file: {file_path}")
                return _read_ignore_file(file_path)
            debug(5, 1, f"{file_path} didn't exist")

        debug(4, 1, "Using built-in ignore list")
        return _get_default_ignore_regexps()

    # -------------------------------------------------------------------------
    # Current-or-planned queries
    # -------------------------------------------------------------------------

    def _get_task_action(self, path: str, task_for: dict[str, Task], name: str) -> Optional[TaskAction]:
        try:
            action = task_for[path].action
        except KeyError:
            debug(4, 4, f"| {name}_task_action({path}): no task")
            return None

        if action not in (TaskAction.REMOVE, TaskAction.CREATE):
            raise DotfilesProgrammingError(f"bad task action: {action.value}")
        return action

    def _is_vacated(self, path: str) -> bool:
        return any(is_within(path, v) for v in self.vacated)

    def _is_parent_link_scheduled_for_removal(self, target_path: str) -> bool:
        prefix = os.path.dirname(target_path)
        while is_within(prefix, self.home) and prefix != self.home:
            task = self.link_task_for.get(prefix)
            if task is not None and task.action == TaskAction.REMOVE:
                debug(4, 4, f"| parent_link_scheduled_for_removal({target_path}): {prefix}")
                return True
            prefix = os.path.dirname(prefix)
        return False

    def _is_a_link(self, target_path: str) -> bool:
        """Determine if the given path is a current or planned link."""
        match self._get_task_action(target_path, self.link_task_for, "link"):
            case TaskAction.REMOVE:
                return False
            case TaskAction.CREATE:
                return True

        if os.path.islink(target_path) and not self._is_vacated(target_path):
            return not self._is_parent_link_scheduled_for_removal(target_path)
        return False

    def _is_a_dir(self, target_path: str) -> bool:
        """Determine if the given path is a current or planned directory."""
        match self._get_task_action(target_path, self.dir_task_for, "dir"):
            case TaskAction.REMOVE:
                return False
            case TaskAction.CREATE:
                return True

        if self._is_parent_link_scheduled_for_removal(target_path) or self._is_vacated(target_path):
            return False
        return os.path.isdir(target_path)

    def _is_a_node(self, target_path: str) -> bool:
        """Determine whether the given path is a current or planned node."""
        laction = self._get_task_action(target_path, self.link_task_for, "link")
        daction = self._get_task_action(target_path, self.dir_task_for, "dir")

        match (laction, daction):
            case (TaskAction.REMOVE, TaskAction.REMOVE):
                raise DotfilesProgrammingError(f"removing link and dir: {target_path}")
            case (TaskAction.REMOVE, TaskAction.CREATE):
                # Unfolding: link removal happens before dir creation.
                return True
            case (TaskAction.REMOVE, None):
                return False
            case (TaskAction.CREATE, TaskAction.CREATE):
                raise DotfilesProgrammingError(f"creating link and dir: {target_path}")
            case (TaskAction.CREATE, _):
                return True
            case (None, TaskAction.REMOVE):
                return False
            case (None, TaskAction.CREATE):
                return True

        if self._is_parent_link_scheduled_for_removal(target_path) or self._is_vacated(target_path):
            return False
        return os.path.lexists(target_path)

    def _read_a_link(self, link_path: str) -> str:
        """Return the destination of a current or planned link."""
        action = self._get_task_action(link_path, self.link_task_for, "link")
        if action == TaskAction.CREATE:
            return self.link_task_for[link_path].source
        if action == TaskAction.REMOVE:
            raise DotfilesProgrammingError(
                f"read_a_link() passed a path that is scheduled for removal: {link_path}"
            )

        if os.path.islink(link_path):
            try:
                return os.readlink(link_path)
            except OSError as e:
                raise LinkError(f"Could not read link: {link_path} ({e})") from e

        raise DotfilesProgrammingError(f"read_a_link() passed a non-link path: {link_path}")

    # -------------------------------------------------------------------------
    # Task queue
    # -------------------------------------------------------------------------

    def _do_link(self, link_dest: str, link_path: str) -> None:
        """Wrap 'link' operation for later processing."""
        dir_task = self.dir_task_for.get(link_path)
        if dir_task is not None and dir_task.action == TaskAction.CREATE:
            raise DotfilesProgrammingError(
                f"new link ({link_path} => {link_dest}) clashes with planned new directory"
            )

        task_ref = self.link_task_for.get(link_path)
        if task_ref is not None:
            if task_ref.action == TaskAction.CREATE:
                if task_ref.source != link_dest:
                    raise DotfilesProgrammingError(
                        f"new link clashes with planned new link: {task_ref.path} => {task_ref.source}"
                    )
                debug(1, 0, f"LINK: {link_path} => {link_dest} (duplicates previous action)")
                return
            if task_ref.source == link_dest:
                debug(1, 0, f"LINK: {link_path} => {link_dest} (reverts previous action)")
                task_ref.action = TaskAction.SKIP
                del self.link_task_for[link_path]
                return

        debug(1, 0, f"LINK: {link_path} => {link_dest}")
        task = Task(TaskAction.CREATE, TaskType.LINK, link_path, source=link_dest)
        self.tasks.append(task)
        self.link_task_for[link_path] = task

    def _do_unlink(self, link_path: str) -> None:
        """Wrap 'unlink' operation for later processing."""
        task_ref = self.link_task_for.get(link_path)
        if task_ref is not None:
            if task_ref.action == TaskAction.REMOVE:
                debug(1, 0, f"UNLINK: {link_path} (duplicates previous action)")
                return
            debug(1, 0, f"UNLINK: {link_path} (reverts previous action)")
            task_ref.action = TaskAction.SKIP
            del self.link_task_for[link_path]
            # The link this one replaced is still scheduled for removal
            for task in self.tasks:
                if task.path == link_path and task.type is TaskType.LINK and task.action is TaskAction.REMOVE:
                    self.link_task_for[link_path] = task
            return

        dir_task = self.dir_task_for.get(link_path)
        if dir_task is not None and dir_task.action == TaskAction.CREATE:
            raise DotfilesProgrammingError(
                f"new unlink operation clashes with planned new directory {link_path}"
            )

        debug(1, 0, f"UNLINK: {link_path}")
        try:
            source = os.readlink(link_path)
        except OSError as e:
            raise LinkError(f"could not readlink {link_path} ({e})") from e

        task = Task(TaskAction.REMOVE, TaskType.LINK, link_path, source=source)
        self.tasks.append(task)
        self.link_task_for[link_path] = task

    def _do_mkdir(self, dir_path: str) -> None:
        """Wrap 'mkdir' operation."""
        link_task = self.link_task_for.get(dir_path)
        if link_task is not None and link_task.action == TaskAction.CREATE:
            raise DotfilesProgrammingError(
                f"new dir clashes with planned new link ({link_task.path} => {link_task.source})"
            )

        task_ref = self.dir_task_for.get(dir_path)
        if task_ref is not None:
            if task_ref.action == TaskAction.CREATE:
                debug(1, 0, f"MKDIR: {dir_path} (duplicates previous action)")
                return
            debug(1, 0, f"MKDIR: {dir_path} (reverts previous action)")
            task_ref.action = TaskAction.SKIP
            del self.dir_task_for[dir_path]
            return

        debug(1, 0, f"MKDIR: {dir_path}")
        task = Task(TaskAction.CREATE, TaskType.DIR, dir_path)
        self.tasks.append(task)
        self.dir_task_for[dir_path] = task

    def _do_rmdir(self, dir_path: str) -> None:
        """Wrap 'rmdir' operation."""
        if dir_path in self.link_task_for:
            task_ref = self.link_task_for[dir_path]
            raise DotfilesProgrammingError(
                f"rmdir clashes with planned operation: {task_ref.action.value} link {task_ref.path}"
            )

        task_ref = self.dir_task_for.get(dir_path)
        if task_ref is not None:
            if task_ref.action == TaskAction.REMOVE:
                debug(1, 0, f"RMDIR: {dir_path} (duplicates previous action)")
                return
            debug(1, 0, f"RMDIR: {dir_path} (reverts previous action)")
            task_ref.action = TaskAction.SKIP
            del self.dir_task_for[dir_path]
            return

        debug(1, 0, f"RMDIR: {dir_path}")
        task = Task(TaskAction.REMOVE, TaskType.DIR, dir_path, source="")
        self.tasks.append(task)
        self.dir_task_for[dir_path] = task

    def _do_mv(self, src: str, dst: str) -> None:
        """Wrap 'move' operation for later processing."""
        if src in self.link_task_for or src in self.dir_task_for:
            raise DotfilesProgrammingError(f"do_mv: pre-existing task for {src}")

        debug(1, 0, f"MV: {src} -> {dst}")
        self.tasks.append(Task(TaskAction.MOVE, TaskType.FILE, src, dest=dst))

    def _process_task(self, task: Task) -> None:
        """Process a single task using pattern matching."""
        match (task.action, task.type):
            case (TaskAction.CREATE, TaskType.DIR):
                try:
                    os.mkdir(task.path, 0o777)
                except OSError as e:
                    raise LinkError(f"Could not create directory: {task.path} ({e})") from e

            case (TaskAction.CREATE, TaskType.LINK):
                try:
                    os.symlink(task.source, task.path)
                except OSError as e:
                    raise LinkError(
                        f"Could not create symlink: {task.path} => {task.source} ({e})"
                    ) from e

            case (TaskAction.REMOVE, TaskType.DIR):
                try:
                    os.rmdir(task.path)
                except OSError as e:
                    raise LinkError(f"Could not remove directory: {task.path} ({e})") from e

            case (TaskAction.REMOVE, TaskType.LINK):
                try:
                    # Only ever remove symlinks, even if the tree changed since planning
                    st = os.lstat(task.path)
                    if not stat.S_ISLNK(st.st_mode):
                        raise OSError(errno.EINVAL, "Not a symbolic link", task.path)
                    os.unlink(task.path)
                except OSError as e:
                    raise LinkError(f"Could not remove link: {task.path} ({e})") from e

            case (TaskAction.MOVE, TaskType.FILE):
                try:
                    move(task.path, task.dest)
                except OSError as e:
                    raise LinkError(f"Could not move {task.path} -> {task.dest} ({e})") from e

            case _:
                raise DotfilesProgrammingError(f"bad task action: {task.action.value}")


# =============================================================================
# Orphans
# =============================================================================


def find_orphans(
    home: str,
    dotfiles_dir: str,
    search_paths: Sequence[str] | None = None,
    max_depth: int = 3,
) -> Iterator[str]:
    """Yield broken symlinks under the search paths that point into the repository.

    Each search path is scanned to ``max_depth`` levels; the dotfiles
    directory itself is never descended into.
    """
    home = os.path.abspath(home)
    repo = os.path.abspath(dotfiles_dir)
    repo_real = os.path.realpath(repo)
    if search_paths is None:
        search_paths = (os.path.join(home, ".config"), home)

    seen: set[str] = set()
    for root in search_paths:
        if not os.path.isdir(root):
            continue
        debug(3, 0, f"Searching {tildify(root)} for orphaned links")
        for path in _walk_links(root, max_depth, repo_real):
            if path in seen or os.path.exists(path):
                continue
            seen.add(path)
            try:
                resolved = resolve_link(path)
            except OSError:
                debug(2, 1, f"Could not read link {path}")
                continue
            if is_within(resolved, repo_real) or is_within(resolved, repo):
                debug(2, 1, f"Orphaned link: {path} => {resolved}")
                yield path


def _walk_links(root: str, max_depth: int, skip: str) -> Iterator[str]:
    base_depth = root.rstrip(os.sep).count(os.sep)
    for dirpath, dirnames, filenames in os.walk(root):
        for name in sorted(dirnames + filenames):
            path = os.path.join(dirpath, name)
            if os.path.islink(path):
                yield path

        if dirpath.count(os.sep) - base_depth + 1 >= max_depth:
            dirnames[:] = []
        else:
            dirnames[:] = sorted(
                d
                for d in dirnames
                if not os.path.islink(os.path.join(dirpath, d))
                and os.path.realpath(os.path.join(dirpath, d)) != skip
            )


def cleanup_orphans(config: InstallerConfig) -> list[str]:
    """Remove orphaned repository links and the directories they leave empty.

    In simulate mode the orphans are only listed. Returns the orphan paths.
    """
    set_debug_level(config.verbose)
    home = os.path.abspath(config.home)
    roots = (os.path.join(home, ".config"), home)

    orphans = list(find_orphans(home, config.dotfiles_dir, roots))
    if not orphans:
        info("No orphaned dotfiles symlinks found")
        return []

    removed = []
    for path in orphans:
        if config.simulate:
            info(f"Would remove orphaned symlink: {tildify(path)}")
            removed.append(path)
            continue
        try:
            os.unlink(path)
        except OSError as e:
            warning(f"Could not remove {tildify(path)}: {e}")
            continue
        debug(1, 0, f"UNLINK: {path}")
        removed.append(path)
        _prune_empty_parents(os.path.dirname(path), home, roots)

    if not config.simulate:
        success(f"Removed {len(removed)} orphaned symlink(s)")
    return removed


def _prune_empty_parents(path: str, home: str, keep: Sequence[str]) -> None:
    keep = {os.path.abspath(p) for p in keep}
    while is_within(path, home) and path not in keep and path != home:
        if os.path.islink(path) or os.listdir(path):
            return
        try:
            os.rmdir(path)
        except OSError as e:
            warning(f"Could not remove empty directory {tildify(path)}: {e}")
            return
        debug(1, 0, f"RMDIR: {path}")
        path = os.path.dirname(path)


# =============================================================================
# Module-level helper functions
# =============================================================================


@functools.lru_cache(maxsize=None)
def _read_ignore_file(file_path: str) -> IgnorePatterns:
    """Read and parse ignore file, returning compiled regexps (cached)."""
    try:
        with open(file_path, "r") as f:
            patterns = _parse_ignore_lines(f)
    except OSError:
        return IgnorePatterns(None, None)

    # Always ignore the local ignore file itself
    patterns.add("^/" + re.escape(LOCAL_IGNORE_FILE) + "$")
    return _compile_ignore_patterns(patterns)


def _parse_ignore_lines(lines: Iterable[str]) -> set[str]:
    patterns: set[str] = set()
    for line in lines:
        line = line.strip()
        if line.startswith("#") or not line:
            continue
        line = re.sub(r"\s+#.+", "", line)
        line = line.replace("\\#", "#")
        patterns.add(line)
    return patterns


def _compile_ignore_patterns(patterns: set[str]) -> IgnorePatterns:
    """Compile ignore patterns into path and segment regexps."""
    segment_patterns = sorted(p for p in patterns if "/" not in p)
    path_patterns = sorted(p for p in patterns if "/" in p)

    try:
        segment_regexp = re.compile(f"^({'|'.join(segment_patterns)})$") if segment_patterns else None
        path_regexp = re.compile(f"(^|/)({'|'.join(path_patterns)})(/|$)") if path_patterns else None
    except re.error as e:
        raise LinkError(f"Failed to compile ignore regexp: {e}") from e

    return IgnorePatterns(path_regexp, segment_regexp)


@functools.lru_cache(maxsize=1)
def _get_default_ignore_regexps() -> IgnorePatterns:
    """Get default ignore regexps (cached)."""
    default_patterns = """
# Comments and blank lines are allowed.

RCS
.+,v

CVS
\\.\\#.+       # CVS conflict files / emacs lock files
\\.cvsignore

\\.svn
_darcs
\\.hg

\\.git
\\.gitignore
\\.gitmodules

\\.DS_Store

.+~          # emacs backup files
\\#.*\\#       # emacs autosave files

^/README.*
^/LICENSE.*
^/COPYING
"""
    patterns = _parse_ignore_lines(default_patterns.splitlines())
    patterns.add("^/" + re.escape(LOCAL_IGNORE_FILE) + "$")
    return _compile_ignore_patterns(patterns)

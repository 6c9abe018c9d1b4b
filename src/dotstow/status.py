# dotstow - dotfiles installer with a Stow-style link planner
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""status - Report what is linked, what is broken and what is missing."""

from __future__ import annotations

import os
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Optional

from dotstow.apps import discover_apps
from dotstow.deps import font_families, has_font, install_hint, missing_dependencies
from dotstow.probe import Runner, probe
from dotstow.types import (
    OS,
    AppDescriptor,
    InstallerConfig,
    LinkState,
    Platform,
    ProbeResult,
)
from dotstow.util import is_within, resolve_link, tildify

PACKAGES = ("common", "macos", "linux", "windows")

_SUBMODULE_STATES = {
    "-": "not initialized",
    "+": "different commit checked out",
    " ": "up to date",
    "U": "merge conflicts",
}


@dataclass(frozen=True)
class PathStatus:
    target: str
    state: LinkState
    broken: bool = False
    link_dest: Optional[str] = None
    detail: str = ""
    links: int = 0

    @property
    def is_link(self) -> bool:
        return self.link_dest is not None


@dataclass
class AppStatus:
    app: str
    state: LinkState
    paths: list[PathStatus] = field(default_factory=list)

    @property
    def broken(self) -> bool:
        return any(p.broken for p in self.paths)

    @property
    def valid(self) -> bool:
        return self.state is LinkState.MANAGED and not self.broken


@dataclass(frozen=True)
class FontStatus:
    maple_mono: bool
    jetbrains_mono: bool
    font_awesome: tuple[str, ...] = ()


@dataclass(frozen=True)
class Submodule:
    path: str
    state: str
    commit: str


@dataclass
class GitStatus:
    branch: str
    commit: str
    changes: list[str] = field(default_factory=list)
    submodules: list[Submodule] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.changes


@dataclass
class StatusReport:
    platform: Platform
    dotfiles_dir: str
    apps: list[AppStatus] = field(default_factory=list)
    missing_deps: dict[str, list[str]] = field(default_factory=dict)
    install_hint: Optional[str] = None
    fonts: Optional[FontStatus] = None
    tools: list[ProbeResult] = field(default_factory=list)
    packages: dict[str, Optional[int]] = field(default_factory=dict)
    git: Optional[GitStatus] = None

    @property
    def total_links(self) -> int:
        # Apps can share a target (common and OS package both shipping it)
        return sum({p.target: p.links for a in self.apps for p in a.paths}.values())

    @property
    def valid(self) -> int:
        return sum(1 for a in self.apps if a.valid)

    @property
    def broken(self) -> int:
        return sum(1 for a in self.apps if a.broken)

    def count(self, state: LinkState) -> int:
        return sum(1 for a in self.apps if a.state is state)

    @property
    def foreign(self) -> int:
        return self.count(LinkState.FOREIGN)

    @property
    def unmanaged(self) -> int:
        return self.count(LinkState.UNMANAGED)

    @property
    def missing(self) -> int:
        return self.count(LinkState.MISSING)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def classify(target: str, dotfiles_dir: str) -> PathStatus:
    """Classify one target path against the dotfiles directory."""
    repo = os.path.realpath(dotfiles_dir)

    if not os.path.lexists(target):
        return PathStatus(target, LinkState.MISSING)

    if os.path.islink(target):
        link_dest = os.readlink(target)
        broken = not os.path.exists(target)
        state = LinkState.MANAGED if is_within(resolve_link(target), repo) else LinkState.FOREIGN
        return PathStatus(target, state, broken, link_dest, links=1)

    if is_within(os.path.realpath(target), repo):
        return PathStatus(target, LinkState.MANAGED, detail="inside a linked directory")

    if os.path.isdir(target):
        managed = total = broken = 0
        for path in _walk_leaves(target):
            total += 1
            if os.path.islink(path) and is_within(resolve_link(path), repo):
                managed += 1
                broken += not os.path.exists(path)
        if total and managed == total:
            return PathStatus(
                target, LinkState.MANAGED, broken > 0, detail="directory of links", links=managed
            )
        if managed:
            return PathStatus(
                target,
                LinkState.UNMANAGED,
                broken > 0,
                detail=f"mixed directory ({managed}/{total} linked)",
                links=managed,
            )
        return PathStatus(target, LinkState.UNMANAGED, detail="real directory")

    return PathStatus(target, LinkState.UNMANAGED, detail="real file")


def _walk_leaves(root: str) -> Iterator[str]:
    """Yield every non-directory entry below root, links included, without following links."""
    for dirpath, dirnames, filenames in os.walk(root):
        for name in sorted(filenames):
            yield os.path.join(dirpath, name)
        for name in sorted(dirnames):
            path = os.path.join(dirpath, name)
            if os.path.islink(path):
                yield path


def app_status(app: AppDescriptor, config: InstallerConfig) -> AppStatus:
    home = os.path.abspath(config.home)
    paths = [classify(os.path.join(home, rel), config.dotfiles_dir) for rel in app.targets]
    states = {p.state for p in paths}
    state = LinkState.MANAGED
    for s in (LinkState.UNMANAGED, LinkState.FOREIGN, LinkState.MISSING):
        if s in states:
            state = s
            break
    return AppStatus(app.name, state, paths)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


def font_status(runner: Runner) -> FontStatus | None:
    lines = font_families(runner)
    if lines is None:
        return None
    majors = sorted({m.group(1) for line in lines if (m := re.search(r"Font Awesome (\d+)", line))})
    return FontStatus(
        maple_mono=has_font(lines, "maple mono", "nf"),
        jetbrains_mono=has_font(lines, "jetbrainsmono nerd") or has_font(lines, "jetbrains mono", "nerd"),
        font_awesome=tuple(majors),
    )


def package_counts(dotfiles_dir: str) -> dict[str, Optional[int]]:
    """Number of .config apps per package, None for packages that are absent."""
    counts: dict[str, Optional[int]] = {}
    for package in PACKAGES:
        pkg_dir = os.path.join(dotfiles_dir, package)
        if not os.path.isdir(pkg_dir):
            counts[package] = None
            continue
        config_dir = os.path.join(pkg_dir, ".config")
        counts[package] = (
            sum(os.path.isdir(os.path.join(config_dir, e)) for e in os.listdir(config_dir))
            if os.path.isdir(config_dir)
            else 0
        )
    return counts


def parse_submodule_status(text: str) -> list[Submodule]:
    """Parse ``git submodule status`` output; the first column is the state flag."""
    result = []
    for line in text.splitlines():
        if len(line) < 2:
            continue
        fields = line[1:].split()
        if len(fields) < 2:
            continue
        state = _SUBMODULE_STATES.get(line[0], "unknown")
        result.append(Submodule(fields[1], state, fields[0][:7]))
    return result


def git_status(dotfiles_dir: str, runner: Runner) -> GitStatus | None:
    """Summarize the checkout, or None if it is not a git repository."""
    if not os.path.lexists(os.path.join(dotfiles_dir, ".git")) or runner.which("git") is None:
        return None

    def git(*args: str) -> str:
        return runner.output(["git", "-C", dotfiles_dir, *args])

    status = GitStatus(
        branch=git("branch", "--show-current").strip() or "unknown",
        commit=git("rev-parse", "--short", "HEAD").strip() or "unknown",
        changes=[line for line in git("status", "--porcelain").splitlines() if line.strip()],
    )
    if os.path.exists(os.path.join(dotfiles_dir, ".gitmodules")):
        status.submodules = parse_submodule_status(git("submodule", "status"))
    return status


def report(config: InstallerConfig, runner: Runner | None = None) -> StatusReport:
    """Build the status report. Read only."""
    runner = runner or Runner()
    apps = discover_apps(config.dotfiles_dir, config.os)

    result = StatusReport(config.platform, config.dotfiles_dir)
    result.apps = [app_status(app, config) for app in apps.values()]
    for name in apps:
        if missing := missing_dependencies(name, config.os, runner):
            result.missing_deps[name] = missing
    if result.missing_deps:
        result.install_hint = install_hint(config.os, runner)
    if config.os is not OS.WINDOWS:
        result.fonts = font_status(runner)
    result.tools = [probe("stow", runner), probe("git", runner)]
    result.packages = package_counts(config.dotfiles_dir)
    result.git = git_status(config.dotfiles_dir, runner)
    return result


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _describe(path: PathStatus) -> str:
    target = tildify(path.target)
    match path.state:
        case LinkState.MANAGED if path.is_link:
            suffix = " (broken)" if path.broken else ""
            return f"{target} -> {path.link_dest}{suffix}"
        case LinkState.MANAGED:
            return f"{target} ({path.detail})"
        case LinkState.FOREIGN:
            return f"{target} -> {path.link_dest} (not managed by dotfiles)"
        case LinkState.UNMANAGED:
            return f"{target} ({path.detail}, not managed by dotfiles)"
        case _:
            return f"{target} (not linked)"


def _symbol(app: AppStatus) -> str:
    if app.broken:
        return "✗"
    if app.valid:
        return "✓"
    if app.state is LinkState.MISSING:
        return "-"
    return "!"


def render(rep: StatusReport) -> str:
    lines = [f"Dotfiles status ({rep.platform})", f"Dotfiles directory: {tildify(rep.dotfiles_dir)}", ""]

    lines.append("Symlinks:")
    for app in rep.apps:
        for i, path in enumerate(app.paths):
            name = app.app if i == 0 else ""
            mark = _symbol(app) if i == 0 else " "
            lines.append(f"  {mark} {name:<14} {_describe(path)}")
    lines.append(
        f"  {len(rep.apps)} apps: {rep.valid} valid, {rep.broken} broken, "
        f"{rep.foreign} foreign, {rep.unmanaged} unmanaged, {rep.missing} missing; "
        f"{rep.total_links} symlinks"
    )

    if rep.missing_deps:
        lines += ["", "Missing dependencies:"]
        for app, missing in rep.missing_deps.items():
            lines.append(f"  ! {app}: {', '.join(missing)}")
        if rep.install_hint:
            lines.append(f"  Install with: {rep.install_hint} <package>")

    if rep.fonts is not None:
        fa = ", ".join(f"v{v}" for v in rep.fonts.font_awesome)
        lines += [
            "",
            "Fonts:",
            f"  {'✓' if rep.fonts.maple_mono else '✗'} Maple Mono NF",
            f"  {'✓' if rep.fonts.jetbrains_mono else '✗'} JetBrains Mono Nerd Font",
            f"  {'✓' if fa else '✗'} Font Awesome" + (f" ({fa})" if fa else ""),
        ]

    lines += ["", "Tools:"]
    for tool in rep.tools:
        if tool:
            lines.append(f"  ✓ {tool.name} {tool.version or ''}".rstrip())
        else:
            lines.append(f"  ✗ {tool.name} not found")

    lines += ["", "Packages:"]
    for package, count in rep.packages.items():
        if count is None:
            lines.append(f"  - {package}/ not present")
        else:
            lines.append(f"  ✓ {package}/ ({count} app configs)")

    if rep.git is not None:
        git = rep.git
        lines += ["", "Git:"]
        if git.clean:
            lines.append("  ✓ No uncommitted changes")
        else:
            lines.append(f"  ! {len(git.changes)} uncommitted change(s)")
        lines.append(f"  Branch: {git.branch}  Commit: {git.commit}")
        for sub in git.submodules:
            mark = "✓" if sub.state == "up to date" else "!"
            lines.append(f"  {mark} {sub.path}: {sub.state}")

    return "\n".join(lines)

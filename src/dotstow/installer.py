# dotstow - dotfiles installer with a Stow-style link planner
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Installer - orchestrates the commands over an explicit configuration.

Fatal preconditions propagate as FatalPrecondition; optional steps raise
StepFailure, which is caught here, logged, and summarized at the end.
"""

from __future__ import annotations

import os
from typing import Callable, Optional, Sequence

from dotstow import components
from dotstow.apps import discover_apps, resolve_app
from dotstow.backup import backup_conflicts
from dotstow.deps import install_hint, missing_dependencies
from dotstow.link import Linker, cleanup_orphans, relink, unlink_app, unlink_packages
from dotstow.probe import Runner
from dotstow.status import StatusReport, render, report
from dotstow.types import (
    OS,
    AppDescriptor,
    BackupRecord,
    ConflictError,
    HomeNotWritableError,
    InstallerConfig,
    LinkReport,
    StepFailure,
    UserCancelled,
)
from dotstow.util import info, require_directory, set_debug_level, success, tildify, warning

Prompt = Callable[[str], str]


def ask_yes_no(question: str, default: bool, prompt: Prompt = input) -> bool:
    """Ask until the answer is yes or no; an empty answer takes the default."""
    suffix = "[Y/n]" if default else "[y/N]"
    while True:
        try:
            response = prompt(f"{question} {suffix}: ").strip().lower()
        except EOFError:
            return default
        if not response:
            return default
        if response in ("y", "yes"):
            return True
        if response in ("n", "no"):
            return False
        print("Please answer yes or no.")


class Installer:
    """Runs installer commands for one InstallerConfig.

    Args:
        config: Explicit configuration for every operation
        runner: Executes external commands (swapped out in tests)
        prompt: Reads an answer for interactive questions
    """

    def __init__(
        self,
        config: InstallerConfig,
        runner: Optional[Runner] = None,
        prompt: Prompt = input,
    ):
        self.c = config
        self.runner = runner or Runner()
        self.prompt = prompt
        self.failures: list[str] = []
        set_debug_level(config.verbose)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @property
    def home(self) -> str:
        return os.path.abspath(self.c.home)

    def ask(self, question: str, default: bool) -> bool:
        return ask_yes_no(question, default, self.prompt)

    def step(self, label: str, fn: Callable, *args) -> bool:
        """Run an optional step; a StepFailure is recorded instead of raised."""
        try:
            fn(*args)
        except StepFailure as e:
            warning(f"{label} failed: {e.message}")
            self.failures.append(f"{label}: {e.message}")
            return False
        return True

    def validate(self, packages: Sequence[str]) -> None:
        """Check fatal preconditions before anything is linked."""
        info("Validating environment...")
        for package in packages:
            require_directory(
                self.c.package_dir(package),
                f"Package directory '{package}' not found in {tildify(self.c.dotfiles_dir)}",
            )
        if not self.c.simulate and not (os.path.isdir(self.home) and os.access(self.home, os.W_OK)):
            raise HomeNotWritableError(f"No write permission to HOME directory: {self.home}")

        if os.path.isdir(os.path.join(self.home, ".oh-my-zsh")) and any(
            os.path.isdir(os.path.join(self.c.package_dir(p), ".config", "zsh")) for p in packages
        ):
            warning("Oh-My-Zsh detected - may conflict with zsh dotfiles")

    def apps(self) -> dict[str, AppDescriptor]:
        return discover_apps(self.c.dotfiles_dir, self.c.os)

    def resolve(self, name: str) -> AppDescriptor:
        return resolve_app(name, self.apps())

    def summary(self) -> None:
        if not self.failures:
            return
        warning(f"Completed with {len(self.failures)} recoverable failure(s):")
        for failure in self.failures:
            warning(f"  - {failure}")

    # -------------------------------------------------------------------------
    # Linking with backup
    # -------------------------------------------------------------------------

    def link(self, plan: Callable[[Linker], None], backup: bool) -> LinkReport:
        """Plan, back up conflicting real files, re-plan, then execute.

        In simulate mode the backed-up paths are only treated as vacated
        while re-planning, so the trace matches a live run.
        """
        linker = Linker(self.c)
        plan(linker)

        if linker.conflict_paths and backup and self._confirm_backup(linker.conflict_paths):
            record = backup_conflicts(
                linker.conflict_paths, self.home, remove=True, simulate=self.c.simulate
            )
            vacated = [os.path.join(self.home, e) for e in record.entries] if record else []
            linker = Linker(self.c, vacated=vacated)
            plan(linker)

        report = linker.execute()
        if not report.success:
            raise ConflictError(report.conflicts)
        if self.c.simulate:
            info(f"SIMULATION: {len(report.tasks)} operation(s) planned; nothing was changed")
        return report

    def _confirm_backup(self, paths: Sequence[str]) -> bool:
        if not self.c.interactive:
            return True

        warning(f"Found {len(paths)} existing dotfile(s) that would be overwritten:")
        for path in paths:
            print(f"  - {tildify(path)}")
        if self.ask("Do you want to backup these files before installation?", True):
            return True
        if self.ask(
            "Proceed WITHOUT backing up? Existing files are never overwritten, so linking "
            "stops at these conflicts (use --adopt to move them into the repository)",
            False,
        ):
            return False
        raise UserCancelled("Installation cancelled by user.")

    def _choose_packages(self) -> list[str]:
        os_name = self.c.os.value
        info("Available package groups for installation:")
        print("  1. common     - Cross-platform configs (nvim, fish, git, etc.)")
        print(f"  2. {os_name:<10} - {os_name}-specific configs")

        chosen = []
        if self.ask("Install common (cross-platform) configurations?", True):
            chosen.append("common")
        if self.ask(f"Install {os_name}-specific configurations?", True):
            chosen.append(os_name)

        if not chosen:
            warning("No packages selected for installation.")
            if self.ask("Exit without installing anything?", True):
                raise UserCancelled("Installation cancelled by user.")
            return self._choose_packages()
        return chosen

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def install(self, with_tools: Optional[bool] = None, update_subs: Optional[bool] = None) -> LinkReport:
        """Link the packages for this platform and run the follow-up steps."""
        with_tools = self.c.with_tools if with_tools is None else with_tools
        update_subs = self.c.update_subs if update_subs is None else update_subs

        info(f"Detected platform: {self.c.platform}")
        if self.c.simulate:
            info("SIMULATION MODE: no actual changes will be made")

        if self.c.interactive:
            info("=== Interactive Installation Mode ===")
            if not with_tools and self.ask("Install development tools with mise?", False):
                with_tools = True
            if not update_subs and self.ask("Update git submodules (editor configs)?", False):
                update_subs = True
            packages = self._choose_packages()
        else:
            packages = list(self.c.packages)

        self.validate(packages)

        def plan(linker: Linker) -> None:
            for package in packages:
                info(f"Linking {package} configurations...")
                linker.plan_link(package)

        report = self.link(plan, backup=self.c.backup)
        if not self.c.simulate:
            success("All selected packages linked successfully!")

        self.post_install()
        if with_tools:
            self.step("Development tools", components.install_tools, self.c, self.runner)
        if update_subs:
            self.step("Git submodules", components.update_submodules, self.c, self.runner)
        self.summary()
        return report

    def post_install(self) -> None:
        """Hooks that depend on what just got linked."""
        if self.c.simulate:
            return

        if (
            os.path.isfile(os.path.join(self.home, ".config", "fish", "fish_plugins"))
            and self.runner.which("fish") is not None
        ):
            self.step("Fish plugins", components.setup_fish_plugins, self.c, self.runner)

        if self.c.os is not OS.LINUX:
            return
        dotfiles = os.path.abspath(self.c.dotfiles_dir)
        niri_script = os.path.join(dotfiles, "linux", "setup-niri-systemd.sh")
        if os.path.isfile(os.path.join(self.home, ".config", "niri", "config.kdl")):
            self.run_hook("Niri systemd setup", niri_script)
        greetd_script = os.path.join(dotfiles, "scripts", "setup-greetd.sh")
        if os.path.isfile(os.path.join(dotfiles, "linux", "etc", "greetd", "config.toml")):
            self.run_hook("greetd setup", greetd_script)

    def run_hook(self, label: str, script: str) -> None:
        if not os.access(script, os.X_OK):
            return
        info(f"Running {label}...")
        result = self.runner.run([script], capture=False, cwd=os.path.abspath(self.c.dotfiles_dir))
        if result.returncode != 0:
            warning(f"{label} failed. You can run it manually later: {script}")
            self.failures.append(f"{label}: exit status {result.returncode}")

    def uninstall(self, app: Optional[str] = None) -> None:
        if app:
            self.unstow_app(app)
            return
        info("Unlinking packages...")
        for package in unlink_packages(self.c.packages, self.c):
            self.failures.append(f"unlink {package}: fell back to orphaned symlink cleanup")
        self.summary()

    def restow(self) -> LinkReport:
        """Unlink and link again in one plan, without backing up."""
        self.validate(self.c.packages)
        report = relink(*self.c.packages, config=self.c)
        if not report.success:
            raise ConflictError(report.conflicts)
        success("Packages re-linked")
        self.post_install()
        self.summary()
        return report

    def stow_app(self, name: str) -> LinkReport:
        app = self.resolve(name)
        info(f"Linking {app.name}...")
        self.check_dependencies(app.name)
        report = self.link(lambda linker: linker.plan_link_app(app), backup=self.c.backup)
        if not self.c.simulate:
            success(f"{app.name} linked")
        return report

    def unstow_app(self, name: str) -> LinkReport:
        app = self.resolve(name)
        info(f"Unlinking {app.name}...")
        report = unlink_app(app, self.c)
        if not report.success:
            raise ConflictError(report.conflicts)
        if not self.c.simulate:
            success(f"{app.name} unlinked")
        return report

    def check_dependencies(self, app: str) -> list[str]:
        missing = missing_dependencies(app, self.c.os, self.runner)
        if missing:
            warning(f"{app} is missing dependencies: {', '.join(missing)}")
            if hint := install_hint(self.c.os, self.runner):
                info(f"Install with: {hint} <package>")
        return missing

    def backup(self) -> BackupRecord | None:
        """Copy the real files a link would replace; nothing is removed."""
        linker = Linker(self.c)
        for package in self.c.packages:
            if os.path.isdir(self.c.package_dir(package)):
                linker.plan_link(package)
        record = backup_conflicts(linker.conflict_paths, self.home, simulate=self.c.simulate)
        if record is None:
            info("No existing dotfiles found to backup")
        return record

    def cleanup(self) -> list[str]:
        info("Cleaning up orphaned dotfiles symlinks...")
        return cleanup_orphans(self.c)

    def status(self) -> StatusReport:
        rep = report(self.c, self.runner)
        print(render(rep))
        return rep

    def all(self) -> LinkReport:
        return self.install(with_tools=True, update_subs=True)

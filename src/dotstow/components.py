# dotstow - dotfiles installer with a Stow-style link planner
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Optional components installed next to the dotfiles.

Each function is an idempotent "ensure present" step. A failure raises
StepFailure, which the installer records and reports at the end without
aborting the run. Missing package managers stay fatal (see deps.ensure_tool).
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
import zipfile
from datetime import datetime
from typing import Optional

from dotstow.deps import TOOLS, ensure_tool, font_families, has_font, select_manager, use_sudo
from dotstow.probe import Runner
from dotstow.status import Submodule, parse_submodule_status
from dotstow.types import OS, InstallerConfig, StepFailure
from dotstow.util import debug, info, success, tildify, warning

MAPLE_MONO_URL = (
    "https://github.com/subframe7536/Maple-font/releases/download/v7.6/MapleMono-NF-unhinted.zip"
)
MAPLE_MONO_DIR = ".local/share/fonts/MapleMono"
FONT_AWESOME_PACKAGES = {
    "pacman": "otf-font-awesome",
    "apt": "fonts-font-awesome",
    "dnf": "fontawesome-fonts-all",
}
MACOS_FONT_CASKS = (
    ("font-maple-mono-nf", "Maple Mono Nerd Font", True),
    ("font-fontawesome", "Font Awesome", False),
)

FISHER_URL = "https://raw.githubusercontent.com/jorgebucaran/fisher/main/functions/fisher.fish"
FISH_PLUGINS = ("jorgebucaran/fisher", "pure-fish/pure", "jhillyerd/plugin-git")

MISE_INSTALLER = "curl https://mise.run | sh"


# =============================================================================
# Fonts
# =============================================================================


def install_fonts(config: InstallerConfig, runner: Runner) -> None:
    info("Installing required fonts...")
    if config.simulate:
        info("Would install Maple Mono NF and Font Awesome")
        return

    match config.os:
        case OS.MACOS:
            _install_fonts_macos(runner)
        case OS.LINUX:
            _install_fonts_linux(os.path.abspath(config.home), runner)
        case _:
            warning(f"Font installation is not supported on {config.os.value}")


def _install_fonts_macos(runner: Runner) -> None:
    if runner.which("brew") is None:
        raise StepFailure("Homebrew is required for font installation on macOS")

    for cask, label, required in MACOS_FONT_CASKS:
        if runner.succeeds(["brew", "list", "--cask", cask]):
            info(f"{label} is already installed")
            continue
        info(f"Installing {label} via Homebrew...")
        if runner.run(["brew", "install", "--cask", cask], capture=False).returncode == 0:
            success(f"{label} installed successfully")
        elif required:
            raise StepFailure(f"Failed to install {label} via Homebrew")
        else:
            warning(f"Failed to install {label}")


def _install_fonts_linux(home: str, runner: Runner) -> None:
    lines = font_families(runner) or []

    if has_font(lines, "maple mono nf"):
        info("Maple Mono Nerd Font is already installed")
    else:
        _install_maple_mono(home, runner)

    if has_font(lines, "font awesome"):
        info("Font Awesome is already installed")
    else:
        _install_font_awesome(runner)


def _install_maple_mono(home: str, runner: Runner) -> None:
    if runner.which("curl") is None:
        raise StepFailure("curl is required to download Maple Mono Nerd Font")

    font_dir = os.path.join(home, MAPLE_MONO_DIR)
    info("Downloading Maple Mono Nerd Font...")
    with tempfile.TemporaryDirectory(prefix="maple-font-") as tmp:
        zip_path = os.path.join(tmp, "MapleMono-NF.zip")
        argv = ["curl", "-fL", "--max-time", "60", "-o", zip_path, MAPLE_MONO_URL]
        if runner.run(argv, capture=False).returncode != 0:
            raise StepFailure("Failed to download Maple Mono Nerd Font")
        installed = extract_fonts(zip_path, font_dir)

    if not installed:
        raise StepFailure("No TTF files found in the Maple Mono archive")
    info(f"Installed {len(installed)} font files to {tildify(font_dir)}")

    if runner.which("fc-cache") is not None:
        runner.run(["fc-cache", "-f", font_dir])
    success("Maple Mono Nerd Font installed successfully")


def extract_fonts(zip_path: str, font_dir: str) -> list[str]:
    """Copy every .ttf member of the archive, flattened, into font_dir."""
    installed = []
    try:
        with zipfile.ZipFile(zip_path) as zf:
            members = [n for n in zf.namelist() if n.lower().endswith(".ttf")]
            if members:
                os.makedirs(font_dir, exist_ok=True)
            for name in members:
                dest = os.path.join(font_dir, os.path.basename(name))
                with zf.open(name) as src, open(dest, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                debug(2, 1, f"Installed {os.path.basename(name)}")
                installed.append(dest)
    except (zipfile.BadZipFile, OSError) as e:
        raise StepFailure(f"Failed to extract font archive: {e}") from e
    return installed


def _install_font_awesome(runner: Runner) -> None:
    manager = select_manager(tuple(FONT_AWESOME_PACKAGES), runner)
    if manager is None:
        warning("No supported package manager for Font Awesome; please install it manually")
        return

    info(f"Installing Font Awesome via {manager.name}...")
    for argv in manager.commands(FONT_AWESOME_PACKAGES[manager.name], use_sudo(runner)):
        if runner.run(argv, capture=False).returncode != 0:
            warning("Failed to install Font Awesome")
            return
    success("Font Awesome installed successfully")


# =============================================================================
# Shells and terminal tools
# =============================================================================


def _ensure(name: str, config: InstallerConfig, runner: Runner) -> None:
    if config.simulate:
        info(f"Would ensure {TOOLS[name].name} is installed")
        return
    outcome = ensure_tool(TOOLS[name], config.os, runner)
    if not outcome.ok:
        raise StepFailure(f"{TOOLS[name].name}: {outcome.reason}")


def install_fish(config: InstallerConfig, runner: Runner, shells_file: str = "/etc/shells") -> None:
    """Install fish and make it the login shell."""
    _ensure("fish", config, runner)
    if config.simulate:
        return

    fish_path = runner.which("fish")
    if fish_path is None:
        raise StepFailure("Fish shell not found in PATH")

    _register_shell(fish_path, runner, shells_file)

    if os.environ.get("SHELL") == fish_path:
        info("Fish is already the default shell")
        return

    info("Changing default shell to fish...")
    if runner.run(["chsh", "-s", fish_path], capture=False).returncode == 0:
        success("Default shell changed to fish")
        info("Please restart your terminal or log out and back in for the change to take effect")
    else:
        warning(f"Failed to change default shell. You can manually run: chsh -s {fish_path}")

    info("Fish plugins will be set up after the dotfiles are linked")


def _register_shell(shell_path: str, runner: Runner, shells_file: str) -> None:
    try:
        with open(shells_file) as f:
            shells = {line.strip() for line in f}
    except OSError:
        shells = set()
    if shell_path in shells:
        return

    info(f"Adding {shell_path} to {shells_file}...")
    argv = ["tee", "-a", shells_file]
    if use_sudo(runner):
        argv.insert(0, "sudo")
    if runner.run(argv, input=shell_path + "\n").returncode != 0:
        warning(f"Could not add {shell_path} to {shells_file}")


def setup_fish_plugins(config: InstallerConfig, runner: Runner) -> None:
    """Install Fisher and the prompt/git plugins."""
    if runner.which("fish") is None:
        raise StepFailure("fish is not installed; run 'dotstow fish' first")
    if config.simulate:
        info(f"Would install fish plugins: {', '.join(FISH_PLUGINS)}")
        return

    info("Setting up fish plugins...")
    script = "; ".join(
        [f"curl -sL {FISHER_URL} | source"] + [f"fisher install {p}" for p in FISH_PLUGINS]
    )
    if runner.run(["fish", "-c", script], capture=False).returncode != 0:
        raise StepFailure("Failed to install fish plugins")
    success("Fish plugins installed")


def install_zellij(config: InstallerConfig, runner: Runner) -> None:
    _ensure("zellij", config, runner)


def install_k9s(config: InstallerConfig, runner: Runner) -> None:
    _ensure("k9s", config, runner)


# =============================================================================
# Development tools (mise)
# =============================================================================


def parse_tool_versions(text: str) -> list[tuple[str, str]]:
    """Parse ``.tool-versions`` lines into (tool, version) pairs."""
    pairs = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        fields = line.split()
        if len(fields) >= 2:
            pairs.append((fields[0], fields[1]))
    return pairs


def _find_mise(home: str, runner: Runner) -> Optional[str]:
    local = os.path.join(home, ".local", "bin", "mise")
    return runner.which("mise") or (local if os.path.exists(local) else None)


def install_tools(config: InstallerConfig, runner: Runner) -> None:
    """Install mise, then the tool versions pinned in the repository."""
    home = os.path.abspath(config.home)
    dotfiles = os.path.abspath(config.dotfiles_dir)
    config_toml = os.path.join(dotfiles, "common", ".config", "mise", "config.toml")
    tool_versions = os.path.join(dotfiles, ".tool-versions")

    if config.simulate:
        info("Would install mise and the configured development tools")
        return

    mise = _find_mise(home, runner)
    if mise is None:
        info("Installing mise...")
        if runner.run(MISE_INSTALLER, shell=True, capture=False).returncode != 0:
            raise StepFailure("Failed to install mise")
        mise = _find_mise(home, runner)
        if mise is None:
            raise StepFailure("mise is still not available after installation")
        success("mise installed successfully")
    else:
        info(f"mise is already installed ({mise})")

    if os.path.isfile(config_toml):
        info("Installing tools globally from config.toml...")
        if runner.run([mise, "install"], cwd=dotfiles, capture=False).returncode != 0:
            raise StepFailure("Some tools may have failed to install")
    elif os.path.isfile(tool_versions):
        info("Installing tools globally from .tool-versions...")
        with open(tool_versions) as f:
            pairs = parse_tool_versions(f.read())
        failed = []
        for tool, version in pairs:
            spec = f"{tool}@{version}"
            if runner.run([mise, "use", "-g", spec], capture=False).returncode == 0:
                info(f"✓ {spec} installed successfully")
            else:
                warning(f"✗ Failed to install {spec}")
                failed.append(spec)
        if failed:
            raise StepFailure(f"Failed to install {', '.join(failed)}")
    else:
        raise StepFailure(f"No mise configuration found (config.toml or .tool-versions) in {dotfiles}")

    success("Development tools installed globally")


# =============================================================================
# Claude MCP servers
# =============================================================================


def setup_mcp_servers(config: InstallerConfig, now: Optional[datetime] = None) -> list[str]:
    """Install the repository's MCP server set into ``~/.claude.json``.

    The settings file is copied to a timestamped backup first and restored
    from it if the update cannot be written. Returns the server names.
    """
    claude_json = os.path.join(os.path.abspath(config.home), ".claude.json")
    servers_file = os.path.join(config.dotfiles_dir, "common", ".claude", "mcp-servers.json")

    if not os.path.isfile(claude_json):
        raise StepFailure(
            f"Claude settings file not found at {tildify(claude_json)}; "
            "run Claude at least once first"
        )
    try:
        with open(servers_file) as f:
            servers = json.load(f)["mcpServers"]
    except (OSError, ValueError, KeyError, TypeError) as e:
        raise StepFailure(f"Could not read MCP servers configuration {servers_file}: {e}") from e

    names = sorted(servers)
    if config.simulate:
        info(f"Would install MCP servers: {', '.join(names)}")
        return names

    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
    backup_file = f"{claude_json}.backup.{stamp}"
    try:
        shutil.copy2(claude_json, backup_file)
    except OSError as e:
        raise StepFailure(f"Could not back up {tildify(claude_json)}: {e}") from e
    info(f"Backed up existing settings to {tildify(backup_file)}")

    tmp_file = claude_json + ".tmp"
    try:
        with open(claude_json) as f:
            settings = json.load(f)
        settings["mcpServers"] = servers
        with open(tmp_file, "w") as f:
            json.dump(settings, f, indent=2)
            f.write("\n")
        os.replace(tmp_file, claude_json)
    except (OSError, ValueError, TypeError) as e:
        warning("Failed to update MCP servers configuration; restoring backup...")
        if os.path.exists(tmp_file):
            os.unlink(tmp_file)
        shutil.copy2(backup_file, claude_json)
        raise StepFailure(f"Failed to update MCP servers configuration: {e}") from e

    success("MCP servers configuration updated successfully")
    for name in names:
        info(f"  ✓ {name}")
    return names


# =============================================================================
# Git submodules
# =============================================================================


def update_submodules(config: InstallerConfig, runner: Runner) -> list[Submodule]:
    dotfiles = os.path.abspath(config.dotfiles_dir)
    if not os.path.exists(os.path.join(dotfiles, ".gitmodules")):
        info("No git submodules configured")
        return []
    if runner.which("git") is None:
        raise StepFailure("git is required to update submodules")
    if config.simulate:
        info("Would initialize and update git submodules")
        return []

    info("Updating git submodules...")
    for args, what in (
        (["submodule", "init"], "initialize"),
        (["submodule", "update", "--remote", "--recursive"], "update"),
    ):
        if runner.run(["git", "-C", dotfiles, *args], capture=False).returncode != 0:
            raise StepFailure(f"Failed to {what} git submodules")

    submodules = parse_submodule_status(
        runner.output(["git", "-C", dotfiles, "submodule", "status", "--recursive"])
    )
    for sub in submodules:
        info(f"  {sub.path}: {sub.state} ({sub.commit})")
    success("Git submodules updated")
    return submodules

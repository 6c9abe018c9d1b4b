# dotstow - dotfiles installer with a Stow-style link planner
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Dependency installer.

Every optional tool goes through the same idempotent "ensure present"
operation: probe the binary, pick the first available package manager in
the tool's priority order, run its install command, probe again.
"""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field

from dotstow.probe import Runner, probe
from dotstow.types import (
    OS,
    InstallOutcome,
    NoPackageManagerError,
    OutcomeStatus,
)
from dotstow.util import debug, info, success, warning


@dataclass(frozen=True)
class PackageManager:
    name: str
    install: tuple[str, ...]
    sudo: bool = False
    refresh: tuple[str, ...] = ()

    def commands(self, package: str, use_sudo: bool) -> list[list[str]]:
        prefix = ["sudo"] if self.sudo and use_sudo else []
        cmds = []
        if self.refresh:
            cmds.append(prefix + list(self.refresh))
        cmds.append(prefix + list(self.install) + package.split())
        return cmds


MANAGERS: dict[str, PackageManager] = {
    m.name: m
    for m in (
        PackageManager("brew", ("brew", "install")),
        PackageManager("apt", ("apt", "install", "-y"), sudo=True, refresh=("apt", "update")),
        PackageManager("pacman", ("pacman", "-S", "--noconfirm"), sudo=True),
        PackageManager("dnf", ("dnf", "install", "-y"), sudo=True),
        PackageManager("yum", ("yum", "install", "-y"), sudo=True),
        PackageManager("zypper", ("zypper", "install", "-y"), sudo=True),
        PackageManager("apk", ("apk", "add"), sudo=True),
        PackageManager("xbps-install", ("xbps-install", "-S"), sudo=True),
        PackageManager("emerge", ("emerge", "-av"), sudo=True),
        PackageManager("cargo", ("cargo", "install", "--locked")),
        PackageManager("snap", ("snap", "install"), sudo=True),
        PackageManager("scoop", ("scoop", "install")),
        PackageManager("choco", ("choco", "install", "-y")),
        PackageManager("winget", ("winget", "install", "-e", "--id")),
    )
}

DEFAULT_PRIORITY: dict[OS, tuple[str, ...]] = {
    OS.MACOS: ("brew",),
    OS.LINUX: ("apt", "pacman", "dnf", "yum", "zypper", "apk", "xbps-install", "emerge"),
    OS.WINDOWS: ("scoop", "choco", "winget"),
}


@dataclass(frozen=True)
class ToolSpec:
    """How to detect and install one tool."""

    binary: str
    label: str = ""
    version_args: tuple[str, ...] = ("--version",)
    packages: dict[str, str] = field(default_factory=dict)
    priority: dict[OS, tuple[str, ...]] = field(default_factory=dict)
    manual: tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.label or self.binary

    def managers_for(self, os_: OS) -> tuple[str, ...]:
        return self.priority.get(os_, DEFAULT_PRIORITY[os_])

    def package_for(self, manager: str) -> str:
        return self.packages.get(manager, self.binary)


TOOLS: dict[str, ToolSpec] = {
    "stow": ToolSpec(
        "stow",
        "GNU Stow",
        manual=(
            "Debian/Ubuntu: sudo apt install stow",
            "RHEL/CentOS: sudo dnf install stow",
            "Arch Linux: sudo pacman -S stow",
            "Alpine Linux: sudo apk add stow",
            "From source: https://www.gnu.org/software/stow/",
        ),
    ),
    "git": ToolSpec("git", "Git"),
    "fish": ToolSpec(
        "fish",
        "Fish shell",
        manual=("See https://fishshell.com/ for installation instructions",),
    ),
    "zellij": ToolSpec(
        "zellij",
        "Zellij",
        priority={OS.LINUX: ("cargo", "pacman", "apt", "dnf")},
        manual=("Visit: https://zellij.dev/documentation/installation",),
    ),
    "k9s": ToolSpec(
        "k9s",
        "K9s",
        version_args=("version", "--short"),
        packages={"brew": "derailed/k9s/k9s"},
        priority={OS.MACOS: ("brew",), OS.LINUX: ("brew", "snap")},
        manual=("Please install manually from: https://github.com/derailed/k9s",),
    ),
    "unzip": ToolSpec("unzip"),
}


def use_sudo(runner: Runner) -> bool:
    geteuid = getattr(os, "geteuid", None)
    if geteuid is not None and geteuid() == 0:
        return False
    return runner.which("sudo") is not None


def select_manager(names: tuple[str, ...], runner: Runner) -> PackageManager | None:
    """Return the first manager in priority order whose binary is on PATH."""
    for name in names:
        if runner.which(name) is not None:
            debug(3, 1, f"Using package manager {name}")
            return MANAGERS[name]
    return None


def ensure_tool(spec: ToolSpec, os_: OS, runner: Runner) -> InstallOutcome:
    """Make sure ``spec.binary`` is on PATH, installing it if needed."""
    found = probe(spec.binary, runner, spec.version_args)
    if found:
        version = f" ({found.version})" if found.version else ""
        info(f"{spec.name} is already installed{version}")
        return InstallOutcome(OutcomeStatus.ALREADY_PRESENT, spec.binary)

    manager = select_manager(spec.managers_for(os_), runner)
    if manager is None:
        lines = [f"No supported package manager found for {spec.name} installation"]
        lines.append(f"Please install {spec.name} manually:")
        lines.extend(f"  - {line}" for line in spec.manual)
        raise NoPackageManagerError("\n".join(lines))

    package = spec.package_for(manager.name)
    info(f"Installing {spec.name} via {manager.name}...")
    for argv in manager.commands(package, use_sudo(runner)):
        result = runner.run(argv, capture=False)
        if result.returncode != 0:
            reason = f"'{shlex.join(argv)}' exited with status {result.returncode}"
            warning(f"Failed to install {spec.name}: {reason}")
            return InstallOutcome(OutcomeStatus.FAILED, spec.binary, reason, manager.name)

    if not probe(spec.binary, runner, None):
        reason = f"{spec.binary} still not on PATH after installing with {manager.name}"
        warning(reason)
        return InstallOutcome(OutcomeStatus.FAILED, spec.binary, reason, manager.name)

    success(f"{spec.name} installed successfully")
    return InstallOutcome(OutcomeStatus.INSTALLED, spec.binary, manager=manager.name)


def install_hint(os_: OS, runner: Runner) -> str | None:
    """Return the install command prefix for the first available manager."""
    manager = select_manager(DEFAULT_PRIORITY[os_], runner)
    if manager is None:
        return None
    return shlex.join(manager.install)


# =============================================================================
# Per-application runtime dependencies
# =============================================================================


@dataclass(frozen=True)
class Requirement:
    """Satisfied when any of ``binaries`` is on PATH."""

    binaries: tuple[str, ...]
    label: str
    os: OS | None = None


def _req(binaries: str, label: str | None = None, os_: OS | None = OS.LINUX) -> Requirement:
    names = tuple(binaries.split())
    return Requirement(names, label or names[0], os_)


_TERMINAL = _req("kitty alacritty wezterm foot", "kitty or alacritty or wezterm or foot")
_FILES = _req("thunar nautilus dolphin nemo", "thunar or nautilus or dolphin or nemo", None)
_BROWSER = _req(
    "firefox google-chrome chromium brave",
    "firefox or google-chrome or chromium or brave",
    None,
)

APP_DEPENDENCIES: dict[str, tuple[Requirement, ...]] = {
    "fuzzel": (_req("fuzzel"),),
    "greetd": (_req("greetd"), _req("agreety", "greetd-agreety")),
    "niri": (
        _req("niri"),
        _req("wpctl", "wireplumber"),
        _req("brightnessctl"),
        _req("swaylock"),
        _req("waybar"),
        _req("fuzzel"),
        _req("swaybg"),
        _req("swayidle"),
        _req("grim", "grim (optional for external screenshots)"),
        _TERMINAL,
        _FILES,
        _BROWSER,
    ),
    "i3": (
        _req("i3"),
        _req("i3lock"),
        _req("polybar"),
        _req("rofi"),
        _req("feh"),
        _req("brightnessctl"),
        _req("pactl wpctl", "pulseaudio-utils or wireplumber"),
    ),
    "waybar": (
        _req("waybar"),
        _req("wpctl", "wireplumber (for volume control)"),
        _req("pavucontrol", "pavucontrol (for volume settings)"),
        _req("wlogout", "wlogout (for power menu)"),
        _req("swaylock", "swaylock (for lock screen)"),
        _req("nm-connection-editor", "nm-connection-editor (for network settings)"),
        _req("playerctl", "playerctl (optional for media control)"),
        _req("bluetoothctl", "bluez (optional for bluetooth)"),
        _req("nmcli iwctl", "networkmanager or iwd (optional for network)"),
    ),
    "hypr": (
        _req("hyprctl", "hyprland"),
        _req("waybar", "waybar (for status bar)"),
        _req("wlogout", "wlogout (for power menu)"),
        _req("swaylock", "swaylock (for lock screen)"),
        _req("rofi", "rofi (for application launcher)"),
        _req("wpctl", "wireplumber (for audio control)"),
        _req("brightnessctl", "brightnessctl (for brightness control)"),
        _req("swww", "swww (for wallpaper management)"),
        _req("grim", "grim (for screenshots)"),
        _req("slurp", "slurp (for screen selection)"),
        _req("dunst", "dunst (for notifications)"),
        _TERMINAL,
        _FILES,
        _BROWSER,
    ),
    "alacritty": (_req("alacritty", os_=None),),
    "kitty": (_req("kitty", os_=None),),
    "wezterm": (_req("wezterm", os_=None),),
    "ghostty": (_req("ghostty", os_=None),),
    "fish": (_req("fish", os_=None),),
    "tmux": (_req("tmux", os_=None),),
    "zellij": (_req("zellij", os_=None),),
    "k9s": (_req("k9s", os_=None),),
    "nvim": (_req("nvim", "neovim", None),),
    "helix": (_req("hx", "helix", None),),
    "lazygit": (_req("lazygit", os_=None),),
    "zsh": (_req("zsh", os_=None),),
    "rofi": (_req("rofi", os_=None),),
    "yabai": (_req("yabai", os_=OS.MACOS),),
    "skhd": (_req("skhd", os_=OS.MACOS),),
    "aerospace": (_req("aerospace", os_=OS.MACOS),),
    "files": (_FILES,),
    "browser": (_BROWSER,),
}


def missing_dependencies(app: str, os_: OS, runner: Runner) -> list[str]:
    """Return labels of the app's unsatisfied requirements on this OS."""
    missing = []
    for req in APP_DEPENDENCIES.get(app, ()):
        if req.os is not None and req.os is not os_:
            continue
        if not any(runner.which(b) is not None for b in req.binaries):
            missing.append(req.label)
    return missing


# =============================================================================
# Font index
# =============================================================================


def font_families(runner: Runner) -> list[str] | None:
    """Return the system font index lines, or None without fontconfig."""
    if runner.which("fc-list") is None:
        return None
    return runner.output(["fc-list"]).splitlines()


def has_font(lines: list[str], *needles: str) -> bool:
    """True if any index line contains all needles, case-insensitively."""
    needles = tuple(n.lower() for n in needles)
    return any(all(n in line.lower() for n in needles) for line in lines)

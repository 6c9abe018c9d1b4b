# dotstow - dotfiles installer with a Stow-style link planner
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""Wayland compositor detection and health checks for status bars."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from dotstow.probe import Runner

# Process name and compositor id, in detection order
_PROCESSES = (
    ("Hyprland", "hyprland"),
    ("niri", "niri"),
    ("sway", "sway"),
    ("river", "river"),
    ("wayfire", "wayfire"),
)


@dataclass(frozen=True)
class _Checks:
    label: str
    process: str
    ipc: tuple[str, ...]
    config: str


_HEALTH_CHECKS = {
    "niri": _Checks("Niri", "niri", ("niri", "msg", "version"), ".config/niri/config.kdl"),
    "hyprland": _Checks("Hyprland", "Hyprland", ("hyprctl", "version"), ".config/hypr/hyprland.conf"),
}

TOTAL_CHECKS = 4


@dataclass(frozen=True)
class Health:
    compositor: str
    status: str
    percentage: int
    details: tuple[str, ...] = ()
    label: str = ""

    @property
    def text(self) -> str:
        label = self.label or self.compositor
        match self.status:
            case "good":
                return f"{label} Healthy"
            case "warning":
                return f"{label} Issues"
            case "critical" if self.percentage == 0:
                return f"{label} Not Running"
            case "critical":
                return f"{label} Problems"
        return f"{label} Status Unknown"

    @property
    def symbol(self) -> str:
        if self.percentage == 0:
            return "✗"
        return "✓" if self.status == "good" else "!"

    def to_json(self) -> str:
        """Waybar custom-module payload."""
        tooltip = "\n".join([f"{self.label or self.compositor} Status: {self.status}", *self.details])
        return json.dumps(
            {
                "text": self.text,
                "class": self.status,
                "percentage": self.percentage,
                "tooltip": tooltip,
            }
        )


def detect_compositor(env: Mapping[str, str], runner: Runner) -> str:
    """Return the running compositor id, ``unknown-wayland`` or ``none``."""
    desktop = env.get("XDG_CURRENT_DESKTOP", "")
    if env.get("HYPRLAND_INSTANCE_SIGNATURE") or desktop == "Hyprland":
        return "hyprland"
    if env.get("NIRI_SOCKET") or desktop == "niri":
        return "niri"

    for process, name in _PROCESSES:
        if runner.succeeds(["pgrep", "-x", process]):
            return name

    return "unknown-wayland" if env.get("WAYLAND_DISPLAY") else "none"


def _config_ok(compositor: str, config_path: str, runner: Runner) -> bool:
    if compositor == "niri":
        return runner.succeeds(["niri", "validate", "-c", config_path])
    errors = runner.output(["hyprctl", "configerrors"]).strip()
    return not errors or errors.lower().startswith("no errors")


def health(compositor: str, env: Mapping[str, str], runner: Runner, home: Optional[str] = None) -> Health:
    """Run the four checks: process, Wayland display, IPC and config."""
    checks = _HEALTH_CHECKS.get(compositor)
    if checks is None:
        return Health(compositor, "unknown", 0, (f"No health checks for {compositor}",))

    if not runner.succeeds(["pgrep", "-x", checks.process]):
        return Health(
            compositor,
            "critical",
            0,
            (f"{checks.label} compositor is not running",),
            checks.label,
        )

    issues = 0
    details = []

    display = env.get("WAYLAND_DISPLAY")
    if display:
        details.append(f"Wayland: {display}")
    else:
        issues += 1
        details.append("No Wayland display")

    if runner.succeeds(list(checks.ipc)):
        details.append("IPC reachable")
    else:
        issues += 1
        details.append(f"Cannot communicate with {checks.label}")

    config_path = os.path.join(home or os.path.expanduser("~"), checks.config)
    if not os.path.isfile(config_path):
        issues += 1
        details.append("Config file missing")
    elif _config_ok(compositor, config_path, runner):
        details.append("Config valid")
    else:
        issues += 1
        details.append("Config has errors")

    if issues == 0:
        status = "good"
    elif issues == 1:
        status = "warning"
    else:
        status = "critical"
    percentage = (TOTAL_CHECKS - issues) * 100 // TOTAL_CHECKS
    return Health(compositor, status, percentage, tuple(details), checks.label)


def status_lines(compositor: str, env: Mapping[str, str], runner: Runner) -> list[str]:
    """Human-readable session summary for ``wm status``."""
    lines = [f"Compositor: {compositor}"]
    match compositor:
        case "none":
            lines.append(f"Session type: {env.get('XDG_SESSION_TYPE', 'unknown')}")
            if env.get("DISPLAY"):
                lines.append(f"X11 display detected: {env['DISPLAY']}")
        case "unknown-wayland":
            lines.append(f"Wayland display: {env.get('WAYLAND_DISPLAY', 'none')}")
            lines.append(f"Current desktop: {env.get('XDG_CURRENT_DESKTOP', 'unknown')}")
        case _:
            version = _version(compositor, runner)
            lines.append(f"Wayland display: {env.get('WAYLAND_DISPLAY', 'none')}")
            if version:
                lines.append(f"Version: {version}")
    return lines


def _version(compositor: str, runner: Runner) -> str:
    argv: Sequence[str]
    match compositor:
        case "niri":
            argv = ("niri", "msg", "version")
        case "hyprland":
            argv = ("hyprctl", "version")
        case "sway":
            argv = ("swaymsg", "-t", "get_version")
        case _:
            return ""
    out = runner.output(list(argv)).strip()
    return out.splitlines()[0] if out else ""

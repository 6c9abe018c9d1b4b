# dotstow - dotfiles installer with a Stow-style link planner
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Registry of per-application link units.

Apps are discovered from the repository layout: every directory under
``<package>/.config`` is an app, plus a fixed table of home-level files
(``.gitconfig``, ``.yabairc``, ...) that are registered only when the
package actually ships them.
"""

from __future__ import annotations

import os

from dotstow.types import OS, AppDescriptor, DotfilesCLIError

ROOT_LEVEL_APPS: dict[str, dict[str, tuple[str, ...]]] = {
    "common": {
        "git": (".gitconfig",),
        "zsh": (".zshrc",),
        "bash": (".bashrc",),
        "vim": (".vimrc",),
        "claude": (".claude",),
        "tmux": (".tmux.conf", ".tmux.conf.local"),
    },
    OS.MACOS.value: {
        "yabai": (".yabairc",),
        "skhd": (".skhdrc",),
        "aerospace": (".aerospace.toml",),
        "alacritty": (".alacritty.toml",),
        "wezterm": (".wezterm.lua",),
        "tmux": (".tmux.conf", ".tmux.conf.local"),
    },
    OS.LINUX.value: {
        "alacritty": (".alacritty.toml",),
        "evremap": (".config/evremap.toml",),
    },
    OS.WINDOWS.value: {
        "wezterm": (".wezterm.lua",),
    },
}

ALIASES = {
    "hyprland": "hypr",
    "neovim": "nvim",
}


def discover_apps(dotfiles_dir: str, os_: OS) -> dict[str, AppDescriptor]:
    """Return the apps available for ``os_``, keyed and sorted by name."""
    paths: dict[str, list[tuple[str, str]]] = {}

    def add(app: str, package: str, rel: str) -> None:
        entries = paths.setdefault(app, [])
        if (package, rel) not in entries:
            entries.append((package, rel))

    for package in ("common", os_.value):
        pkg_dir = os.path.join(dotfiles_dir, package)
        config_dir = os.path.join(pkg_dir, ".config")
        if os.path.isdir(config_dir):
            for entry in sorted(os.listdir(config_dir)):
                if os.path.isdir(os.path.join(config_dir, entry)):
                    add(entry, package, f".config/{entry}")

        for app, rels in ROOT_LEVEL_APPS.get(package, {}).items():
            for rel in rels:
                if os.path.lexists(os.path.join(pkg_dir, rel)):
                    add(app, package, rel)

    return {name: AppDescriptor(name, tuple(paths[name])) for name in sorted(paths)}


def resolve_app(name: str, apps: dict[str, AppDescriptor]) -> AppDescriptor:
    """Look up an app by name or alias; unknown names list what is available."""
    key = ALIASES.get(name, name)
    if key in apps:
        return apps[key]
    available = "\n".join(f"  - {a}" for a in apps) or "  (none)"
    raise DotfilesCLIError(f"App '{name}' not found\n\nAvailable apps:\n{available}")

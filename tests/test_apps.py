"""
Tests for app discovery and lookup.
"""

import pytest

from dotstow.apps import discover_apps, resolve_app
from dotstow.types import OS, DotfilesCLIError


class TestDiscoverApps:
    def test_linux_apps(self, env):
        env.create_package("common", {".config/nvim/init.lua": "", ".gitconfig": "", ".tmux.conf": ""})
        env.create_package("linux", {".config/hypr/hyprland.conf": "", ".config/evremap.toml": ""})
        env.create_package("macos", {".yabairc": "", ".config/aerospace/x": ""})

        apps = discover_apps(env.dotfiles_dir, OS.LINUX)

        assert list(apps) == ["evremap", "git", "hypr", "nvim", "tmux"]
        assert apps["hypr"].paths == (("linux", ".config/hypr"),)
        assert apps["evremap"].paths == (("linux", ".config/evremap.toml"),)
        assert apps["tmux"].paths == (("common", ".tmux.conf"),)

    def test_app_spanning_two_packages(self, env):
        env.create_package("common", {".config/alacritty/theme.toml": "", ".tmux.conf": ""})
        env.create_package("macos", {".alacritty.toml": "", ".tmux.conf": ""})

        apps = discover_apps(env.dotfiles_dir, OS.MACOS)

        assert apps["alacritty"].paths == (
            ("common", ".config/alacritty"),
            ("macos", ".alacritty.toml"),
        )
        assert apps["tmux"].targets == (".tmux.conf",)

    def test_missing_packages_give_no_apps(self, env):
        assert discover_apps(env.dotfiles_dir, OS.WINDOWS) == {}


class TestResolveApp:
    def test_alias(self, env):
        env.create_package("common", {".config/nvim/init.lua": ""})
        apps = discover_apps(env.dotfiles_dir, OS.LINUX)

        assert resolve_app("neovim", apps).name == "nvim"
        assert resolve_app("nvim", apps).name == "nvim"

    def test_unknown_app_lists_available(self, env):
        env.create_package("common", {".config/nvim/init.lua": "", ".gitconfig": ""})
        apps = discover_apps(env.dotfiles_dir, OS.LINUX)

        with pytest.raises(DotfilesCLIError) as excinfo:
            resolve_app("emacs", apps)

        assert excinfo.value.errno == 1
        assert excinfo.value.message == "App 'emacs' not found\n\nAvailable apps:\n  - git\n  - nvim"

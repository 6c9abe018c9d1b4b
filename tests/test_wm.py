"""
Tests for compositor detection and health checks.
"""

import json

import pytest

from conftest import FakeRunner
from dotstow.wm import detect_compositor, health, status_lines


def pgrep_runner(*running):
    results = {("pgrep",): 1}
    for name in running:
        results[("pgrep", "-x", name)] = 0
    return FakeRunner(results=results)


class TestDetectCompositor:
    def test_hyprland_signature_wins(self):
        env = {"HYPRLAND_INSTANCE_SIGNATURE": "abc", "NIRI_SOCKET": "/run/niri.sock"}
        assert detect_compositor(env, pgrep_runner()) == "hyprland"

    def test_desktop_variable(self):
        assert detect_compositor({"XDG_CURRENT_DESKTOP": "niri"}, pgrep_runner()) == "niri"
        assert detect_compositor({"XDG_CURRENT_DESKTOP": "Hyprland"}, pgrep_runner()) == "hyprland"

    def test_niri_socket(self):
        assert detect_compositor({"NIRI_SOCKET": "/run/niri.sock"}, pgrep_runner()) == "niri"

    def test_process_order(self):
        runner = pgrep_runner("sway", "river")
        assert detect_compositor({}, runner) == "sway"
        assert runner.calls[:3] == [("pgrep", "-x", "Hyprland"), ("pgrep", "-x", "niri"), ("pgrep", "-x", "sway")]

    @pytest.mark.parametrize("env, expected", [({"WAYLAND_DISPLAY": "wayland-1"}, "unknown-wayland"), ({}, "none")])
    def test_fallbacks(self, env, expected):
        assert detect_compositor(env, pgrep_runner()) == expected


class TestHealth:
    @pytest.fixture
    def niri_config(self, tmp_path):
        config = tmp_path / ".config" / "niri" / "config.kdl"
        config.parent.mkdir(parents=True)
        config.write_text("")
        return tmp_path

    def test_not_running(self, tmp_path):
        result = health("niri", {}, pgrep_runner(), str(tmp_path))

        assert (result.status, result.percentage, result.symbol) == ("critical", 0, "✗")
        assert result.text == "Niri Not Running"

    def test_all_checks_pass(self, niri_config):
        result = health("niri", {"WAYLAND_DISPLAY": "wayland-1"}, FakeRunner(), str(niri_config))

        assert (result.status, result.percentage, result.symbol) == ("good", 100, "✓")
        assert result.text == "Niri Healthy"

    def test_one_issue_is_a_warning(self, niri_config):
        result = health("niri", {}, FakeRunner(), str(niri_config))

        assert (result.status, result.percentage, result.symbol) == ("warning", 75, "!")
        assert "No Wayland display" in result.details

    def test_two_issues_are_critical(self, tmp_path):
        runner = FakeRunner(results={("hyprctl", "version"): 1})

        result = health("hyprland", {"WAYLAND_DISPLAY": "wayland-1"}, runner, str(tmp_path))

        assert (result.status, result.percentage) == ("critical", 50)
        assert result.text == "Hyprland Problems"

    def test_config_errors_count(self, niri_config):
        runner = FakeRunner(results={("niri", "validate"): 1})

        result = health("niri", {"WAYLAND_DISPLAY": "wayland-1"}, runner, str(niri_config))

        assert result.percentage == 75
        assert "Config has errors" in result.details

    def test_waybar_json(self, niri_config):
        payload = json.loads(health("niri", {}, FakeRunner(), str(niri_config)).to_json())

        assert set(payload) == {"text", "class", "percentage", "tooltip"}
        assert payload["class"] == "warning"
        assert payload["tooltip"].startswith("Niri Status: warning")

    def test_unknown_compositor(self):
        result = health("sway", {}, FakeRunner())
        assert result.status == "unknown"


def test_status_lines_without_compositor():
    lines = status_lines("none", {"XDG_SESSION_TYPE": "x11", "DISPLAY": ":0"}, FakeRunner())
    assert lines == ["Compositor: none", "Session type: x11", "X11 display detected: :0"]


def test_status_lines_with_version():
    runner = FakeRunner(results={("niri", "msg", "version"): (0, "niri 25.02\n")})
    lines = status_lines("niri", {"WAYLAND_DISPLAY": "wayland-1"}, runner)
    assert lines == ["Compositor: niri", "Wayland display: wayland-1", "Version: niri 25.02"]

"""
Tests for command line parsing, rc files and exit codes.
"""

import os

import pytest

from dotstow import cli
from dotstow.cli import main, parse_cli_options, process_options
from dotstow.types import (
    OS,
    Arch,
    DotfilesCLIError,
    HomeNotWritableError,
    LinkError,
    Platform,
    StepFailure,
    UserCancelled,
)


@pytest.fixture
def linux(monkeypatch):
    monkeypatch.setattr(cli, "detect", lambda: Platform(OS.LINUX, Arch.X64, "x86_64"))


def exit_code(argv):
    with pytest.raises(SystemExit) as excinfo:
        main(argv)
    return excinfo.value.code


class TestParseOptions:
    @pytest.mark.parametrize(
        "args",
        [
            ["-d", "/repo", "-t", "/home/me"],
            ["--dir", "/repo", "--target", "/home/me"],
            ["--dir=/repo", "--target=/home/me"],
            ["-d/repo", "-t/home/me"],
        ],
    )
    def test_path_options(self, args):
        options, positional = parse_cli_options(args + ["status"])
        assert options == {"dir": "/repo", "target": "/home/me"}
        assert positional == ["status"]

    def test_flags(self):
        options, positional = parse_cli_options(
            ["--adopt", "--with-tools", "--update-subs", "--no-backup", "--dry-run", "-i", "stow-app", "nvim"]
        )
        assert options == {
            "adopt": True,
            "with-tools": True,
            "update-subs": True,
            "no-backup": True,
            "simulate": True,
            "interactive": True,
        }
        assert positional == ["stow-app", "nvim"]

    def test_bundled_short_flags(self):
        options, _ = parse_cli_options(["-nvv"])
        assert options == {"simulate": True, "verbose": 2}

    def test_verbose_levels(self):
        assert parse_cli_options(["-v", "--verbose"])[0] == {"verbose": 2}
        assert parse_cli_options(["-v", "--verbose=4"])[0] == {"verbose": 4}

    def test_ignore_patterns(self):
        options, _ = parse_cli_options(["--ignore", r"\.bak", r"--ignore=~"])
        assert [p.pattern for p in options["ignore"]] == [r"(\.bak)\Z", r"(~)\Z"]

    def test_invalid_ignore_pattern(self):
        with pytest.raises(DotfilesCLIError, match="Invalid --ignore pattern"):
            parse_cli_options(["--ignore", "("])

    def test_double_dash_ends_options(self):
        assert parse_cli_options(["--", "uninstall", "-v"]) == ({}, ["uninstall", "-v"])

    @pytest.mark.parametrize("arg", ["--frobnicate", "-x", "-nq"])
    def test_unknown_option(self, arg, capsys):
        with pytest.raises(SystemExit) as excinfo:
            parse_cli_options([arg])
        assert excinfo.value.code == 1
        assert "Unknown option" in capsys.readouterr().err

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            parse_cli_options(["-V"])
        assert excinfo.value.code == 0
        assert capsys.readouterr().out == "dotstow version 1.0.0\n"


class TestRcFiles:
    def test_merge_with_command_line(self, env):
        with open(env.home_path(".dotstowrc"), "w") as f:
            f.write("--ignore='\\.bak'\n--with-tools  # always\n-t ~/x\n")
        with open(os.path.join(env.dotfiles_dir, ".dotstowrc"), "w") as f:
            f.write("--adopt\n")

        options, positional = process_options(["-d", env.dotfiles_dir, "--ignore", "swp", "status"])

        assert [p.pattern for p in options["ignore"]] == [r"(\.bak)\Z", r"(swp)\Z"]
        assert options["with-tools"] is True
        assert options["adopt"] is True
        assert options["target"] == env.home + "/x"
        assert options["dir"] == env.dotfiles_dir
        assert positional == ["status"]

    def test_command_line_wins(self, env):
        with open(env.home_path(".dotstowrc"), "w") as f:
            f.write("--verbose=3\n-t /elsewhere\n")

        options, _ = process_options(["-d", env.dotfiles_dir, "--verbose=1", "-t", env.home])

        assert options["verbose"] == 1
        assert options["target"] == env.home

    def test_dir_from_home_rc(self, env, tmp_path):
        other = tmp_path / "other-dotfiles"
        other.mkdir()
        (other / ".dotstowrc").write_text("--no-backup\n")
        with open(env.home_path(".dotstowrc"), "w") as f:
            f.write(f"--dir={other}\n")

        options, _ = process_options([])

        assert options["dir"] == str(other)
        assert options["no-backup"] is True

    def test_undefined_environment_variable(self, env, monkeypatch):
        monkeypatch.delenv("DOTSTOW_UNDEFINED", raising=False)
        with open(env.home_path(".dotstowrc"), "w") as f:
            f.write("-t $DOTSTOW_UNDEFINED/x\n")

        with pytest.raises(DotfilesCLIError, match=r"undefined environment variable \$DOTSTOW_UNDEFINED"):
            process_options(["-d", env.dotfiles_dir])


class TestMain:
    def test_unknown_command(self, env, capsys):
        assert exit_code(["-d", env.dotfiles_dir, "frobnicate"]) == 1
        assert "Unknown command: frobnicate" in capsys.readouterr().err

    def test_too_many_arguments(self, env):
        assert exit_code(["-d", env.dotfiles_dir, "stow-app", "nvim", "git"]) == 1

    def test_help(self, env, capsys):
        assert exit_code(["help"]) == 0
        assert "COMMANDS:" in capsys.readouterr().out

    def test_missing_dotfiles_dir(self, env, capsys):
        missing = os.path.join(env.tmpdir, "nowhere")
        assert exit_code(["-d", missing, "status"]) == 2
        assert "dotstow: ERROR: Dotfiles directory not found" in capsys.readouterr().err

    def test_conflict(self, env, linux, capsys):
        env.create_package("common", {".gitconfig": "[user]"})
        env.create_package("linux", {".config/foot/foot.ini": ""})
        env.create_home_file(".gitconfig", "mine")

        assert exit_code(["-d", env.dotfiles_dir, "--no-backup"]) == 1

        err = capsys.readouterr().err
        assert "WARNING! linking common would cause conflicts:" in err
        assert "  * " in err
        assert err.endswith("All operations aborted.\n")
        with open(env.home_path(".gitconfig")) as f:
            assert f.read() == "mine"

    def test_app_required(self, env, linux, capsys):
        env.create_package("common", {".gitconfig": ""})

        assert exit_code(["-d", env.dotfiles_dir, "stow-app"]) == 1

        err = capsys.readouterr().err
        assert "App name required for stow-app command" in err
        assert "  - git" in err

    def test_unknown_app(self, env, linux, capsys):
        env.create_package("common", {".gitconfig": ""})

        assert exit_code(["-d", env.dotfiles_dir, "unstow-app", "emacs"]) == 1
        assert "App 'emacs' not found" in capsys.readouterr().err

    def test_apps(self, env, linux, capsys):
        env.create_package("common", {".gitconfig": "", ".config/nvim/init.lua": ""})

        main(["-d", env.dotfiles_dir, "apps"])

        lines = capsys.readouterr().out.splitlines()
        assert [line.split()[0] for line in lines] == ["git", "nvim"]
        assert "common/.config/nvim" in lines[1]

    def test_wm_does_not_need_dotfiles(self, env, linux, monkeypatch, capsys):
        monkeypatch.setenv("HYPRLAND_INSTANCE_SIGNATURE", "abc")

        main(["-d", os.path.join(env.tmpdir, "nowhere"), "wm", "detect"])

        assert capsys.readouterr().out == "hyprland\n"

    def test_unknown_wm_mode(self, env, linux, capsys):
        assert exit_code(["wm", "fancy"]) == 1
        assert "Unknown wm mode: fancy" in capsys.readouterr().err

    @pytest.mark.parametrize(
        "exc, code",
        [
            (UserCancelled("Installation cancelled."), 0),
            (HomeNotWritableError("cannot write"), 2),
            (LinkError("link failed"), 1),
            (StepFailure("step failed"), 1),
            (DotfilesCLIError("bad usage"), 1),
            (KeyboardInterrupt(), 130),
        ],
    )
    def test_exit_codes(self, monkeypatch, exc, code):
        def fail(argv):
            raise exc

        monkeypatch.setattr(cli, "_main", fail)
        assert exit_code([]) == code

    def test_success_does_not_exit(self, monkeypatch):
        monkeypatch.setattr(cli, "_main", lambda argv: 0)
        assert main([]) is None

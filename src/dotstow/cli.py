# dotstow - dotfiles installer with a Stow-style link planner
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Command-line interface for dotstow.

This module contains the CLI functions including argument parsing,
rc file handling, command dispatch and the main entry point.
"""

from __future__ import annotations

import os
import re
import shlex
import sys
import traceback
from typing import Mapping, Optional, Sequence

from dotstow import components
from dotstow.detect import detect
from dotstow.installer import Installer
from dotstow.probe import Runner
from dotstow.types import (
    ConflictError,
    DotfilesCLIError,
    DotfilesError,
    DotfilesProgrammingError,
    HomeNotWritableError,
    InstallerConfig,
    MissingPackageError,
    Platform,
    UserCancelled,
)
from dotstow.util import PROGRAM_NAME, VERSION, error, info, tildify
from dotstow.wm import detect_compositor, health, status_lines

RC_FILE = ".dotstowrc"

COMMANDS = (
    "install",
    "uninstall",
    "restow",
    "stow-app",
    "unstow-app",
    "status",
    "backup",
    "cleanup",
    "apps",
    "tools",
    "fonts",
    "fish",
    "fish-plugins",
    "zellij",
    "k9s",
    "mcp",
    "submodules",
    "all",
    "wm",
    "help",
)

WM_MODES = ("status", "detect", "health", "health-json", "health-percent")


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point for the dotstow command."""
    try:
        code = _main(sys.argv[1:] if argv is None else argv)
    except UserCancelled as e:
        info(str(e) or "Cancelled.")
        sys.exit(0)
    except DotfilesProgrammingError as e:
        print(
            f"\n{PROGRAM_NAME}: INTERNAL ERROR: {e.message}\n{traceback.format_exc()}",
            file=sys.stderr,
        )
        print("This _is_ a bug. Please submit a bug report so we can fix it!", file=sys.stderr)
        sys.exit(e.errno)
    except ConflictError as e:
        for package in sorted(e.conflicts):
            print(f"WARNING! linking {package} would cause conflicts:", file=sys.stderr)
            for message in sorted(e.conflicts[package]):
                print(f"  * {message}", file=sys.stderr)
        print("All operations aborted.", file=sys.stderr)
        sys.exit(e.errno)
    except DotfilesCLIError as e:
        print(e.message, file=sys.stderr)
        sys.exit(e.errno)
    except DotfilesError as e:
        print(f"{PROGRAM_NAME}: ERROR: {e.message}", file=sys.stderr)
        sys.exit(e.errno)
    except KeyboardInterrupt:
        print(file=sys.stderr)
        error("Interrupted")
        sys.exit(130)
    if code:
        sys.exit(code)


def _main(argv: Sequence[str]) -> int:
    """Main implementation (can raise DotfilesError)."""
    options, positional = process_options(argv)

    command = positional[0] if positional else "install"
    arg = positional[1] if len(positional) > 1 else None
    if len(positional) > 2:
        show_usage_and_exit(f"Too many arguments: {' '.join(positional[2:])}")
    if command not in COMMANDS:
        show_usage_and_exit(f"Unknown command: {command}")
    if command == "help":
        show_usage_and_exit()

    sanitize_path_options(options, require_dir=command != "wm")
    config = build_config(options, detect())
    installer = Installer(config)
    runner = installer.runner

    match command:
        case "install":
            installer.install()
        case "uninstall":
            installer.uninstall(arg)
        case "restow":
            installer.restow()
        case "stow-app" | "unstow-app" if not arg:
            names = "\n".join(f"  - {name}" for name in installer.apps())
            raise DotfilesCLIError(f"App name required for {command} command\n\nAvailable apps:\n{names}")
        case "stow-app":
            installer.stow_app(arg)
        case "unstow-app":
            installer.unstow_app(arg)
        case "status":
            installer.status()
        case "backup":
            installer.backup()
        case "cleanup":
            installer.cleanup()
        case "apps":
            for name, app in installer.apps().items():
                print(f"{name:<14} {', '.join(f'{pkg}/{rel}' for pkg, rel in app.paths)}")
        case "tools":
            components.install_tools(config, runner)
        case "fonts":
            components.install_fonts(config, runner)
        case "fish":
            components.install_fish(config, runner)
        case "fish-plugins":
            components.setup_fish_plugins(config, runner)
        case "zellij":
            components.install_zellij(config, runner)
        case "k9s":
            components.install_k9s(config, runner)
        case "mcp":
            components.setup_mcp_servers(config)
        case "submodules":
            components.update_submodules(config, runner)
        case "all":
            installer.all()
        case "wm":
            return wm_command(arg or "status", os.environ, runner, config.home)
    return 0


def wm_command(mode: str, env: Mapping[str, str], runner: Runner, home: Optional[str] = None) -> int:
    """Print compositor information; returns the exit code."""
    if mode not in WM_MODES:
        raise DotfilesCLIError(f"Unknown wm mode: {mode}\nValid modes: {', '.join(WM_MODES)}")

    compositor = detect_compositor(env, runner)
    match mode:
        case "detect":
            print(compositor)
        case "status":
            for line in status_lines(compositor, env, runner):
                print(line)
        case "health":
            print(health(compositor, env, runner, home).symbol)
        case "health-json":
            print(health(compositor, env, runner, home).to_json())
        case "health-percent":
            print(health(compositor, env, runner, home).percentage)
    return 0


def build_config(options: dict, platform: Platform) -> InstallerConfig:
    simulate = options.get("simulate", False)
    verbose = options.get("verbose", 0)
    return InstallerConfig(
        dotfiles_dir=os.path.abspath(options["dir"]),
        home=os.path.abspath(options["target"]),
        platform=platform,
        simulate=simulate,
        backup=not options.get("no-backup", False),
        interactive=options.get("interactive", False),
        adopt=options.get("adopt", False),
        with_tools=options.get("with-tools", False),
        update_subs=options.get("update-subs", False),
        # Simulation always shows the planned operations
        verbose=max(verbose, 1) if simulate else verbose,
        ignore=tuple(options.get("ignore", [])),
    )


def process_options(argv: Sequence[str]) -> tuple[dict, list[str]]:
    """Parse and process command line and rc file options.

    Returns: (options, positional arguments)
    """
    cli_options, positional = parse_cli_options(argv)
    rc_options = get_config_file_options(cli_options.get("dir"))

    # Merge rc file and command line options
    options = dict(rc_options)
    for option, cli_value in cli_options.items():
        rc_value = rc_options.get(option)

        if isinstance(cli_value, list) and rc_value is not None:
            options[option] = list(rc_value) + list(cli_value)
        else:
            options[option] = cli_value

    return options, positional


def _compile_ignore(regex: str) -> re.Pattern:
    try:
        return re.compile(rf"({regex})\Z")
    except re.error as e:
        raise DotfilesCLIError(f"Invalid --ignore pattern '{regex}': {e}") from e


def parse_cli_options(args: Sequence[str]) -> tuple[dict, list[str]]:
    """Parse command line options.

    Returns: (options, positional arguments)
    """
    options: dict = {}
    positional: list[str] = []

    i = 0
    while i < len(args):
        arg = args[i]

        # Options with values
        if arg in ("-d", "--dir") and i + 1 < len(args):
            i += 1
            options["dir"] = args[i]
        elif arg.startswith("--dir="):
            options["dir"] = arg[6:]
        elif arg.startswith("-d") and len(arg) > 2:
            options["dir"] = arg[2:]

        elif arg in ("-t", "--target") and i + 1 < len(args):
            i += 1
            options["target"] = args[i]
        elif arg.startswith("--target="):
            options["target"] = arg[9:]
        elif arg.startswith("-t") and len(arg) > 2:
            options["target"] = arg[2:]

        elif arg == "--ignore" and i + 1 < len(args):
            i += 1
            options.setdefault("ignore", []).append(_compile_ignore(args[i]))
        elif arg.startswith("--ignore="):
            options.setdefault("ignore", []).append(_compile_ignore(arg[9:]))

        # Verbose option with optional value
        elif arg in ("-v", "--verbose"):
            options["verbose"] = options.get("verbose", 0) + 1
        elif arg.startswith("--verbose="):
            try:
                options["verbose"] = int(arg[10:])
            except ValueError:
                options["verbose"] = 1

        # Boolean flags
        elif arg in ("-n", "--simulate", "--dry-run"):
            options["simulate"] = True
        elif arg == "--adopt":
            options["adopt"] = True
        elif arg == "--with-tools":
            options["with-tools"] = True
        elif arg == "--update-subs":
            options["update-subs"] = True
        elif arg == "--no-backup":
            options["no-backup"] = True
        elif arg in ("-i", "--interactive"):
            options["interactive"] = True

        # Help and version
        elif arg in ("-h", "--help"):
            show_usage_and_exit()
        elif arg in ("-V", "--version"):
            show_version_and_exit()

        elif arg == "--":
            positional.extend(args[i + 1:])
            break
        elif not arg.startswith("-") or arg == "-":
            positional.append(arg)

        elif arg.startswith("--"):
            opt_name = arg[2:].split("=", 1)[0]
            show_usage_and_exit(f"Unknown option: {opt_name}")

        else:
            # Bundled short flags: -nv is parsed as -n -v
            for char in arg[1:]:
                match char:
                    case "n":
                        options["simulate"] = True
                    case "v":
                        options["verbose"] = options.get("verbose", 0) + 1
                    case "i":
                        options["interactive"] = True
                    case "h":
                        show_usage_and_exit()
                    case "V":
                        show_version_and_exit()
                    case _:
                        show_usage_and_exit(f"Unknown option: {char}")

        i += 1

    return options, positional


def sanitize_path_options(options: dict, require_dir: bool = True) -> None:
    """Validate and set defaults for dir and target options."""
    if "target" not in options:
        options["target"] = os.environ.get("HOME") or expand_tilde_to_homedir("~")

    if not os.path.isdir(options["target"]):
        raise HomeNotWritableError(f"--target value '{options['target']}' is not a valid directory")

    if "dir" not in options:
        options["dir"] = default_dotfiles_dir(options["target"])

    if require_dir and not os.path.isdir(options["dir"]):
        raise MissingPackageError(
            f"Dotfiles directory not found: {tildify(options['dir'])} (set --dir or DOTFILES_DIR)"
        )


def default_dotfiles_dir(home: str) -> str:
    """DOTFILES_DIR, else the current directory if it holds a common package, else ~/.dotfiles."""
    env = os.environ.get("DOTFILES_DIR")
    if env:
        return env
    cwd = os.getcwd()
    if os.path.isdir(os.path.join(cwd, "common")):
        return cwd
    return os.path.join(home, ".dotfiles")


def _read_rc_file(file_path: str) -> list[str]:
    words: list[str] = []
    try:
        with open(file_path, "r") as f:
            for line in f:
                line = line.rstrip("\n\r")
                try:
                    words.extend(shlex.split(line, comments=True))
                except ValueError:
                    words.extend(line.split())
    except (FileNotFoundError, PermissionError):
        return []
    except IsADirectoryError:
        raise DotfilesCLIError(f"Could not open {file_path} for reading")
    return words


def get_config_file_options(dotfiles_dir: Optional[str] = None) -> dict:
    """Read defaults from ~/.dotstowrc, then from the dotfiles directory's rc file.

    The dotfiles directory is the one given on the command line, else the one
    set in ~/.dotstowrc, else the default.
    """
    defaults: list[str] = []
    home = os.environ.get("HOME")
    home_rc = os.path.join(home, RC_FILE) if home else None
    if home_rc:
        defaults.extend(_read_rc_file(home_rc))

    home_options, _ = parse_cli_options(defaults)
    repo = dotfiles_dir or home_options.get("dir")
    if repo:
        repo = expand_filepath(repo, "--dir option")
    else:
        repo = default_dotfiles_dir(home or os.getcwd())

    repo_rc = os.path.join(repo, RC_FILE)
    if home_rc is None or os.path.abspath(repo_rc) != os.path.abspath(home_rc):
        defaults.extend(_read_rc_file(repo_rc))

    rc_options, _ = parse_cli_options(defaults)

    if "target" in rc_options:
        rc_options["target"] = expand_filepath(rc_options["target"], "--target option")
    if "dir" in rc_options:
        rc_options["dir"] = expand_filepath(rc_options["dir"], "--dir option")

    return rc_options


def expand_filepath(path: str, source: str) -> str:
    """Expand environment variables and tilde in file paths."""
    path = expand_environment_variables(path, source)
    path = expand_tilde_to_homedir(path)
    return path


def expand_environment_variables(path: str, source: str) -> str:
    """Expand environment variables in path.

    Replace non-escaped $VAR and ${VAR} with os.environ[VAR].
    """

    def replace_var(match):
        var = match.group(1)
        try:
            return os.environ[var]
        except KeyError:
            raise DotfilesCLIError(f"{source} references undefined environment variable ${var}; aborting!")

    path = re.sub(r"(?<!\\)\$\{([^}]+)}", replace_var, path)
    path = re.sub(r"(?<!\\)\$(\w+)", replace_var, path)
    path = path.replace("\\$", "$")

    return path


def expand_tilde_to_homedir(path: str) -> str:
    """Expand tilde to the user's home directory path."""
    if "\\~" in path:
        return path.replace("\\~", "~")

    if not path.startswith("~"):
        return path

    tilde_part, slash, rest = path.partition("/")
    if tilde_part == "~" and os.environ.get("HOME"):
        return os.environ["HOME"] + slash + rest
    return os.path.expanduser(path)


def show_usage_and_exit(msg: str | None = None, exit_code: int | None = None) -> None:
    """Print program usage message and exit."""
    if msg:
        print(msg, file=sys.stderr)

    print(f"""{PROGRAM_NAME} version {VERSION}

SYNOPSIS:

    {PROGRAM_NAME} [OPTION ...] [COMMAND] [APP]

COMMANDS:

    install               Link common and OS-specific configs (default)
    uninstall [APP]       Remove links for all packages, or for one app
    restow                Unlink and link again without backing up
    stow-app APP          Link a single app
    unstow-app APP        Unlink a single app
    status                Show links, dependencies, fonts, tools and git state
    backup                Copy files that links would replace into a backup
    cleanup               Remove broken links into the dotfiles directory
    apps                  List the apps found in the dotfiles directory
    tools                 Install development tools with mise
    fonts                 Install Maple Mono NF and Font Awesome
    fish, fish-plugins    Install fish and make it the login shell; sync plugins
    zellij, k9s           Install the tool with the system package manager
    mcp                   Merge MCP server definitions into ~/.claude.json
    submodules            Update git submodules
    all                   install --with-tools --update-subs
    wm [MODE]             Compositor info; MODE is one of:
                            status, detect, health, health-json, health-percent
    help                  Show this help

OPTIONS:

    -d DIR, --dir=DIR     Set dotfiles dir to DIR (default $DOTFILES_DIR,
                            the current dir, or ~/.dotfiles)
    -t DIR, --target=DIR  Set target to DIR (default is $HOME)

    --with-tools          Install development tools after linking
    --update-subs         Update git submodules after linking
    --no-backup           Do not back up files that would be replaced
    -i, --interactive     Ask before backing up and choose packages
    --adopt               (Use with care!)  Move existing files into the
                            package instead of reporting a conflict
    --ignore=REGEX        Ignore package files ending in this regex

    -n, --simulate        Do not actually make any filesystem changes
    -v, --verbose[=N]     Increase verbosity (levels are from 0 to 5;
                            -v or --verbose adds 1; --verbose=N sets level)
    -V, --version         Show version number
    -h, --help            Show this help

Defaults are read from ~/{RC_FILE} and <dotfiles dir>/{RC_FILE}.""")

    if exit_code is not None:
        sys.exit(exit_code)
    elif msg:
        sys.exit(1)
    else:
        sys.exit(0)


def show_version_and_exit() -> None:
    """Print version and exit."""
    print(f"{PROGRAM_NAME} version {VERSION}")
    sys.exit(0)


if __name__ == "__main__":
    main()

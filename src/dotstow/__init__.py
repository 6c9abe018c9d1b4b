# dotstow - dotfiles installer with a Stow-style link planner
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
dotstow - dotfiles installer with a Stow-style link planner

Links a ``common`` package and an OS-specific package from a dotfiles
repository into the home directory, backing up whatever real files stand
in the way.

Basic usage::

    from dotstow import InstallerConfig, detect, link, unlink

    config = InstallerConfig(
        dotfiles_dir="/home/user/.dotfiles",
        home="/home/user",
        platform=detect(),
    )
    report = link("common", "linux", config=config)
    if not report.success:
        print("Conflicts:", report.conflicts)

    unlink("linux", config=config)

Simulation mode::

    import dataclasses

    dry = dataclasses.replace(config, simulate=True)
    print("Would perform:", link("common", config=dry).trace)

Whole-install orchestration, with backups and follow-up steps::

    from dotstow import Installer

    Installer(config).install()
"""

from dotstow.detect import detect
from dotstow.installer import Installer
from dotstow.link import link, link_app, relink, unlink, unlink_app
from dotstow.types import (
    AppDescriptor,
    ConflictError,
    DotfilesCLIError,
    DotfilesError,
    FatalPrecondition,
    InstallerConfig,
    LinkReport,
    Platform,
    StepFailure,
)
from dotstow.util import VERSION as __version__

# CLI entry point
from dotstow.cli import main

__all__ = [
    "link",
    "unlink",
    "relink",
    "link_app",
    "unlink_app",
    "detect",
    "Installer",
    "InstallerConfig",
    "LinkReport",
    "Platform",
    "AppDescriptor",
    "DotfilesError",
    "FatalPrecondition",
    "ConflictError",
    "DotfilesCLIError",
    "StepFailure",
    "__version__",
    "main",
]

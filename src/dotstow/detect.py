# dotstow - dotfiles installer with a Stow-style link planner
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""Classify the running system into a supported Platform."""

from __future__ import annotations

import platform as _platform

from dotstow.types import OS, Arch, Platform, UnsupportedPlatformError
from dotstow.util import warning

_ARCHES = {
    "x86_64": Arch.X64,
    "amd64": Arch.X64,
    "arm64": Arch.ARM64,
    "aarch64": Arch.ARM64,
    "i386": Arch.X86,
    "i686": Arch.X86,
}


def detect_os(system: str | None = None) -> OS:
    """Map a kernel name (``uname -s``) to an OS; unsupported is fatal."""
    system = system if system is not None else _platform.system()

    match system:
        case s if s.startswith("Darwin"):
            return OS.MACOS
        case s if s.startswith("Linux"):
            return OS.LINUX
        case s if s.startswith(("CYGWIN", "MINGW", "MSYS", "Windows")):
            warning("Windows support is experimental")
            return OS.WINDOWS
        case _:
            raise UnsupportedPlatformError(
                f"Unsupported operating system: {system or 'unknown'}\n"
                "Supported: macOS, Linux, Windows (experimental)"
            )


def detect_arch(machine: str | None = None) -> Arch:
    """Map a machine name (``uname -m``) to an Arch; unknown only warns."""
    machine = machine if machine is not None else _platform.machine()
    arch = _ARCHES.get(machine.lower())
    if arch is None:
        warning(f"Unknown architecture: {machine or 'unknown'}")
        return Arch.OTHER
    return arch


def detect(system: str | None = None, machine: str | None = None) -> Platform:
    machine = machine if machine is not None else _platform.machine()
    return Platform(detect_os(system), detect_arch(machine), machine)

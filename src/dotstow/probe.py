# dotstow - dotfiles installer with a Stow-style link planner
# Copyright (C) 2025 Istvan Sarandi
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Probing for external tools and running them.

Everything that shells out goes through a Runner so that the rest of the
code never parses tool output inline and tests can swap in a fake.
"""

from __future__ import annotations

import re
import shlex
import shutil
import subprocess
from typing import Sequence

from dotstow.types import ProbeResult
from dotstow.util import debug

_VERSION_RE = re.compile(r"\d+(?:\.\d+)+")


class Runner:
    """Thin wrapper around PATH lookup and subprocess execution."""

    def which(self, name: str) -> str | None:
        return shutil.which(name)

    def run(
        self,
        argv: Sequence[str],
        *,
        capture: bool = True,
        input: str | None = None,
        shell: bool = False,
        cwd: str | None = None,
    ) -> subprocess.CompletedProcess:
        """Run a command; a missing executable is reported as exit 127."""
        cmd = argv if shell else list(argv)
        debug(2, 0, f"RUN: {cmd if shell else shlex.join(cmd)}")
        try:
            return subprocess.run(
                cmd,
                capture_output=capture,
                text=True,
                input=input,
                shell=shell,
                cwd=cwd,
            )
        except FileNotFoundError as e:
            return subprocess.CompletedProcess(cmd, 127, "", str(e))

    def succeeds(self, argv: Sequence[str], **kwargs) -> bool:
        return self.run(argv, **kwargs).returncode == 0

    def output(self, argv: Sequence[str], **kwargs) -> str:
        """Return stdout of a successful run, or "" on failure."""
        result = self.run(argv, **kwargs)
        if result.returncode != 0:
            return ""
        return result.stdout or ""


def parse_version(text: str) -> str | None:
    """Extract a dotted version number from the first line mentioning one."""
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if m := _VERSION_RE.search(line):
            return m.group()
    first = text.strip().splitlines()
    return first[0].strip() if first else None


def probe(
    name: str,
    runner: Runner,
    version_args: Sequence[str] | None = ("--version",),
) -> ProbeResult:
    """Look for ``name`` on PATH and, if found, ask it for its version."""
    path = runner.which(name)
    if path is None:
        debug(4, 1, f"probe({name}): not found")
        return ProbeResult(name)

    version = None
    if version_args:
        result = runner.run([name, *version_args])
        if result.returncode == 0:
            version = parse_version((result.stdout or "") + (result.stderr or ""))
    debug(4, 1, f"probe({name}): {path} version={version}")
    return ProbeResult(name, path, version)

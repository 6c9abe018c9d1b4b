"""
Pytest configuration for dotstow tests.

Each test gets a throwaway dotfiles repository and home directory under
tmp_path. External commands never run: a FakeRunner answers PATH lookups
from a fixed set of binaries and returns scripted results for commands.
"""

import os
import subprocess

import pytest

from dotstow.probe import Runner
from dotstow.types import OS, Arch, InstallerConfig, Platform
from dotstow.util import set_debug_level


def makedirs_exist_ok(path):
    os.makedirs(path, exist_ok=True)


class DotfilesEnv:
    """Test environment: a dotfiles repository and a home directory."""

    def __init__(self, tmpdir):
        self.tmpdir = str(tmpdir)
        self.dotfiles_dir = os.path.join(self.tmpdir, "dotfiles")
        self.home = os.path.join(self.tmpdir, "home")
        makedirs_exist_ok(self.dotfiles_dir)
        makedirs_exist_ok(self.home)

    def config(self, os_=OS.LINUX, **kwargs):
        return InstallerConfig(
            dotfiles_dir=self.dotfiles_dir,
            home=self.home,
            platform=Platform(os_, Arch.X64, "x86_64"),
            **kwargs,
        )

    def create_package(self, name, files):
        """
        Create a package in the dotfiles directory.

        files: dict mapping relative paths to content (or None for directories)
        """
        pkg_dir = os.path.join(self.dotfiles_dir, name)
        makedirs_exist_ok(pkg_dir)

        for path, content in files.items():
            full_path = os.path.join(pkg_dir, path)
            if content is None:
                makedirs_exist_ok(full_path)
            else:
                makedirs_exist_ok(os.path.dirname(full_path))
                with open(full_path, "w") as f:
                    f.write(content)

    def create_home_file(self, path, content=""):
        full_path = self.home_path(path)
        makedirs_exist_ok(os.path.dirname(full_path))
        with open(full_path, "w") as f:
            f.write(content)

    def create_home_dir(self, path):
        makedirs_exist_ok(self.home_path(path))

    def create_home_link(self, path, dest):
        full_path = self.home_path(path)
        makedirs_exist_ok(os.path.dirname(full_path))
        os.symlink(dest, full_path)

    def home_path(self, path):
        return os.path.join(self.home, path)

    def source(self, package, path):
        return os.path.join(self.dotfiles_dir, package, path)

    def relative_to_home(self, package, path):
        """Destination string a link at ~/path gets when pointing at package/path."""
        link_dir = os.path.dirname(os.path.join(os.path.realpath(self.home), path))
        return os.path.relpath(os.path.realpath(self.source(package, path)), link_dir)

    def get_filesystem_state(self, root=None):
        """
        Get a snapshot of the home directory state.

        Returns a dict mapping paths to tuples:
        - ('dir',) for directories
        - ('file', content) for files
        - ('link', target) for symlinks
        """
        root = root or self.home
        state = {}
        for dirpath, dirs, files in os.walk(root, followlinks=False):
            rel_root = os.path.relpath(dirpath, root)
            if rel_root == ".":
                rel_root = ""

            for name in sorted(dirs + files):
                path = os.path.join(rel_root, name) if rel_root else name
                full_path = os.path.join(dirpath, name)
                if os.path.islink(full_path):
                    state[path] = ("link", os.readlink(full_path))
                elif os.path.isdir(full_path):
                    state[path] = ("dir",)
                else:
                    with open(full_path, "r") as fh:
                        state[path] = ("file", fh.read())
        return state


class FakeRunner(Runner):
    """
    Runner that never executes anything.

    binaries: names found on PATH (at /usr/bin/<name>)
    results: maps an argv prefix tuple (or a shell string) to a return code,
        a (return code, stdout) pair, or a callable taking the argv and
        returning either. The longest matching prefix wins; default is 0.
    """

    def __init__(self, binaries=(), results=None):
        self.binaries = {name: f"/usr/bin/{name}" for name in binaries}
        self.results = dict(results or {})
        self.calls = []

    def which(self, name):
        return self.binaries.get(name)

    def run(self, argv, *, capture=True, input=None, shell=False, cwd=None):
        cmd = argv if shell else tuple(argv)
        self.calls.append(cmd)

        response = self._lookup(cmd)
        if callable(response):
            response = response(cmd)
        if isinstance(response, tuple):
            returncode, stdout = response
        else:
            returncode, stdout = response, ""
        return subprocess.CompletedProcess(cmd, returncode, stdout, "")

    def _lookup(self, cmd):
        if isinstance(cmd, str):
            return self.results.get(cmd, 0)
        for n in range(len(cmd), 0, -1):
            if cmd[:n] in self.results:
                return self.results[cmd[:n]]
        return 0

    def ran(self, *prefix):
        """True if any recorded call starts with the given argv prefix."""
        return any(isinstance(c, tuple) and c[: len(prefix)] == prefix for c in self.calls)


def check_link(env, path, package, source_path=None):
    """Assert ~/path is a symlink pointing at package/source_path."""
    full_path = env.home_path(path)
    assert os.path.islink(full_path), f"{path} should be a symlink"
    assert os.readlink(full_path) == env.relative_to_home(package, source_path or path)


def check_real_dir(env, path):
    full_path = env.home_path(path)
    assert os.path.isdir(full_path) and not os.path.islink(full_path), f"{path} should be a real directory"


def check_not_exists(env, path):
    assert not os.path.lexists(env.home_path(path)), f"{path} should not exist"


@pytest.fixture(autouse=True)
def reset_debug_level():
    yield
    set_debug_level(0)


@pytest.fixture
def env(tmp_path, monkeypatch):
    dotfiles_env = DotfilesEnv(tmp_path)
    monkeypatch.setenv("HOME", dotfiles_env.home)
    monkeypatch.delenv("DOTFILES_DIR", raising=False)
    return dotfiles_env


@pytest.fixture
def runner():
    return FakeRunner()

"""
Tests for the installer flows: install with backup, uninstall, restow, apps.
"""

import os

import pytest

from conftest import FakeRunner, check_link, check_not_exists
from dotstow.installer import Installer, ask_yes_no
from dotstow.types import ConflictError, MissingPackageError, StepFailure, UserCancelled


def answers(*replies):
    """Prompt that returns the given replies in order."""
    remaining = list(replies)
    asked = []

    def prompt(question):
        asked.append(question)
        return remaining.pop(0)

    prompt.asked = asked
    return prompt


def backup_dirs(env):
    return sorted(d for d in os.listdir(env.home) if d.startswith("dotfiles-backup-"))


@pytest.fixture
def repo(env):
    env.create_package("common", {".gitconfig": "[user]", ".config/nvim/init.lua": "-- lua"})
    env.create_package("linux", {".config/foot/foot.ini": ""})
    return env


class TestInstall:
    def test_backup_then_link(self, repo):
        repo.create_home_file(".gitconfig", "old")

        report = Installer(repo.config(), FakeRunner()).install()

        assert report.success
        check_link(repo, ".gitconfig", "common")
        check_link(repo, ".config/nvim", "common")
        check_link(repo, ".config/foot", "linux")
        [backup] = backup_dirs(repo)
        assert os.listdir(repo.home_path(backup)) == [".gitconfig"]
        with open(repo.home_path(os.path.join(backup, ".gitconfig"))) as f:
            assert f.read() == "old"

    def test_no_backup_means_conflict(self, repo):
        repo.create_home_file(".gitconfig", "old")

        with pytest.raises(ConflictError) as excinfo:
            Installer(repo.config(backup=False), FakeRunner()).install()

        assert excinfo.value.errno == 1
        assert list(excinfo.value.conflicts) == ["common"]
        check_not_exists(repo, ".config")
        assert backup_dirs(repo) == []

    def test_simulated_install_matches_live_install(self, repo):
        repo.create_home_file(".gitconfig", "old")
        repo.create_home_file(".config/nvim/init.lua", "old")
        before = repo.get_filesystem_state()

        simulated = Installer(repo.config(simulate=True), FakeRunner()).install()
        assert repo.get_filesystem_state() == before

        live = Installer(repo.config(), FakeRunner()).install()
        assert simulated.trace == live.trace

    def test_missing_os_package_is_fatal(self, env):
        env.create_package("common", {".gitconfig": ""})

        with pytest.raises(MissingPackageError) as excinfo:
            Installer(env.config(), FakeRunner()).install()

        assert excinfo.value.errno == 2
        check_not_exists(env, ".gitconfig")

    def test_optional_steps_are_recoverable(self, repo):
        installer = Installer(repo.config(with_tools=True), FakeRunner())

        installer.install()

        check_link(repo, ".gitconfig", "common")
        assert len(installer.failures) == 1
        assert installer.failures[0].startswith("Development tools:")

    def test_fish_plugins_run_after_fish_config_is_linked(self, repo):
        repo.create_package("common", {".config/fish/fish_plugins": "pure-fish/pure"})
        runner = FakeRunner(binaries=["fish"])

        Installer(repo.config(), runner).install()

        assert runner.ran("fish", "-c")


class TestInteractive:
    def test_choose_only_common(self, repo):
        repo.create_home_file(".gitconfig", "old")
        prompt = answers("n", "n", "y", "n", "y")

        Installer(repo.config(interactive=True), FakeRunner(), prompt).install()

        check_link(repo, ".gitconfig", "common")
        check_not_exists(repo, ".config/foot")
        assert len(backup_dirs(repo)) == 1
        assert "backup" in prompt.asked[-1]

    def test_choosing_nothing_cancels(self, repo):
        prompt = answers("", "", "n", "n", "y")

        with pytest.raises(UserCancelled):
            Installer(repo.config(interactive=True), FakeRunner(), prompt).install()

        check_not_exists(repo, ".gitconfig")

    def test_declining_backup_and_overwrite_cancels(self, repo):
        repo.create_home_file(".gitconfig", "old")
        prompt = answers("n", "n", "y", "y", "n", "n")

        with pytest.raises(UserCancelled):
            Installer(repo.config(interactive=True), FakeRunner(), prompt).install()

        with open(repo.home_path(".gitconfig")) as f:
            assert f.read() == "old"

    def test_proceeding_without_backup_stops_at_conflicts(self, repo):
        repo.create_home_file(".gitconfig", "old")
        prompt = answers("n", "n", "y", "y", "n", "y")

        with pytest.raises(ConflictError):
            Installer(repo.config(interactive=True), FakeRunner(), prompt).install()

        assert "--adopt" in prompt.asked[-1]
        with open(repo.home_path(".gitconfig")) as f:
            assert f.read() == "old"


class TestOtherCommands:
    def test_uninstall_removes_all_links(self, repo):
        installer = Installer(repo.config(), FakeRunner())
        installer.install()

        installer.uninstall()

        check_not_exists(repo, ".gitconfig")
        check_not_exists(repo, ".config/nvim")
        check_not_exists(repo, ".config/foot")
        assert installer.failures == []

    def test_uninstall_single_app(self, repo):
        installer = Installer(repo.config(), FakeRunner())
        installer.install()

        installer.uninstall("neovim")

        check_not_exists(repo, ".config/nvim")
        check_link(repo, ".gitconfig", "common")

    def test_stow_app_links_only_that_app(self, repo):
        Installer(repo.config(), FakeRunner()).stow_app("foot")

        check_link(repo, ".config/foot", "linux")
        check_not_exists(repo, ".gitconfig")

    def test_restow_picks_up_new_files(self, repo):
        installer = Installer(repo.config(), FakeRunner())
        installer.install()
        repo.create_package("common", {".zshrc": ""})

        installer.restow()

        check_link(repo, ".zshrc", "common")

    def test_backup_command_copies_only(self, repo):
        repo.create_home_file(".gitconfig", "old")

        record = Installer(repo.config(), FakeRunner()).backup()

        assert record.entries == [".gitconfig"]
        with open(repo.home_path(".gitconfig")) as f:
            assert f.read() == "old"

    def test_backup_command_with_nothing_to_do(self, repo):
        assert Installer(repo.config(), FakeRunner()).backup() is None

    def test_step_records_failure(self, repo):
        installer = Installer(repo.config(), FakeRunner())

        def broken():
            raise StepFailure("network down")

        assert not installer.step("Fonts", broken)
        assert installer.failures == ["Fonts: network down"]


@pytest.mark.parametrize(
    "reply, default, expected",
    [("y", False, True), ("YES", False, True), ("n", True, False), ("", True, True), ("", False, False)],
)
def test_ask_yes_no(reply, default, expected):
    assert ask_yes_no("Continue?", default, answers(reply)) is expected


def test_ask_yes_no_repeats_on_garbage():
    prompt = answers("maybe", "y")
    assert ask_yes_no("Continue?", False, prompt)
    assert len(prompt.asked) == 2

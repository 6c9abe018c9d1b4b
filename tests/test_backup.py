"""
Tests for backing up files that links would replace.
"""

import os
import tempfile
from datetime import datetime

from hypothesis import given, settings, strategies as st

from conftest import DotfilesEnv
from dotstow.backup import backup_conflicts

NOW = datetime(2024, 1, 2, 3, 4, 5)


class TestBackupConflicts:
    def test_copies_files_and_keeps_originals(self, env):
        env.create_home_file(".gitconfig", "[user]")
        env.create_home_file(".config/nvim/init.lua", "-- lua")

        record = backup_conflicts(
            [env.home_path(".gitconfig"), env.home_path(".config/nvim")], env.home, now=NOW
        )

        assert record.root == env.home_path("dotfiles-backup-20240102-030405")
        assert record.entries == [".config/nvim", ".gitconfig"]
        with open(os.path.join(record.root, ".config/nvim/init.lua")) as f:
            assert f.read() == "-- lua"
        assert os.path.isfile(env.home_path(".gitconfig"))

    def test_remove_moves_files_out_of_the_way(self, env):
        env.create_home_file(".gitconfig", "[user]")

        record = backup_conflicts([".gitconfig"], env.home, remove=True, now=NOW)

        assert len(record) == 1
        assert not os.path.lexists(env.home_path(".gitconfig"))
        assert os.path.isfile(os.path.join(record.root, ".gitconfig"))

    def test_links_and_missing_paths_are_skipped(self, env):
        env.create_home_link(".bashrc", "/nonexistent")

        record = backup_conflicts([".bashrc", ".zshrc"], env.home, now=NOW)

        assert record is None
        assert os.listdir(env.home) == [".bashrc"]

    def test_nested_candidates_are_backed_up_once(self, env):
        env.create_home_file(".config/nvim/init.lua", "")

        record = backup_conflicts(
            [env.home_path(".config/nvim/init.lua"), env.home_path(".config/nvim")], env.home, now=NOW
        )

        assert record.entries == [".config/nvim"]

    def test_simulate_creates_nothing(self, env):
        env.create_home_file(".gitconfig", "")
        before = env.get_filesystem_state()

        record = backup_conflicts([".gitconfig"], env.home, remove=True, simulate=True, now=NOW)

        assert record.simulate
        assert record.entries == [".gitconfig"]
        assert env.get_filesystem_state() == before

    def test_simulate_reports_what_would_be_created(self, env, capsys):
        env.create_home_file(".gitconfig", "")

        backup_conflicts([".gitconfig"], env.home, simulate=True, now=NOW)

        out = capsys.readouterr().out
        assert "Would create backup directory: ~/dotfiles-backup-20240102-030405" in out
        assert "Would back up ~/.gitconfig" in out
        assert "Creating backup directory" not in out

    def test_existing_backup_directory_gets_a_suffix(self, env):
        env.create_home_dir("dotfiles-backup-20240102-030405")
        env.create_home_file(".gitconfig", "")

        record = backup_conflicts([".gitconfig"], env.home, now=NOW)

        assert record.root == env.home_path("dotfiles-backup-20240102-030405-1")
        assert os.listdir(env.home_path("dotfiles-backup-20240102-030405")) == []


names_st = st.lists(
    st.text(alphabet="abcdefghij", min_size=1, max_size=8), min_size=1, max_size=10, unique=True
)


@settings(max_examples=25, deadline=None)
@given(names=names_st, nested=st.booleans())
def test_every_conflicting_file_is_backed_up(names, nested):
    with tempfile.TemporaryDirectory() as tmpdir:
        env = DotfilesEnv(tmpdir)
        paths = [f".config/{name}" if nested else f".{name}" for name in names]
        for path in paths:
            env.create_home_file(path, path)

        record = backup_conflicts(paths, env.home, remove=True, now=NOW)

        assert len(record) == len(paths)
        for path in paths:
            assert not os.path.lexists(env.home_path(path))
            with open(os.path.join(record.root, path)) as f:
                assert f.read() == path

"""
Tests for finding and removing orphaned links into the repository.
"""

import os

from conftest import check_link, check_not_exists, check_real_dir
from dotstow.link import cleanup_orphans, find_orphans, link, unlink_packages


def test_find_orphans_only_yields_broken_repository_links(env):
    env.create_package("common", {".gitconfig": ""})
    link("common", config=env.config())
    env.create_home_link(".config/gone/app.conf", "../../../dotfiles/common/.config/gone/app.conf")
    env.create_home_link(".config/foreign.conf", "/nonexistent/foreign.conf")
    env.create_home_link(".old-rc", "dotfiles/common/.old-rc")

    orphans = list(find_orphans(env.home, env.dotfiles_dir))

    assert orphans == [env.home_path(".config/gone/app.conf")]


def test_search_depth_is_limited(env):
    env.create_home_link("a/b/c/d/orphan", "/nonexistent")
    env.create_home_link("a/b/orphan", os.path.join(env.dotfiles_dir, "common", "x"))
    env.create_home_link("a/b/c/d/deep", os.path.join(env.dotfiles_dir, "common", "y"))

    orphans = list(find_orphans(env.home, env.dotfiles_dir, [env.home]))

    assert orphans == [env.home_path("a/b/orphan")]


def test_cleanup_removes_orphans_and_empty_parents(env):
    env.create_package("common", {".gitconfig": ""})
    link("common", config=env.config())
    env.create_home_link(".config/gone/app.conf", os.path.join(env.dotfiles_dir, "common/.config/gone/app.conf"))

    removed = cleanup_orphans(env.config())

    assert removed == [env.home_path(".config/gone/app.conf")]
    check_not_exists(env, ".config/gone")
    check_real_dir(env, ".config")
    check_link(env, ".gitconfig", "common")


def test_cleanup_simulate_only_lists(env):
    env.create_home_link(".config/gone", os.path.join(env.dotfiles_dir, "common/.config/gone"))
    before = env.get_filesystem_state()

    removed = cleanup_orphans(env.config(simulate=True))

    assert removed == [env.home_path(".config/gone")]
    assert env.get_filesystem_state() == before


def test_cleanup_with_nothing_to_do(env):
    env.create_home_file(".bashrc", "")
    assert cleanup_orphans(env.config()) == []


def test_unlink_packages_falls_back_to_cleanup(env):
    env.create_package("common", {".gitconfig": ""})
    link("common", config=env.config())
    env.create_home_link(".config/linux-app", os.path.join(env.dotfiles_dir, "linux/.config/linux-app"))

    failed = unlink_packages(("common", "linux"), env.config())

    assert failed == ["linux"]
    check_not_exists(env, ".gitconfig")
    check_not_exists(env, ".config/linux-app")

from pathlib import Path
import textwrap

import pytest

from devconsole.config import ConfigurationError
from devconsole.profiles import (
    DEFAULT_WATCH_PATHS,
    ProfileLoadError,
    ProfileLoader,
    require_single_worker,
)


def write_profile(path: Path, *, name: str, cluster: int = 1) -> None:
    path.write_text(
        textwrap.dedent(
            """
            name: {name}
            app: shop.boot:start
            cluster: {cluster}
            watch:
              - src
              - templates
            """
        ).strip().format(name=name, cluster=cluster),
        encoding="utf-8",
    )


def test_loader_merges_paths(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    override = tmp_path / "override"
    override.mkdir()

    write_profile(base / "devconsole.yml", name="base-shop")
    (override / "devconsole.yaml").write_text("name: override-shop\n", encoding="utf-8")

    profile = ProfileLoader([base, override]).load()

    assert profile.name == "override-shop"
    assert profile.app == "shop.boot:start"
    assert profile.watch == [Path("src"), Path("templates")]


def test_loader_accepts_file_paths(tmp_path: Path) -> None:
    path = tmp_path / "custom.yml"
    write_profile(path, name="shop")

    assert ProfileLoader([path]).load().name == "shop"


def test_loader_handles_missing_profiles(tmp_path: Path) -> None:
    profile = ProfileLoader([tmp_path, tmp_path / "absent.yml"]).load()

    assert profile.cluster == 1
    assert profile.app is None
    assert profile.watch == list(DEFAULT_WATCH_PATHS)


def test_loader_reports_validation_error(tmp_path: Path) -> None:
    (tmp_path / "devconsole.yml").write_text("cluster: many\n", encoding="utf-8")

    with pytest.raises(ProfileLoadError):
        ProfileLoader([tmp_path]).load()


def test_loader_rejects_non_mapping(tmp_path: Path) -> None:
    (tmp_path / "devconsole.yml").write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ProfileLoadError):
        ProfileLoader([tmp_path]).load()


def test_single_watch_path_is_coerced(tmp_path: Path) -> None:
    (tmp_path / "devconsole.yml").write_text("watch: lib\n", encoding="utf-8")

    profile = ProfileLoader([tmp_path]).load()

    assert profile.resolve_watch_paths(tmp_path) == [tmp_path / "lib"]


def test_cluster_other_than_one_is_fatal(tmp_path: Path) -> None:
    write_profile(tmp_path / "devconsole.yml", name="shop", cluster=4)
    profile = ProfileLoader([tmp_path]).load()

    with pytest.raises(ConfigurationError, match='"cluster" set to 1'):
        require_single_worker(profile)

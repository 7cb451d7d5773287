from __future__ import annotations

import shutil
from typing import TYPE_CHECKING, Callable

import pytest

from dissect.tarstage.archiver import probe_dialect
from dissect.tarstage.staging import StagingArea

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Iterator


HAS_TAR = shutil.which("tar") is not None


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "needs_tar: test runs the tar executable from PATH")


def pytest_runtest_setup(item: pytest.Item) -> None:
    if not HAS_TAR and item.get_closest_marker("needs_tar") is not None:
        pytest.skip("tar is not installed")


@pytest.fixture(autouse=True)
def clear_caches() -> None:
    probe_dialect.cache_clear()


@pytest.fixture
def fake_tar(tmp_path: pathlib.Path) -> pathlib.Path:
    """An executable that satisfies the archiver lookup, for tests that never run it."""
    path = tmp_path.joinpath("bin", "tar")
    path.parent.mkdir()
    path.write_text("#!/bin/sh\nexit 0\n")
    path.chmod(0o755)
    return path


@pytest.fixture
def make_staging(tmp_path: pathlib.Path) -> Iterator[Callable[..., StagingArea]]:
    staging_areas = []
    tmpdir = tmp_path.joinpath("staging")
    tmpdir.mkdir()

    def _make_staging(**kwargs) -> StagingArea:
        kwargs.setdefault("tmpdir", str(tmpdir))
        staging = StagingArea(**kwargs)
        staging_areas.append(staging)
        return staging

    yield _make_staging

    for staging in staging_areas:
        staging.close()


@pytest.fixture
def staging(make_staging: Callable[..., StagingArea], fake_tar: pathlib.Path) -> StagingArea:
    """A staging area for tests that only touch the staging directory."""
    return make_staging(tar=str(fake_tar))


@pytest.fixture
def tar_staging(make_staging: Callable[..., StagingArea]) -> StagingArea:
    """A staging area using the real tar."""
    return make_staging()


@pytest.fixture
def source_tree(tmp_path: pathlib.Path) -> pathlib.Path:
    # FS layout:
    #
    # tree
    #   README
    #   bin/tool          (0755)
    #   etc/app/app.conf
    #   etc/app/empty/
    #   lib/link -> ../bin/tool
    root = tmp_path.joinpath("tree")
    root.joinpath("bin").mkdir(parents=True)
    root.joinpath("etc", "app", "empty").mkdir(parents=True)
    root.joinpath("lib").mkdir()

    root.joinpath("README").write_bytes(b"readme\n")
    root.joinpath("bin", "tool").write_bytes(b"#!/bin/sh\necho tool\n")
    root.joinpath("bin", "tool").chmod(0o755)
    root.joinpath("etc", "app", "app.conf").write_bytes(b"key = value\n")
    root.joinpath("lib", "link").symlink_to("../bin/tool")
    return root

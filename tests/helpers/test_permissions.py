from __future__ import annotations

import os
import stat
from pathlib import Path
from unittest.mock import patch

import pytest

from dissect.tarstage.exceptions import PermissionApplyError
from dissect.tarstage.helpers import permissions
from dissect.tarstage.helpers.permissions import PermissionSnapshot


def test_permissions_snapshot(tmp_path: Path) -> None:
    path = tmp_path.joinpath("file")
    path.write_bytes(b"")
    path.chmod(0o640)

    perms = permissions.snapshot(path)
    assert perms == PermissionSnapshot(mode=0o640, uid=os.getuid(), gid=os.getgid())


def test_permissions_override() -> None:
    perms = PermissionSnapshot(mode=0o644, uid=1000, gid=1000)

    assert perms.override() == perms
    assert perms.override(mode=0o600) == PermissionSnapshot(mode=0o600, uid=1000, gid=1000)
    assert perms.override(uid=0, gid=0) == PermissionSnapshot(mode=0o644, uid=0, gid=0)


def test_permissions_mirror(tmp_path: Path) -> None:
    source = tmp_path.joinpath("source")
    source.write_bytes(b"")
    source.chmod(0o751)
    destination = tmp_path.joinpath("destination")
    destination.write_bytes(b"")

    permissions.mirror(source, destination)

    st = destination.stat()
    assert stat.S_IMODE(st.st_mode) == 0o751
    assert st.st_uid == os.getuid()


def test_permissions_apply_nothing(tmp_path: Path) -> None:
    path = tmp_path.joinpath("file")
    path.write_bytes(b"")
    path.chmod(0o600)

    with patch("dissect.tarstage.helpers.permissions.os.chown") as mocked_chown:
        permissions.apply(PermissionSnapshot(), path)

    mocked_chown.assert_not_called()
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_permissions_ownership_failure_is_tolerated(tmp_path: Path) -> None:
    path = tmp_path.joinpath("file")
    path.write_bytes(b"")

    with patch("dissect.tarstage.helpers.permissions.os.chown", side_effect=PermissionError(1, "EPERM")):
        permissions.apply(PermissionSnapshot(mode=0o600, uid=0, gid=0), path)

    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_permissions_partial_ownership(tmp_path: Path) -> None:
    path = tmp_path.joinpath("file")
    path.write_bytes(b"")

    with patch("dissect.tarstage.helpers.permissions.os.chown") as mocked_chown:
        permissions.apply(PermissionSnapshot(gid=1234), path)

    mocked_chown.assert_called_once_with(path, -1, 1234, follow_symlinks=False)


def test_permissions_mode_failure_is_fatal(tmp_path: Path) -> None:
    path = tmp_path.joinpath("file")
    path.write_bytes(b"")

    with patch("dissect.tarstage.helpers.permissions.os.chmod", side_effect=PermissionError(1, "EPERM")):
        with pytest.raises(PermissionApplyError) as exc_info:
            permissions.apply(PermissionSnapshot(mode=0o600), path)

    assert isinstance(exc_info.value, PermissionError)
    assert isinstance(exc_info.value.__cause__, PermissionError)


def test_permissions_symlink_mode_untouched(tmp_path: Path) -> None:
    target = tmp_path.joinpath("target")
    target.write_bytes(b"")
    target.chmod(0o600)
    link = tmp_path.joinpath("link")
    link.symlink_to(target)

    permissions.apply(PermissionSnapshot(mode=0o777), link)

    assert stat.S_IMODE(target.stat().st_mode) == 0o600

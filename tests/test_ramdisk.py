from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from dissect.tarstage.exceptions import MountError, UnmountError
from dissect.tarstage.ramdisk import RamDisk


def completed(returncode: int = 0, stderr: bytes = b"") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess([], returncode, b"", stderr)


def test_ramdisk_mount(tmp_path: Path) -> None:
    mount_point = tmp_path.joinpath("mnt")
    ramdisk = RamDisk()

    with patch("dissect.tarstage.ramdisk.subprocess.run", return_value=completed()) as mocked_run:
        assert ramdisk.mount(size="1g", type="ramfs", tmpdir=mount_point) == mount_point

        assert ramdisk.mounted
        assert ramdisk.mount_point == mount_point
        assert mount_point.is_dir()
        mocked_run.assert_called_once_with(
            ["mount", "-t", "ramfs", "-o", "size=1g", "tmpfs", str(mount_point)],
            capture_output=True,
            check=False,
        )

        ramdisk.unmount()

    assert mocked_run.call_args.args[0] == ["umount", str(mount_point)]
    assert not ramdisk.mounted
    assert ramdisk.mount_point is None
    assert not mount_point.exists()


def test_ramdisk_mount_temporary_directory() -> None:
    with patch("dissect.tarstage.ramdisk.subprocess.run", return_value=completed()):
        with RamDisk() as ramdisk:
            mount_point = ramdisk.mount()
            assert mount_point.name.startswith("tarstage-ramdisk-")
            assert mount_point.is_dir()

    assert not mount_point.exists()


def test_ramdisk_existing_mount_point_kept(tmp_path: Path) -> None:
    ramdisk = RamDisk()

    with patch("dissect.tarstage.ramdisk.subprocess.run", return_value=completed()):
        ramdisk.mount(tmpdir=tmp_path)
        ramdisk.unmount()

    assert tmp_path.is_dir()


def test_ramdisk_custom_commands(tmp_path: Path) -> None:
    ramdisk = RamDisk(mount="/usr/bin/sudo-mount", umount="/usr/bin/sudo-umount")

    with patch("dissect.tarstage.ramdisk.subprocess.run", return_value=completed()) as mocked_run:
        ramdisk.mount(tmpdir=tmp_path)
        assert mocked_run.call_args.args[0][0] == "/usr/bin/sudo-mount"

        ramdisk.unmount()
        assert mocked_run.call_args.args[0][0] == "/usr/bin/sudo-umount"


def test_ramdisk_mount_failure(tmp_path: Path) -> None:
    mount_point = tmp_path.joinpath("mnt")
    ramdisk = RamDisk()

    result = completed(32, b"mount: only root can do that\n")
    with patch("dissect.tarstage.ramdisk.subprocess.run", return_value=result):
        with pytest.raises(MountError, match="only root can do that") as exc_info:
            ramdisk.mount(tmpdir=mount_point)

    assert exc_info.value.returncode == 32
    assert exc_info.value.command[0] == "mount"
    assert not ramdisk.mounted
    assert not mount_point.exists()


def test_ramdisk_mount_command_missing(tmp_path: Path) -> None:
    ramdisk = RamDisk()

    with patch("dissect.tarstage.ramdisk.subprocess.run", side_effect=FileNotFoundError(2, "No such file")):
        with pytest.raises(MountError, match="No such file") as exc_info:
            ramdisk.mount(tmpdir=tmp_path.joinpath("mnt"))

    assert isinstance(exc_info.value.__cause__, FileNotFoundError)


def test_ramdisk_mount_twice(tmp_path: Path) -> None:
    ramdisk = RamDisk()

    with patch("dissect.tarstage.ramdisk.subprocess.run", return_value=completed()) as mocked_run:
        ramdisk.mount(tmpdir=tmp_path)

        with pytest.raises(MountError, match="already mounted"):
            ramdisk.mount(tmpdir=tmp_path)

    mocked_run.assert_called_once()


def test_ramdisk_unmount_not_mounted() -> None:
    with patch("dissect.tarstage.ramdisk.subprocess.run") as mocked_run:
        RamDisk().unmount()

    mocked_run.assert_not_called()


def test_ramdisk_unmount_failure(tmp_path: Path) -> None:
    mount_point = tmp_path.joinpath("mnt")
    ramdisk = RamDisk()

    with patch("dissect.tarstage.ramdisk.subprocess.run", return_value=completed()):
        ramdisk.mount(tmpdir=mount_point)

    with patch("dissect.tarstage.ramdisk.subprocess.run", return_value=completed(32, b"umount: target is busy\n")):
        with pytest.raises(UnmountError, match="target is busy"):
            ramdisk.unmount()

    # Still mounted, so it can be retried
    assert ramdisk.mounted
    assert mount_point.is_dir()

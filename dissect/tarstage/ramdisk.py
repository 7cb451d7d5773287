from __future__ import annotations

import contextlib
import logging
import shlex
import subprocess
import tempfile
from pathlib import Path

from dissect.tarstage.exceptions import MountError, RamDiskError, UnmountError

log = logging.getLogger(__name__)

MOUNT = "mount"
UMOUNT = "umount"


class RamDisk:
    """A memory backed file system to stage archives on.

    Mounting usually requires a privileged process. The mount point can be used as the ``tmpdir`` of a
    :class:`~dissect.tarstage.staging.StagingArea`.

    Args:
        mount: The mount executable.
        umount: The unmount executable.
    """

    def __init__(self, mount: str = MOUNT, umount: str = UMOUNT):
        self.mount_cmd = mount
        self.umount_cmd = umount

        self.mount_point: Path | None = None
        self.mounted = False
        self._created = False

    def __repr__(self) -> str:
        return f"<RamDisk mount_point={self.mount_point} mounted={self.mounted}>"

    def __enter__(self) -> RamDisk:
        return self

    def __exit__(self, *args, **kwargs) -> None:
        self.unmount()

    def mount(self, size: str = "100m", type: str = "tmpfs", tmpdir: Path | str | None = None) -> Path:
        """Mount a RAM disk of ``size`` and return its mount point.

        Without a ``tmpdir``, a new temporary directory is created as mount point and removed again on
        unmount.

        Raises:
            MountError: If this instance already has a mounted RAM disk or the mount command failed.
        """
        if self.mounted:
            raise MountError(f"A RAM disk is already mounted on {self.mount_point}")

        if tmpdir is None:
            mount_point = Path(tempfile.mkdtemp(prefix="tarstage-ramdisk-"))
            created = True
        else:
            mount_point = Path(tmpdir)
            created = not mount_point.exists()
            mount_point.mkdir(parents=True, exist_ok=True)

        command = [self.mount_cmd, "-t", type, "-o", f"size={size}", "tmpfs", str(mount_point)]
        try:
            _run(command, MountError, f"Mounting {type} on {mount_point} failed")
        except MountError:
            if created:
                with contextlib.suppress(OSError):
                    mount_point.rmdir()
            raise

        log.debug("Mounted %s RAM disk of %s on %s", type, size, mount_point)

        self.mount_point = mount_point
        self.mounted = True
        self._created = created
        return mount_point

    def unmount(self) -> None:
        """Unmount the RAM disk. Does nothing if nothing is mounted."""
        if not self.mounted:
            return

        _run([self.umount_cmd, str(self.mount_point)], UnmountError, f"Unmounting {self.mount_point} failed")
        log.debug("Unmounted RAM disk on %s", self.mount_point)

        if self._created:
            try:
                self.mount_point.rmdir()
            except OSError as e:
                log.warning("Unable to remove mount point %s: %s", self.mount_point, e)

        self.mount_point = None
        self.mounted = False
        self._created = False


def _run(command: list[str], error_cls: type[RamDiskError], message: str) -> None:
    log.debug("Running %s", shlex.join(command))

    try:
        proc = subprocess.run(command, capture_output=True, check=False)
    except OSError as e:
        raise error_cls(f"{message}: {e}", cause=e, command=command)

    if proc.returncode != 0:
        raise error_cls(
            message,
            command=command,
            returncode=proc.returncode,
            stderr=proc.stderr.decode(errors="backslashreplace"),
        )

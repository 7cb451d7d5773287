"""Copy ``{mode, uid, gid}`` between files so the archiver captures the intended metadata."""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from dissect.tarstage.exceptions import PermissionApplyError

if TYPE_CHECKING:
    from pathlib import Path

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PermissionSnapshot:
    mode: int | None = None
    uid: int | None = None
    gid: int | None = None

    def override(self, mode: int | None = None, uid: int | None = None, gid: int | None = None) -> PermissionSnapshot:
        """Return a copy with every given (not ``None``) value replaced."""
        changes = {key: value for key, value in (("mode", mode), ("uid", uid), ("gid", gid)) if value is not None}
        return replace(self, **changes)


def snapshot(path: Path | str) -> PermissionSnapshot:
    """Capture the permission bits and ownership of ``path``, following symlinks."""
    st = os.stat(path)
    return PermissionSnapshot(mode=stat.S_IMODE(st.st_mode), uid=st.st_uid, gid=st.st_gid)


def apply(perms: PermissionSnapshot, path: Path | str) -> None:
    """Apply ``perms`` to ``path``.

    A mode that can't be set is fatal and raises a :class:`PermissionApplyError`. Changing ownership requires
    a privileged process in most cases, so a failing ``chown`` is only logged. Values that are ``None`` are
    left untouched. The mode of a symlink is never changed.
    """
    if perms.mode is not None and not os.path.islink(path):
        try:
            os.chmod(path, perms.mode)
        except OSError as e:
            raise PermissionApplyError(f"Unable to set mode {perms.mode:o} on {path}", cause=e)

    if perms.uid is None and perms.gid is None:
        return

    uid = -1 if perms.uid is None else perms.uid
    gid = -1 if perms.gid is None else perms.gid

    try:
        os.chown(path, uid, gid, follow_symlinks=False)
    except (OSError, NotImplementedError) as e:
        log.debug("Unable to set ownership %d:%d on %s: %s", uid, gid, path, e)


def mirror(source: Path | str, destination: Path | str) -> PermissionSnapshot:
    """Copy mode, uid and gid from ``source`` to ``destination``."""
    perms = snapshot(source)
    apply(perms, destination)
    return perms

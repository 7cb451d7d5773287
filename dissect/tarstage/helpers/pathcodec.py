"""Translation between logical archive paths and physical staging paths."""

from __future__ import annotations

import os
from pathlib import Path, PurePosixPath

from dissect.tarstage.exceptions import InvalidPathError

__all__ = [
    "PathCodec",
    "normalize",
    "split",
]


def split(logical_path: str) -> list[str]:
    """Split a logical path into its components.

    Leading slashes, ``.`` components and repeated separators are dropped, the same way the archiver strips
    them when it stores or extracts a member. A NUL byte or a ``..`` component can never be represented
    inside the staging directory and raises an :class:`InvalidPathError`.

    Args:
        logical_path: A slash separated path as recorded inside an archive.

    Returns:
        The list of path components.
    """
    if not isinstance(logical_path, str):
        raise InvalidPathError(f"Logical path must be a string, got {type(logical_path).__name__}")

    if "\x00" in logical_path:
        raise InvalidPathError(f"Logical path contains a NUL byte: {logical_path!r}")

    parts = [part for part in logical_path.split("/") if part not in ("", ".")]

    if ".." in parts:
        raise InvalidPathError(f"Logical path escapes the staging directory: {logical_path!r}")

    if not parts:
        raise InvalidPathError(f"Logical path is empty: {logical_path!r}")

    return parts


def normalize(logical_path: str) -> str:
    """Return the canonical form of ``logical_path``, e.g. ``/a//b/./c`` becomes ``a/b/c``."""
    return "/".join(split(logical_path))


class PathCodec:
    """Reversible mapping between logical paths and physical paths below ``root``.

    Backslashes and other characters that are special on some platforms are kept as-is, since tar member
    names on POSIX systems may contain them.
    """

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"<PathCodec root={str(self.root)!r}>"

    def encode(self, logical_path: str) -> Path:
        """Return the physical path for ``logical_path``."""
        return self.root.joinpath(*split(logical_path))

    def decode(self, physical_path: Path | str) -> str:
        """Return the logical path for a physical path below the root."""
        path = Path(physical_path)
        try:
            relative = path.relative_to(self.root)
        except ValueError:
            raise InvalidPathError(f"{physical_path} is not part of {self.root}")

        if relative == Path("."):
            raise InvalidPathError("The staging root has no logical path")

        return PurePosixPath(*relative.parts).as_posix()

    def has_directory_parents(self, logical_path: str) -> bool:
        """Whether every parent component of ``logical_path`` exists as a real directory below the root.

        If not, the physical path either doesn't exist or resolves through a symlink, possibly to a location
        outside of the staging directory.
        """
        current = self.root
        for part in split(logical_path)[:-1]:
            current = current.joinpath(part)
            if current.is_symlink() or not current.is_dir():
                return False
        return True

    def check_collision(self, logical_path: str) -> list[Path]:
        """Verify that a file can be placed at ``logical_path``.

        A file can't be staged below a component that already exists as something other than a directory,
        nor on top of an existing directory.

        Returns:
            The parent directories that don't exist yet, outermost first.
        """
        parts = split(logical_path)
        missing = []

        current = self.root
        for part in parts[:-1]:
            current = current.joinpath(part)
            if os.path.lexists(current):
                if current.is_symlink() or not current.is_dir():
                    raise InvalidPathError(
                        f"Can't stage {logical_path!r}: {self.decode(current)!r} exists and is not a directory"
                    )
            else:
                missing.append(current)

        target = current.joinpath(parts[-1])
        if not target.is_symlink() and target.is_dir():
            raise InvalidPathError(f"Can't stage {logical_path!r}: it exists as a directory")

        return missing

from __future__ import annotations

import enum
import logging
import os
import stat
import weakref
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar, NamedTuple

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from dissect.tarstage.staging import StagingArea

log = logging.getLogger(__name__)


class EntryKind(enum.Enum):
    FILE = "f"
    DIR = "d"
    SYMLINK = "l"


class _EntryTuple(NamedTuple):
    logical_path: str
    physical_path: Path


class Entry(_EntryTuple):
    """A ``(logical_path, physical_path)`` pair, tagged with the kind of entry by its class."""

    __slots__ = ()

    kind: ClassVar[EntryKind]

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.logical_path!r} -> {str(self.physical_path)!r}>"

    def is_file(self) -> bool:
        return self.kind is EntryKind.FILE

    def is_dir(self) -> bool:
        return self.kind is EntryKind.DIR

    def is_symlink(self) -> bool:
        return self.kind is EntryKind.SYMLINK


class FileEntry(Entry):
    __slots__ = ()
    kind = EntryKind.FILE


class DirEntry(Entry):
    __slots__ = ()
    kind = EntryKind.DIR


class SymlinkEntry(Entry):
    __slots__ = ()
    kind = EntryKind.SYMLINK


ENTRY_CLASSES = {
    EntryKind.FILE: FileEntry,
    EntryKind.DIR: DirEntry,
    EntryKind.SYMLINK: SymlinkEntry,
}


def kind_of(path: Path | str) -> EntryKind:
    """Determine the kind of the file at ``path`` without following symlinks.

    Anything that is not a directory or a symlink, e.g. a fifo or device node, is treated as a file.
    """
    mode = os.lstat(path).st_mode
    if stat.S_ISLNK(mode):
        return EntryKind.SYMLINK
    if stat.S_ISDIR(mode):
        return EntryKind.DIR
    return EntryKind.FILE


def make_entry(logical_path: str, physical_path: Path) -> Entry:
    """Build the entry variant matching what is currently on disk."""
    return ENTRY_CLASSES[kind_of(physical_path)](logical_path, physical_path)


class IteratorState(enum.Enum):
    NOT_STARTED = "not started"
    IN_PROGRESS = "in progress"
    EXHAUSTED = "exhausted"


class EntryIterator:
    """Restartable cursor over the entry map of a staging area.

    The iterator only holds a weak reference to the staging area, so it never keeps the staging directory
    alive. Entries are built from the file system when they are reached, which means changes made on disk
    after a read are reflected. Entries that vanished from disk in the meantime are skipped.

    Adding or removing entries while iterating is not supported and results in a ``RuntimeError``.

    Args:
        staging: The staging area to iterate over.
        kinds: Only yield entries of these kinds. By default, directories are only yielded if the staging
               area lists directories.
    """

    def __init__(self, staging: StagingArea, kinds: Iterable[EntryKind] | None = None):
        self._staging = weakref.ref(staging)

        if kinds is None:
            kinds = set(EntryKind) if staging.dirs else {EntryKind.FILE, EntryKind.SYMLINK}
        self.kinds = frozenset(kinds)

        self.state = IteratorState.NOT_STARTED
        self._cursor = None

    def __iter__(self) -> Iterator[Entry]:
        return self

    def __next__(self) -> Entry:
        entry = self.next()
        if entry is None:
            raise StopIteration
        return entry

    @property
    def staging(self) -> StagingArea:
        staging = self._staging()
        if staging is None:
            raise ReferenceError("The staging area of this iterator no longer exists")
        return staging

    def reset(self) -> None:
        """Start over from the first entry."""
        self.state = IteratorState.NOT_STARTED
        self._cursor = None

    def next(self) -> Entry | None:
        """Return the next entry, or ``None`` once all entries are consumed."""
        if self.state is IteratorState.EXHAUSTED:
            return None

        if self.state is IteratorState.NOT_STARTED:
            self._cursor = iter(self.staging.entries.items())
            self.state = IteratorState.IN_PROGRESS

        for logical_path, physical_path in self._cursor:
            try:
                entry = make_entry(logical_path, physical_path)
            except FileNotFoundError:
                log.debug("Skipping %s, it no longer exists on disk", logical_path)
                continue

            if entry.kind in self.kinds:
                return entry

        self.state = IteratorState.EXHAUSTED
        self._cursor = None
        return None

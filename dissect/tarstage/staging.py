from __future__ import annotations

import io
import os
import shutil
import tempfile
import weakref
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, TextIO, Union

from dissect.tarstage.archiver import ArchiverInvoker, find_archiver
from dissect.tarstage.entry import Entry, EntryIterator, EntryKind
from dissect.tarstage.exceptions import EntryNotFoundError, ExtractionError, StagingError, UnmountError
from dissect.tarstage.helpers import compression, permissions
from dissect.tarstage.helpers.config import StagingConfig
from dissect.tarstage.helpers.logging import StagingLogAdapter, get_logger
from dissect.tarstage.helpers.pathcodec import PathCodec, normalize
from dissect.tarstage.helpers.permissions import PermissionSnapshot
from dissect.tarstage.ramdisk import RamDisk

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from dissect.tarstage.archiver import Result
    from dissect.tarstage.helpers.compression import Compression

log = get_logger(__name__)

Source = Union[str, os.PathLike, bytes, bytearray, memoryview, BinaryIO, TextIO]

STAGING_PREFIX = "tarstage-"
TARDIR_NAME = "tar"


class StagingArea:
    """Stage the contents of a tar archive in a private temporary directory.

    Every entry has a logical path, the name inside the archive, and a physical path, the file inside the
    staging directory. Entries can be read from an archive, added, removed and listed, after which the
    staging directory is written to a new archive. The actual reading and writing of archives is done by an
    external ``tar`` process, which keeps memory usage flat even for huge archives.

    The staging directory is removed when the staging area is closed, leaves its ``with`` block or is
    garbage collected.

    Example:
        .. code-block:: python

            with StagingArea() as staging:
                staging.read("in.tar.gz")
                staging.add("etc/motd", b"hello\\n", perm=0o644)
                staging.remove("etc/shadow")
                staging.write("out.tar.gz", compress=True)

    Args:
        config: Settings to start from, keyword arguments override its values.
        **kwargs: Any field of :class:`~dissect.tarstage.helpers.config.StagingConfig`.

    Raises:
        ConstructionError: If the archiver can't be found.
    """

    def __init__(self, config: StagingConfig | None = None, **kwargs):
        self.config = (config or StagingConfig()).merge(**kwargs)
        self.dirs = self.config.dirs
        self.entries: dict[str, Path] = {}

        # Fail before anything is created on disk
        self.tar = find_archiver(self.config.tar)

        self._ramdisk = RamDisk()
        self._staging_ramdisk = None
        self._iterator = None
        self._finalizer = None

        tmpdir = self.config.tmpdir
        try:
            if self.config.ramdisk:
                self._staging_ramdisk = RamDisk()
                tmpdir = self._staging_ramdisk.mount(
                    size=self.config.ramdisk.size,
                    type=self.config.ramdisk.type,
                    tmpdir=self.config.ramdisk.tmpdir,
                )

            self.workdir = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=tmpdir))
            self._finalizer = weakref.finalize(self, _cleanup, self.workdir, self._staging_ramdisk, self._ramdisk)

            self.root = self.workdir.joinpath(TARDIR_NAME)
            self.root.mkdir()
        except BaseException:
            # A failing cleanup must not replace the original error
            try:
                if self._finalizer is not None:
                    self._finalizer()
                else:
                    _unmount_all(self._staging_ramdisk)
            except UnmountError as e:
                log.debug("Cleanup after a failed setup did not complete", exc_info=e)
            raise

        self.codec = PathCodec(self.root)
        self.archiver = ArchiverInvoker(
            self.tar,
            read_options=self.config.tar_read_options,
            write_options=self.config.tar_write_options,
            gnu_read_options=self.config.tar_gnu_read_options,
            gnu_write_options=self.config.tar_gnu_write_options,
            max_cmd_line_args=self.config.max_cmd_line_args,
            timeout=self.config.timeout,
            workdir=self.workdir,
        )
        self.log = StagingLogAdapter(log, {"stage": self.root})
        self.log.debug("Created staging area using %s", self.tar)

    def __repr__(self) -> str:
        return f"<StagingArea root={str(self.root)!r} entries={len(self.entries)}>"

    def __enter__(self) -> StagingArea:
        return self

    def __exit__(self, *args, **kwargs) -> None:
        self.close()

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, logical_path: str) -> bool:
        try:
            return normalize(logical_path) in self.entries
        except StagingError:
            return False

    def __iter__(self) -> Iterator[Entry]:
        return self.iter_entries()

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def close(self) -> None:
        """Remove the staging directory and unmount any RAM disk. Closing twice is harmless.

        Every RAM disk is unmounted, even if unmounting another one failed. A RAM disk that could not be
        unmounted stays mounted and closing again retries it.

        Raises:
            UnmountError: If a RAM disk could not be unmounted.
        """
        try:
            if self._finalizer.alive:
                self.log.debug("Removing staging area")
                self._finalizer()
            else:
                _unmount_all(self._staging_ramdisk, self._ramdisk)
        finally:
            self.entries = {}
            self._iterator = None

    def _check_open(self) -> None:
        if self.closed:
            raise StagingError("Staging area is closed")

    def tardir(self) -> Path:
        """Return the directory holding the staged entries."""
        return self.root

    def is_gnu(self) -> bool:
        """Whether the archiver is GNU tar."""
        return self.archiver.is_gnu()

    def is_bsd(self) -> bool:
        """Whether the archiver is bsdtar."""
        return self.archiver.is_bsd()

    def read(self, archive: Path | str, *files: str) -> Result:
        """Extract ``archive`` into the staging area.

        Optionally only the member names in ``files`` are extracted. They are handed to the archiver
        verbatim, so they must match the names inside the archive exactly.

        Reading another archive into the same staging area puts its entries on top of the existing ones,
        nothing is cleaned up in between.

        Raises:
            ExtractionError: If the archive is unreadable or the archiver failed.
        """
        self._check_open()
        archive = Path(archive)

        if not archive.is_file():
            raise ExtractionError(f"Archive {archive} does not exist or is not a file")

        try:
            detected = compression.detect(archive)
            if detected is compression.Compression.NONE and not compression.is_tar(archive):
                self.log.warning("%s does not look like an uncompressed tar archive", archive)
        except OSError as e:
            raise ExtractionError(f"Unable to read {archive}", cause=e)

        self.log.info("Reading %s (%s compression)", archive, detected.name.lower())
        result = self.archiver.extract(archive, self.root, files, compression=detected)

        self._sync()
        return result

    def _sync(self) -> None:
        """Bring the entry map in line with the staging directory, keeping the order of existing entries."""
        found = {
            self.codec.decode(path): path
            for path, is_dir in _scan(self.root)
            if self.dirs or not is_dir
        }

        entries = {key: found[key] for key in self.entries if key in found}
        for key, path in found.items():
            entries.setdefault(key, path)

        self.log.debug("Staging area holds %d entries (%d new)", len(entries), len(entries) - len(self.entries))
        self.entries = entries

    def add(
        self,
        logical_path: str,
        source: Source,
        *,
        perm: int | None = None,
        uid: int | None = None,
        gid: int | None = None,
        encoding: str | None = None,
    ) -> Path:
        """Stage ``source`` under ``logical_path``.

        The file is created right away, missing parent directories included. An existing entry is
        overwritten and keeps its position in the listing order.

        Args:
            logical_path: The name of the entry inside the archive.
            source: A path (``str`` or path-like) of a file to copy, a bytes-like buffer or a readable
                    file-like object holding the content.
            perm: Mode to set on the staged file.
            uid: Owner to set on the staged file.
            gid: Group to set on the staged file.
            encoding: Encoding of the text read from a file-like ``source``, UTF-8 by default.

        Returns:
            The physical path of the staged file.

        Raises:
            InvalidPathError: If ``logical_path`` can't be staged.
            PermissionApplyError: If the mode can't be set. Failing to set the owner or group is only logged.
        """
        self._check_open()

        logical_path = normalize(logical_path)
        physical_path = self.codec.encode(logical_path)
        missing = self.codec.check_collision(logical_path)

        physical_path.parent.mkdir(parents=True, exist_ok=True)
        if physical_path.is_symlink():
            # Never write through a staged symlink
            physical_path.unlink()

        if isinstance(source, (bytes, bytearray, memoryview)):
            physical_path.write_bytes(source)
            perms = PermissionSnapshot()
        elif hasattr(source, "read"):
            _copy_stream(source, physical_path, encoding or "utf-8")
            perms = PermissionSnapshot()
        elif isinstance(source, (str, os.PathLike)):
            shutil.copyfile(source, physical_path)
            perms = permissions.snapshot(source)
        else:
            raise TypeError(f"Unsupported source type: {type(source).__name__}")

        if self.dirs:
            for directory in missing:
                self.entries.setdefault(self.codec.decode(directory), directory)
        self.entries[logical_path] = physical_path

        permissions.apply(perms.override(perm, uid, gid), physical_path)

        self.log.debug("Added %s", logical_path)
        return physical_path

    def remove(self, logical_path: str) -> None:
        """Remove the entry at ``logical_path`` and everything below it.

        Removing something that isn't there is not an error. Directories become empty when their last entry
        is removed, but stay in the staging area until they are removed explicitly. A path below a staged
        symlink or file is considered absent, the symlink is never followed.
        """
        self._check_open()

        logical_path = normalize(logical_path)
        physical_path = self.codec.encode(logical_path)

        if not self.codec.has_directory_parents(logical_path):
            self.log.debug("Nothing to remove at %s, a parent is not a directory", logical_path)
        elif physical_path.is_symlink() or physical_path.is_file():
            physical_path.unlink()
        elif physical_path.is_dir():
            shutil.rmtree(physical_path)
        elif os.path.lexists(physical_path):
            physical_path.unlink()
        else:
            self.log.debug("Nothing to remove at %s", logical_path)

        self.entries.pop(logical_path, None)

        prefix = logical_path + "/"
        for key in [key for key in self.entries if key.startswith(prefix)]:
            del self.entries[key]

    def locate(self, logical_path: str) -> Path:
        """Return the physical path of ``logical_path``.

        Raises:
            EntryNotFoundError: If there is no such entry.
        """
        try:
            return self.entries[normalize(logical_path)]
        except KeyError:
            raise EntryNotFoundError(f"No entry {logical_path!r} in staging area")

    def iter_entries(self, kinds: Iterable[EntryKind] | None = None) -> EntryIterator:
        """Return a new, independent iterator over the entries, optionally restricted to ``kinds``."""
        return EntryIterator(self, kinds)

    def list_reset(self) -> None:
        """Make the next :meth:`list_next` start at the first entry again."""
        self._iterator = None

    def list_next(self) -> Entry | None:
        """Return the next entry, or ``None`` once all entries were returned."""
        if self._iterator is None:
            self._iterator = self.iter_entries()
        return self._iterator.next()

    def list_all(self) -> list[Entry]:
        """Return all entries, in the same order as :meth:`list_next`, without touching its position."""
        return list(self.iter_entries())

    def write(self, archive: Path | str, compress: bool | str | Compression | None = False) -> Path:
        """Write the contents of the staging directory to ``archive``.

        The staging directory itself is listed, so changes made to it directly are written as well. Every
        directory is stored with its own header, parents before their children, so directory modes and
        ownership survive a round trip.

        Args:
            archive: The archive to create.
            compress: ``True`` for gzip, or a compression name, letter or
                      :class:`~dissect.tarstage.helpers.compression.Compression`.

        Raises:
            WriteError: If the archiver failed.
        """
        self._check_open()

        archive = Path(archive).absolute()
        method = compression.resolve(compress)

        paths = [self.codec.decode(path) for path, _ in _scan(self.root)]

        self.log.info("Writing %d paths to %s (%s compression)", len(paths), archive, method.name.lower())
        self.archiver.create(archive, self.root, paths, compression=method)
        return archive

    def ramdisk_mount(self, size: str = "100m", type: str = "tmpfs", tmpdir: Path | str | None = None) -> Path:
        """Mount a RAM disk owned by this staging area and return its mount point.

        It is unmounted by :meth:`ramdisk_unmount` or when the staging area is closed.
        """
        return self._ramdisk.mount(size=size, type=type, tmpdir=tmpdir)

    def ramdisk_unmount(self) -> None:
        """Unmount the RAM disk mounted by :meth:`ramdisk_mount`, if any."""
        self._ramdisk.unmount()


def _scan(directory: Path) -> Iterator[tuple[Path, bool]]:
    """Walk ``directory`` depth first in name order, yielding ``(path, is_dir)``. Symlinks are not followed."""
    with os.scandir(directory) as it:
        children = sorted(it, key=lambda entry: entry.name)

    for child in children:
        is_dir = child.is_dir(follow_symlinks=False)
        yield Path(child.path), is_dir
        if is_dir:
            yield from _scan(Path(child.path))


def _copy_stream(source: BinaryIO | TextIO, destination: Path, encoding: str) -> None:
    with destination.open("wb") as fh:
        while True:
            chunk = source.read(io.DEFAULT_BUFFER_SIZE)
            if not chunk:
                break
            if isinstance(chunk, str):
                chunk = chunk.encode(encoding)
            fh.write(chunk)


def _unmount_all(*ramdisks: RamDisk | None) -> None:
    errors = []
    for ramdisk in ramdisks:
        if ramdisk is None:
            continue

        try:
            ramdisk.unmount()
        except UnmountError as e:
            log.warning("Unable to unmount RAM disk on %s: %s", ramdisk.mount_point, e)
            errors.append(e)

    if errors:
        raise errors[0]


def _cleanup(workdir: Path, *ramdisks: RamDisk | None) -> None:
    shutil.rmtree(workdir, ignore_errors=True)
    _unmount_all(*ramdisks)

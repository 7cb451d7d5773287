from __future__ import annotations

import contextlib
import enum
import os
import shlex
import shutil
import subprocess
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING

from dissect.tarstage.exceptions import (
    ArchiverError,
    ConstructionError,
    ExtractionError,
    IntrospectionError,
    WriteError,
)
from dissect.tarstage.helpers.compression import Compression
from dissect.tarstage.helpers.config import DEFAULT_MAX_CMD_LINE_ARGS
from dissect.tarstage.helpers.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

log = get_logger(__name__)

DEFAULT_ARCHIVER = "tar"
VERSION_ARGUMENT = "--version"
# Directories are listed explicitly, tar must not add their contents a second time
NO_RECURSION_ARGUMENT = "--no-recursion"


class Dialect(enum.Enum):
    GNU = "gnu"
    BSD = "bsd"
    UNKNOWN = "unknown"


def find_archiver(tar: str | os.PathLike | None = None) -> str:
    """Resolve the archiver executable.

    An explicit path is used as-is when it points to an executable, anything else is looked up in ``PATH``.

    Raises:
        ConstructionError: If no usable executable was found.
    """
    tar = os.fspath(tar) if tar else DEFAULT_ARCHIVER

    if os.sep in tar:
        if os.path.isfile(tar) and os.access(tar, os.X_OK):
            return tar
        raise ConstructionError(f"Archiver {tar} does not exist or is not executable")

    resolved = shutil.which(tar)
    if resolved is None:
        raise ConstructionError(f"Archiver {tar!r} not found in PATH")

    return resolved


def parse_dialect(output: str) -> Dialect:
    """Determine the dialect from the output of a version query."""
    if "GNU tar" in output:
        return Dialect.GNU
    if "bsdtar" in output:
        return Dialect.BSD
    return Dialect.UNKNOWN


@lru_cache(maxsize=None)
def probe_dialect(tar: str) -> Dialect:
    """Ask ``tar`` for its version and determine the dialect. The result is cached per executable."""
    try:
        output = introspect(tar)
    except IntrospectionError as e:
        log.warning("Unable to determine the dialect of %s: %s", tar, e)
        return Dialect.UNKNOWN

    dialect = parse_dialect(output)
    log.debug("Archiver %s is %s", tar, dialect.name)
    return dialect


def introspect(tar: str, timeout: float | None = None) -> str:
    """Run the version query of ``tar`` and return everything it printed."""
    result = run([tar, VERSION_ARGUMENT], IntrospectionError, "Version query failed", timeout=timeout)
    return result.stdout + result.stderr


class Result:
    __slots__ = ("command", "returncode", "stderr", "stdout")

    def __init__(self, command: list[str], returncode: int, stdout: str, stderr: str):
        self.command = command
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def _decode(buf: bytes | str | None) -> str:
    if buf is None:
        return ""
    if isinstance(buf, str):
        return buf
    return buf.decode(errors="backslashreplace")


def run(
    command: list[str],
    error_cls: type[ArchiverError],
    message: str,
    cwd: Path | str | None = None,
    timeout: float | None = None,
) -> Result:
    """Run ``command`` to completion and capture its output.

    Raises:
        ArchiverError: Of type ``error_cls``, when the process could not be started, timed out or exited
                       with a non-zero status.
    """
    log.trace("Running %s (cwd=%s)", shlex.join(command), cwd)

    try:
        proc = subprocess.run(command, cwd=cwd, capture_output=True, timeout=timeout, check=False)
    except subprocess.TimeoutExpired as e:
        raise error_cls(
            f"{message}: timed out after {timeout} seconds",
            cause=e,
            command=command,
            stdout=_decode(e.stdout),
            stderr=_decode(e.stderr),
        )
    except OSError as e:
        raise error_cls(f"{message}: {e}", cause=e, command=command)

    result = Result(command, proc.returncode, _decode(proc.stdout), _decode(proc.stderr))

    if result.returncode != 0:
        raise error_cls(
            f"{message} (exit status {result.returncode})",
            command=command,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )

    if result.stderr:
        log.debug("%s wrote to stderr: %s", command[0], result.stderr.strip())

    return result


class ArchiverInvoker:
    """Build and run archiver command lines.

    Paths are handed to the archiver as arguments, unless there are more than ``max_cmd_line_args`` of them.
    In that case they are written to a file list which the archiver reads with ``-T`` (files-from mode), so
    huge archives don't run into the command line length limit of the OS.

    Args:
        tar: The archiver executable.
        read_options: Letters added to the extraction mode flags.
        write_options: Letters added to the creation mode flags.
        gnu_read_options: Long options for extraction, only used with a GNU archiver.
        gnu_write_options: Long options for creation, only used with a GNU archiver.
        max_cmd_line_args: Maximum number of paths passed as arguments.
        timeout: Timeout in seconds for every invocation.
        workdir: Directory for temporary file lists, which must not be inside the directory being archived.
    """

    def __init__(
        self,
        tar: str,
        read_options: str = "",
        write_options: str = "",
        gnu_read_options: Sequence[str] = (),
        gnu_write_options: Sequence[str] = (),
        max_cmd_line_args: int = DEFAULT_MAX_CMD_LINE_ARGS,
        timeout: float | None = None,
        workdir: Path | str | None = None,
    ):
        self.tar = tar
        self.read_options = read_options
        self.write_options = write_options
        self.gnu_read_options = list(gnu_read_options)
        self.gnu_write_options = list(gnu_write_options)
        self.max_cmd_line_args = max_cmd_line_args
        self.timeout = timeout
        self.workdir = workdir

        self._dialect = None

    def __repr__(self) -> str:
        return f"<ArchiverInvoker tar={self.tar!r}>"

    @property
    def dialect(self) -> Dialect:
        if self._dialect is None:
            self._dialect = probe_dialect(self.tar)
        return self._dialect

    def is_gnu(self) -> bool:
        return self.dialect is Dialect.GNU

    def is_bsd(self) -> bool:
        return self.dialect is Dialect.BSD

    def introspect(self) -> str:
        """Return the version information of the archiver."""
        return introspect(self.tar, timeout=self.timeout)

    def use_file_list(self, paths: Sequence[str]) -> bool:
        return len(paths) > self.max_cmd_line_args

    @contextlib.contextmanager
    def file_list(self, paths: Sequence[str]) -> Iterator[Path]:
        """Write ``paths`` to a NUL separated file list, removed again on exit."""
        fd, name = tempfile.mkstemp(prefix="filelist-", dir=self.workdir)
        try:
            with os.fdopen(fd, "wb") as fh:
                for path in paths:
                    fh.write(os.fsencode(path))
                    fh.write(b"\x00")
            yield Path(name)
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(name)

    def _path_arguments(self, paths: Sequence[str], file_list: Path | None) -> list[str]:
        if file_list is not None:
            return ["--null", "-T", str(file_list)]
        return list(paths)

    def extract_command(
        self,
        archive: Path | str,
        destination: Path | str,
        files: Sequence[str] = (),
        compression: Compression = Compression.NONE,
        file_list: Path | None = None,
    ) -> list[str]:
        command = [self.tar, f"x{compression.flag}{self.read_options}"]
        if self.gnu_read_options and self.is_gnu():
            command.extend(self.gnu_read_options)
        command.extend(["-f", str(archive), "-C", str(destination)])
        command.extend(self._path_arguments(files, file_list))
        return command

    def create_command(
        self,
        archive: Path | str,
        paths: Sequence[str] = (),
        compression: Compression = Compression.NONE,
        file_list: Path | None = None,
    ) -> list[str]:
        command = [self.tar, f"c{compression.flag}v{self.write_options}"]
        if self.gnu_write_options and self.is_gnu():
            command.extend(self.gnu_write_options)
        command.extend(["-f", str(archive), NO_RECURSION_ARGUMENT])
        command.extend(self._path_arguments(paths, file_list))
        return command

    def extract(
        self,
        archive: Path | str,
        destination: Path | str,
        files: Sequence[str] = (),
        compression: Compression = Compression.NONE,
    ) -> Result:
        """Extract ``archive`` into ``destination``, optionally only the given member names.

        Member names are passed on verbatim, so they have to match the names inside the archive exactly.
        """
        files = list(files)
        message = f"Extracting {archive} failed"

        if self.use_file_list(files):
            log.debug("Extracting %d selected members from %s using a file list", len(files), archive)
            with self.file_list(files) as file_list:
                command = self.extract_command(archive, destination, compression=compression, file_list=file_list)
                return run(command, ExtractionError, message, timeout=self.timeout)

        command = self.extract_command(archive, destination, files, compression=compression)
        return run(command, ExtractionError, message, timeout=self.timeout)

    def create(
        self,
        archive: Path | str,
        root: Path | str,
        paths: Sequence[str],
        compression: Compression = Compression.NONE,
    ) -> Result:
        """Create ``archive`` from ``paths``, which are relative to ``root``.

        The archiver runs inside ``root`` so the member names are the relative paths. Recursion is disabled:
        a directory in ``paths`` is stored as its own member and its contents have to be listed separately.
        An empty set of paths always goes through an (empty) file list, since some archivers refuse to create
        an empty archive otherwise.
        """
        archive = Path(archive).absolute()
        paths = [_safe_name(path) for path in paths]
        message = f"Creating {archive} failed"

        if not paths or self.use_file_list(paths):
            log.debug("Adding %d paths to %s using a file list", len(paths), archive)
            with self.file_list(paths) as file_list:
                command = self.create_command(archive, compression=compression, file_list=file_list)
                result = run(command, WriteError, message, cwd=root, timeout=self.timeout)
        else:
            command = self.create_command(archive, paths, compression=compression)
            result = run(command, WriteError, message, cwd=root, timeout=self.timeout)

        for line in (result.stdout + result.stderr).splitlines():
            log.trace("%s: %s", archive.name, line)

        return result


def _safe_name(path: str) -> str:
    # A leading dash would be taken for an option
    if path.startswith("-"):
        return f"./{path}"
    return path

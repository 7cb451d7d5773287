from __future__ import annotations

import traceback


class Error(Exception):
    """Generic dissect.tarstage error"""

    def __init__(self, message=None, cause=None, extra=None):
        if extra:
            exceptions = "\n\n".join(["".join(traceback.format_exception_only(type(e), e)) for e in extra])
            message = f"{message}\n\nAdditionally, the following exceptions occurred:\n\n{exceptions}"

        super().__init__(message)
        self.__cause__ = cause
        self.__extra__ = extra


class ConstructionError(Error):
    """The staging area could not be set up, e.g. the archiver executable is missing."""


class ArchiverError(Error):
    """The external archiver exited with an error.

    The command line and everything the process wrote are kept on the exception.
    """

    def __init__(
        self,
        message=None,
        cause=None,
        extra=None,
        command: list[str] | None = None,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        if stderr:
            message = f"{message}: {stderr.strip()}"

        super().__init__(message, cause=cause, extra=extra)
        self.command = command or []
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class ExtractionError(ArchiverError):
    """Extracting an archive into the staging area failed."""


class WriteError(ArchiverError):
    """Packaging the staging area into an archive failed."""


class IntrospectionError(ArchiverError):
    """Querying the archiver itself failed."""


class StagingError(Error):
    """A staging area error occurred."""


class EntryNotFoundError(StagingError, FileNotFoundError):
    """The requested logical path is not part of the staging area."""


class InvalidPathError(StagingError, ValueError):
    """The logical path can not be mapped into the staging area."""


class PermissionApplyError(StagingError, PermissionError):
    """The file mode could not be applied to a staged entry."""


class RamDiskError(Error):
    """A RAM disk error occurred."""

    def __init__(
        self,
        message=None,
        cause=None,
        extra=None,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ):
        if stderr:
            message = f"{message}: {stderr.strip()}"

        super().__init__(message, cause=cause, extra=extra)
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr


class MountError(RamDiskError):
    """Mounting the RAM disk failed."""


class UnmountError(RamDiskError):
    """Unmounting the RAM disk failed."""

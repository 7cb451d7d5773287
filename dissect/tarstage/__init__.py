from dissect.tarstage.entry import (
    DirEntry,
    Entry,
    EntryIterator,
    EntryKind,
    FileEntry,
    SymlinkEntry,
)
from dissect.tarstage.exceptions import (
    ArchiverError,
    ConstructionError,
    EntryNotFoundError,
    Error,
    ExtractionError,
    InvalidPathError,
    MountError,
    PermissionApplyError,
    UnmountError,
    WriteError,
)
from dissect.tarstage.helpers.compression import Compression
from dissect.tarstage.helpers.config import RamDiskOptions, StagingConfig, load_config
from dissect.tarstage.ramdisk import RamDisk
from dissect.tarstage.staging import StagingArea

__all__ = [
    "ArchiverError",
    "Compression",
    "ConstructionError",
    "DirEntry",
    "Entry",
    "EntryIterator",
    "EntryKind",
    "EntryNotFoundError",
    "Error",
    "ExtractionError",
    "FileEntry",
    "InvalidPathError",
    "MountError",
    "PermissionApplyError",
    "RamDisk",
    "RamDiskOptions",
    "StagingArea",
    "StagingConfig",
    "SymlinkEntry",
    "UnmountError",
    "WriteError",
    "load_config",
]

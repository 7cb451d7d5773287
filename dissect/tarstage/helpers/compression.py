"""Compression autodetection for archives handed to the archiver."""

from __future__ import annotations

import enum
import logging
from pathlib import Path
from typing import BinaryIO

from dissect.cstruct import cstruct

log = logging.getLogger(__name__)

tar_def = """
#define BLOCKSIZE   512
#define CHKSUM_OFF  148
#define CHKSUM_SIZE 8

struct posix_header {
    char name[100];
    char mode[8];
    char uid[8];
    char gid[8];
    char size[12];
    char mtime[12];
    char chksum[8];
    char typeflag;
    char linkname[100];
    char magic[6];
    char version[2];
    char uname[32];
    char gname[32];
    char devmajor[8];
    char devminor[8];
    char prefix[155];
    char padding[12];
};
"""

c_tar = cstruct().load(tar_def)

USTAR_MAGICS = (
    # POSIX
    b"ustar\x00",
    # GNU
    b"ustar ",
)


class Compression(enum.Enum):
    """Compression of an archive, valued by the archiver flag that handles it."""

    GZIP = "z"
    BZIP2 = "j"
    XZ = "J"
    NONE = ""

    @property
    def flag(self) -> str:
        return self.value


COMPRESSION_NAMES = {
    "gzip": Compression.GZIP,
    "gz": Compression.GZIP,
    "bzip2": Compression.BZIP2,
    "bz2": Compression.BZIP2,
    "xz": Compression.XZ,
    "none": Compression.NONE,
}

# Longest suffixes first, ``.tar`` must not shadow ``.tar.gz`` and friends
EXTENSIONS = (
    (".tar.gz", Compression.GZIP),
    (".tgz", Compression.GZIP),
    (".tar.bz2", Compression.BZIP2),
    (".tar.bz", Compression.BZIP2),
    (".tbz2", Compression.BZIP2),
    (".tbz", Compression.BZIP2),
    (".tar.xz", Compression.XZ),
    (".txz", Compression.XZ),
    (".tar", Compression.NONE),
)

MAGIC_SIZE = 6


def from_extension(path: Path | str) -> Compression | None:
    """Match the file name of ``path`` against the extension table. Returns ``None`` if nothing matched."""
    name = Path(path).name.lower()
    for extension, compression in EXTENSIONS:
        if name.endswith(extension):
            return compression
    return None


def from_magic(magic: bytes) -> Compression:
    """Match the first bytes of a file against the known compression magics."""
    if magic[:2] == b"\x1f\x8b":
        return Compression.GZIP

    # In a valid bz2 header the 4th byte is in the range b'1' ... b'9'.
    if magic[:3] == b"BZh" and len(magic) >= 4 and 0x31 <= magic[3] <= 0x39:
        return Compression.BZIP2

    if magic[:6] == b"\xfd7zXZ\x00":
        return Compression.XZ

    return Compression.NONE


def detect(path: Path | str) -> Compression:
    """Determine the compression of the archive at ``path``.

    The file name is looked at first, so a file named ``a.tgz`` is gzip without reading it. Only when the
    extension is unknown, the magic bytes are inspected. Anything unrecognized is considered uncompressed.
    """
    compression = from_extension(path)
    if compression is not None:
        log.debug("Detected %s compression for %s by extension", compression.name, path)
        return compression

    with open(path, "rb") as fh:
        compression = from_magic(fh.read(MAGIC_SIZE))

    log.debug("Detected %s compression for %s by magic", compression.name, path)
    return compression


def resolve(compress: bool | str | Compression | None) -> Compression:
    """Turn the ``compress`` argument of a write into a :class:`Compression`.

    ``True`` means gzip, ``False`` or ``None`` means no compression. Strings can be a compression name
    (``gzip``, ``bzip2``, ``xz``) or the archiver letter (``z``, ``j``, ``J``).
    """
    if isinstance(compress, Compression):
        return compress

    if compress is None or compress is False:
        return Compression.NONE

    if compress is True:
        return Compression.GZIP

    if isinstance(compress, str):
        if compress in COMPRESSION_NAMES:
            return COMPRESSION_NAMES[compress]

        try:
            return Compression(compress)
        except ValueError:
            pass

    raise ValueError(f"Unknown compression: {compress!r}")


def _header_checksums(buf: bytes) -> tuple[int, int]:
    header = bytearray(buf[: c_tar.BLOCKSIZE])
    header[c_tar.CHKSUM_OFF : c_tar.CHKSUM_OFF + c_tar.CHKSUM_SIZE] = b" " * c_tar.CHKSUM_SIZE

    unsigned = sum(header)
    signed = sum(b - 256 if b > 127 else b for b in header)
    return unsigned, signed


def is_tar_header(fh: BinaryIO) -> bool:
    """Check whether ``fh`` starts with a tar header, by ustar magic or by a valid header checksum."""
    buf = fh.read(c_tar.BLOCKSIZE)
    if len(buf) < c_tar.BLOCKSIZE:
        return False

    header = c_tar.posix_header(buf)
    if header.magic in USTAR_MAGICS:
        return True

    # Old V7 archives don't have a magic, but the checksum is there
    chksum = header.chksum.split(b"\x00", 1)[0].strip()
    try:
        expected = int(chksum, 8)
    except ValueError:
        return False

    return expected in _header_checksums(buf)


def is_tar(path: Path | str) -> bool:
    """Check whether ``path`` is an uncompressed tar archive."""
    path = Path(path)
    if not path.is_file():
        return False

    with path.open("rb") as fh:
        return is_tar_header(fh)

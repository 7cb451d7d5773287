from __future__ import annotations

import io
import tarfile
from pathlib import Path


def mkdirs(root: Path, paths: list[str]) -> None:
    for path in paths:
        root.joinpath(path).mkdir(parents=True)


def make_tar(path: Path, files: dict[str, bytes], mode: str = "w") -> Path:
    """Create an archive at ``path`` with ``tarfile``, names ending in ``/`` become directories."""
    with tarfile.open(path, mode) as tar:
        for name, content in files.items():
            info = tarfile.TarInfo(name.rstrip("/"))
            if name.endswith("/"):
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
            else:
                info.size = len(content)
                info.mode = 0o644
                tar.addfile(info, io.BytesIO(content))
    return path


def tar_members(path: Path) -> dict[str, bytes | None]:
    """Read back an archive as ``{name: content}``, directories and links map to ``None``."""
    result = {}
    with tarfile.open(path, "r:*") as tar:
        for member in tar.getmembers():
            name = member.name.rstrip("/")
            if name.startswith("./"):
                name = name[2:]
            result[name] = tar.extractfile(member).read() if member.isfile() else None
    return result

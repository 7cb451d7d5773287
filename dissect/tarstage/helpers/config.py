from __future__ import annotations

import ast
import logging
import shlex
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from dissect.tarstage.helpers.utils import parse_options_string, to_list

log = logging.getLogger(__name__)

CONFIG_NAME = ".tarstagecfg.py"

DEFAULT_MAX_CMD_LINE_ARGS = 512


@dataclass
class RamDiskOptions:
    size: str = "100m"
    type: str = "tmpfs"
    tmpdir: str | None = None

    @classmethod
    def parse(cls, value: RamDiskOptions | dict[str, Any] | str | None) -> RamDiskOptions | None:
        """Accept options as an instance, a mapping or a ``size=100m,type=tmpfs`` string."""
        if value is None or isinstance(value, RamDiskOptions):
            return value

        if isinstance(value, str):
            value = {key: val for key, val in parse_options_string(value).items() if val is not True}

        unknown = set(value) - {f.name for f in fields(cls)}
        if unknown:
            raise ValueError(f"Unknown RAM disk option(s): {', '.join(sorted(unknown))}")

        return cls(**value)


@dataclass
class StagingConfig:
    """Settings of a :class:`~dissect.tarstage.staging.StagingArea`.

    Attributes:
        tar: Path or name of the archiver executable, looked up in ``PATH`` when not absolute.
        tmpdir: Directory in which the private staging directory is created.
        tar_read_options: Letters added to the mode flags on extraction, e.g. ``p``.
        tar_write_options: Letters added to the mode flags on creation.
        tar_gnu_read_options: Long options passed on extraction, only with a GNU archiver.
        tar_gnu_write_options: Long options passed on creation, only with a GNU archiver.
        max_cmd_line_args: Above this number of paths, a file list is handed to the archiver instead.
        dirs: Whether directories are part of the entry map and listings.
        ramdisk: Stage on a freshly mounted RAM disk with these options.
        timeout: Seconds after which an archiver invocation is aborted, ``None`` waits forever.
    """

    tar: str | None = None
    tmpdir: str | None = None
    tar_read_options: str = ""
    tar_write_options: str = ""
    tar_gnu_read_options: list[str] = field(default_factory=list)
    tar_gnu_write_options: list[str] = field(default_factory=list)
    max_cmd_line_args: int = DEFAULT_MAX_CMD_LINE_ARGS
    dirs: bool = False
    ramdisk: RamDiskOptions | None = None
    timeout: float | None = None

    def __post_init__(self) -> None:
        self.tar_gnu_read_options = _split_options(self.tar_gnu_read_options)
        self.tar_gnu_write_options = _split_options(self.tar_gnu_write_options)
        self.ramdisk = RamDiskOptions.parse(self.ramdisk)

        if self.max_cmd_line_args < 0:
            raise ValueError(f"max_cmd_line_args must not be negative, got {self.max_cmd_line_args}")

    def merge(self, **overrides) -> StagingConfig:
        """Return a copy with the given overrides applied. ``None`` values are ignored."""
        return replace(self, **{key: value for key, value in overrides.items() if value is not None})

    @classmethod
    def from_module(cls, config: dict[str, Any]) -> StagingConfig:
        """Build a config from upper case constants, e.g. ``TAR`` or ``MAX_CMD_LINE_ARGS``."""
        known = {f.name for f in fields(cls)}
        kwargs = {}

        for key, value in config.items():
            name = key.lower()
            if name not in known:
                log.debug("Skipping unknown config value %s", key)
                continue
            kwargs[name] = value

        return cls(**kwargs)


def _split_options(options: list[str] | str | None) -> list[str]:
    if isinstance(options, str):
        return shlex.split(options)
    return list(to_list(options))


def load_config(paths: list[Path | str] | Path | str | None) -> StagingConfig:
    """Load the staging config from a config file in the provided path(s) or their parents.

    Without a config file, the defaults are returned.
    """

    if isinstance(paths, (Path, str)):
        paths = [paths]

    config_file = _find_config_file(paths)
    if not config_file:
        return StagingConfig()

    log.debug("Using config file %s", config_file)
    return StagingConfig.from_module(_parse_ast(config_file.read_bytes()))


def _parse_ast(code: bytes) -> dict[str, str | int | float | bool | None]:
    # Only allow basic value assignments, the file is never executed
    obj = {}

    module = ast.parse(code)
    if not isinstance(module, ast.Module):
        log.debug("Config did not parse to a module AST -- skipping")
        return obj

    for statement in module.body:
        if (
            not isinstance(statement, ast.Assign)
            or len(statement.targets) != 1
            or not isinstance(statement.value, ast.Constant)
        ):
            log.debug("Skipping non-constant assignment")
            continue

        target = statement.targets[0]
        if not isinstance(target, ast.Name) or not isinstance(target.ctx, ast.Store):
            log.debug("Skipping non-name assignment store")
            continue

        obj[target.id] = statement.value.value

    return obj


def _find_config_file(paths: list[Path | str] | None) -> Path | None:
    """Find a config file anywhere in the given path(s) and return it.

    This algorithm allows parts of the path to not exist or the last part to be a filename.
    It also does not look in the root directory ('/') for config files.
    """

    if not paths:
        return None

    config_file = None

    for path in paths:
        if not path:
            continue

        path = Path(path)
        cur_path = path.absolute()

        # Look for a config file in provided path or in parent directories until found.
        while not config_file and cur_path.name != "":
            cur_config = cur_path.joinpath(CONFIG_NAME)
            if cur_config.is_file():
                config_file = cur_config
            cur_path = cur_path.parent

        if config_file:
            break

    return config_file

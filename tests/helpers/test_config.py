from __future__ import annotations

from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from dissect.tarstage.helpers import config
from dissect.tarstage.helpers.config import RamDiskOptions, StagingConfig


def test_load_config() -> None:
    # FS layout:
    #
    # temp_dir1
    #   config_file
    #   symlink_dir2 -> ../temp_dir2
    # temp_dir2

    with TemporaryDirectory() as temp_dir1, TemporaryDirectory() as temp_dir2:
        # create symlink in temp_dir1 pointing to temp_dir2
        symlink = Path(temp_dir1).joinpath("symlink")
        symlink.symlink_to(temp_dir2)

        config_file = Path(temp_dir1).joinpath(config.CONFIG_NAME)
        config_file.write_text('TAR = "/opt/bin/gtar"\nMAX_CMD_LINE_ARGS = 64\n')

        result = config.load_config(symlink.joinpath("archive.tar"))
        assert result.tar == "/opt/bin/gtar"
        assert result.max_cmd_line_args == 64


def test_load_config_missing(tmp_path: Path) -> None:
    assert config.load_config(tmp_path.joinpath("archive.tar")) == StagingConfig()
    assert config.load_config(None) == StagingConfig()


def test_load_config_values(tmp_path: Path) -> None:
    tmp_path.joinpath(config.CONFIG_NAME).write_text(
        "\n".join(
            [
                "import os",
                'TAR_READ_OPTIONS = "p"',
                'TAR_GNU_WRITE_OPTIONS = "--owner=0 --group=0 --numeric-owner"',
                "DIRS = True",
                'RAMDISK = "size=10m,type=ramfs"',
                "TIMEOUT = 2.5",
                "TMPDIR = os.getcwd()",
                "UNKNOWN = 1",
            ]
        )
    )

    result = config.load_config([tmp_path.joinpath("some", "archive.tar")])
    assert result.tar_read_options == "p"
    assert result.tar_gnu_write_options == ["--owner=0", "--group=0", "--numeric-owner"]
    assert result.dirs is True
    assert result.ramdisk == RamDiskOptions(size="10m", type="ramfs")
    assert result.timeout == 2.5
    # Only constant assignments are used
    assert result.tmpdir is None


def test_staging_config_merge() -> None:
    base = StagingConfig(tar="gtar", dirs=True)

    merged = base.merge(tar=None, dirs=False, max_cmd_line_args=10, tar_gnu_read_options="--no-same-owner")
    assert merged.tar == "gtar"
    assert merged.dirs is False
    assert merged.max_cmd_line_args == 10
    assert merged.tar_gnu_read_options == ["--no-same-owner"]

    # The base config is left alone
    assert base.max_cmd_line_args == config.DEFAULT_MAX_CMD_LINE_ARGS

    with pytest.raises(TypeError):
        base.merge(unknown=True)


def test_staging_config_invalid() -> None:
    with pytest.raises(ValueError, match="must not be negative"):
        StagingConfig(max_cmd_line_args=-1)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, None),
        ("size=1g", RamDiskOptions(size="1g")),
        ("size=1g,type=ramfs,tmpdir=/mnt/stage", RamDiskOptions(size="1g", type="ramfs", tmpdir="/mnt/stage")),
        ({"size": "20m"}, RamDiskOptions(size="20m")),
        (RamDiskOptions(type="ramfs"), RamDiskOptions(type="ramfs")),
    ],
)
def test_ramdisk_options_parse(value: str | dict | RamDiskOptions | None, expected: RamDiskOptions | None) -> None:
    assert RamDiskOptions.parse(value) == expected


def test_ramdisk_options_unknown() -> None:
    with pytest.raises(ValueError, match="Unknown RAM disk option"):
        RamDiskOptions.parse("size=1g,mode=0700")

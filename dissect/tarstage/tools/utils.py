from __future__ import annotations

import argparse
import errno
import os
import sys
from functools import wraps
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from flow.record import RecordPrinter, RecordStreamWriter, RecordWriter

from dissect.tarstage.helpers.config import StagingConfig, load_config
from dissect.tarstage.tools.logging import configure_logging

if TYPE_CHECKING:
    from flow.record.adapter import AbstractWriter


def configure_generic_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--tar", help="archiver executable to use (default: tar from PATH)")
    parser.add_argument("--tmpdir", type=Path, help="directory to create the staging directory in")
    parser.add_argument("--max-cmd-line-args", type=int, help="use a file list above this many paths")
    parser.add_argument("--ramdisk", help="stage on a RAM disk, e.g. size=100m,type=tmpfs")
    parser.add_argument("--timeout", type=float, help="abort archiver invocations after this many seconds")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="increase output verbosity")
    parser.add_argument("--version", action="store_true", help="print version")
    parser.add_argument("-q", "--quiet", action="store_true", help="do not output logging information")


def process_generic_arguments(args: argparse.Namespace) -> None:
    configure_logging(args.verbose, args.quiet, as_plain_text=True)

    if args.version:
        try:
            print("dissect.tarstage version " + version("dissect.tarstage"))
        except PackageNotFoundError:
            print("unable to determine version")
        sys.exit(0)


def config_from_arguments(args: argparse.Namespace, paths: list[Path | str]) -> StagingConfig:
    """Load the config file closest to ``paths`` and apply the command line overrides."""
    config = load_config(paths)
    return config.merge(
        tar=args.tar,
        tmpdir=str(args.tmpdir) if args.tmpdir else None,
        max_cmd_line_args=args.max_cmd_line_args,
        ramdisk=args.ramdisk,
        timeout=args.timeout,
    )


def record_output(strings: bool = False, json: bool = False) -> AbstractWriter:
    if json:
        return RecordWriter("jsonfile://-")

    fp = sys.stdout.buffer

    if strings or fp.isatty():
        return RecordPrinter(fp)

    return RecordStreamWriter(fp)


def catch_sigpipe(func: Callable) -> Callable:
    """Catches ``KeyboardInterrupt`` and ``BrokenPipeError`` (``OSError 22`` on Windows)."""

    @wraps(func)
    def wrapper(*args, **kwargs) -> int:
        try:
            return func(*args, **kwargs)
        except KeyboardInterrupt:
            print("Aborted!", file=sys.stderr)
            return 1
        except OSError as e:
            # Only catch BrokenPipeError or OSError 22
            if e.errno in (errno.EPIPE, errno.EINVAL):
                devnull = os.open(os.devnull, os.O_WRONLY)
                os.dup2(devnull, sys.stdout.fileno())
                return 1
            # Raise other exceptions
            raise

    return wrapper

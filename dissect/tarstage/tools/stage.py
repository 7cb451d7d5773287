#!/usr/bin/env python
from __future__ import annotations

import argparse
import logging
import os
import pathlib
import shutil
import sys
from typing import TYPE_CHECKING

from dissect.util.ts import from_unix
from flow.record import RecordDescriptor

from dissect.tarstage.exceptions import Error
from dissect.tarstage.helpers import compression
from dissect.tarstage.staging import StagingArea
from dissect.tarstage.tools.utils import (
    catch_sigpipe,
    config_from_arguments,
    configure_generic_arguments,
    process_generic_arguments,
    record_output,
)

if TYPE_CHECKING:
    from flow.record import Record

    from dissect.tarstage.entry import Entry
    from dissect.tarstage.helpers.config import StagingConfig

log = logging.getLogger(__name__)
logging.lastResort = None
logging.raiseExceptions = False

EntryRecord = RecordDescriptor(
    "tarstage/entry",
    [
        ("string", "path"),
        ("string", "kind"),
        ("filesize", "size"),
        ("uint32", "mode"),
        ("uint32", "uid"),
        ("uint32", "gid"),
        ("datetime", "mtime"),
        ("string", "link"),
        ("path", "physical_path"),
    ],
)


def entry_record(entry: Entry) -> Record:
    st = entry.physical_path.lstat()
    return EntryRecord(
        path=entry.logical_path,
        kind=entry.kind.name.lower(),
        size=st.st_size,
        mode=st.st_mode,
        uid=st.st_uid,
        gid=st.st_gid,
        mtime=from_unix(st.st_mtime),
        link=os.readlink(entry.physical_path) if entry.is_symlink() else None,
        physical_path=entry.physical_path,
    )


def ls(config: StagingConfig, args: argparse.Namespace) -> int:
    with StagingArea(config, dirs=args.dirs or None) as staging:
        staging.read(args.archive, *args.paths)

        rs = record_output(args.strings, args.json)
        for entry in staging.list_all():
            rs.write(entry_record(entry))
        rs.flush()

    return 0


def cat(config: StagingConfig, args: argparse.Namespace) -> int:
    with StagingArea(config) as staging:
        staging.read(args.archive)
        path = staging.locate(args.path)

        if not path.is_file():
            print(f"[!] Not a file: {args.path}", file=sys.stderr)
            return 1

        stdout = sys.stdout
        if hasattr(stdout, "buffer"):
            stdout = stdout.buffer

        with path.open("rb") as fh:
            shutil.copyfileobj(fh, stdout)

    return 0


def info(config: StagingConfig, args: argparse.Namespace) -> int:
    detected = compression.detect(args.archive)

    with StagingArea(config) as staging:
        dialect = staging.archiver.dialect

    print(f"Archive:     {args.archive}")
    print(f"Compression: {detected.name.lower()}")
    if detected is compression.Compression.NONE:
        print(f"Tar header:  {'yes' if compression.is_tar(args.archive) else 'no'}")
    print(f"Archiver:    {staging.tar} ({dialect.name})")
    return 0


def edit(config: StagingConfig, args: argparse.Namespace) -> int:
    if args.gzip:
        method = compression.Compression.GZIP
    elif args.compression:
        method = compression.resolve(args.compression)
    else:
        method = compression.from_extension(args.output) or compression.Compression.NONE

    additions = []
    for value in args.add:
        logical_path, sep, source = value.partition("=")
        if not sep or not logical_path or not source:
            print(f"[!] Invalid --add value, expected LOGICAL=SOURCE: {value}", file=sys.stderr)
            return 1

        source = pathlib.Path(source)
        if not source.is_file():
            print(f"[!] Source doesn't exist or is not a file: {source}", file=sys.stderr)
            return 1
        additions.append((logical_path, source))

    with StagingArea(config, dirs=args.dirs or None) as staging:
        staging.read(args.archive)

        for logical_path in args.remove:
            print(f"- {logical_path}")
            staging.remove(logical_path)

        for logical_path, source in additions:
            print(f"+ {logical_path} <- {source}")
            staging.add(logical_path, source)

        staging.write(args.output, compress=method)

    return 0


@catch_sigpipe
def main() -> int:
    help_formatter = argparse.ArgumentDefaultsHelpFormatter
    parser = argparse.ArgumentParser(
        description="dissect.tarstage",
        fromfile_prefix_chars="@",
        formatter_class=help_formatter,
    )

    baseparser = argparse.ArgumentParser(add_help=False)
    baseparser.add_argument("archive", type=pathlib.Path, help="archive to stage", metavar="ARCHIVE")

    subparsers = parser.add_subparsers(dest="subcommand", help="subcommands for performing various actions")

    parser_ls = subparsers.add_parser("ls", help="list the entries of an archive", parents=[baseparser])
    parser_ls.add_argument("paths", nargs="*", help="only extract these member names", metavar="PATH")
    parser_ls.add_argument("-d", "--dirs", action="store_true", help="include directories")
    parser_ls.add_argument("-s", "--strings", action="store_true", help="print records as strings")
    parser_ls.add_argument("-j", "--json", action="store_true", help="output records as JSON lines")
    parser_ls.set_defaults(handler=ls)

    parser_cat = subparsers.add_parser("cat", help="dump the contents of an entry", parents=[baseparser])
    parser_cat.add_argument("path", help="logical path of the entry", metavar="PATH")
    parser_cat.set_defaults(handler=cat)

    parser_info = subparsers.add_parser("info", help="show compression and archiver details", parents=[baseparser])
    parser_info.set_defaults(handler=info)

    parser_edit = subparsers.add_parser(
        "edit",
        help="add and remove entries, and write the result to --output",
        parents=[baseparser],
    )
    parser_edit.add_argument("-o", "--output", type=pathlib.Path, required=True, help="archive to write")
    parser_edit.add_argument(
        "-a", "--add", action="append", default=[], help="stage file SOURCE as LOGICAL", metavar="LOGICAL=SOURCE"
    )
    parser_edit.add_argument("-r", "--remove", action="append", default=[], help="remove an entry", metavar="LOGICAL")
    parser_edit.add_argument("-d", "--dirs", action="store_true", help="keep track of directories")
    parser_edit.add_argument("-z", "--gzip", action="store_true", help="gzip the output archive")
    parser_edit.add_argument(
        "-c",
        "--compression",
        choices=["gzip", "bzip2", "xz", "none"],
        help="compression of the output archive (default: based on the extension)",
    )
    parser_edit.set_defaults(handler=edit)

    configure_generic_arguments(parser)

    args = parser.parse_args()
    process_generic_arguments(args)

    if args.subcommand is None:
        parser.error("No subcommand specified")

    if not args.archive.is_file():
        print(f"[!] Archive doesn't exist: {args.archive}", file=sys.stderr)
        return 1

    try:
        config = config_from_arguments(args, [args.archive])
        return args.handler(config, args)
    except (Error, ValueError) as e:
        log.error(e)  # noqa: TRY400
        log.debug("", exc_info=e)
        return 1


if __name__ == "__main__":
    sys.exit(main())

"""
Command-line front end.

    launch-measure --libkrunfw /usr/lib64/libkrunfw-sev.so
    launch-measure --firmware qboot.bin --kernel vmlinux --kernel-addr 0x1000000 \\
        --initrd initrd.img --expected <hex>
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from . import config
from .measurement import (
    DEFAULT_PROFILE,
    MeasurementError,
    MeasurementMismatchError,
    TemplateStore,
    get_profile,
    list_profiles,
    measure,
)
from .measurement.report import read_report_measurement
from .provider import BlobSource, FileBlobSource, KrunfwBlobSource, fetch_blob

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_MISMATCH = 2


def _int_arg(value: str) -> int:
    try:
        return int(value, 0)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}")


def _local_path(value: str) -> str:
    """Download URLs into the cache; plain paths are returned as-is."""
    if value.startswith(("http://", "https://")):
        return fetch_blob(value, config.cache_dir())
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="launch-measure",
        description="Compute the expected SEV-SNP launch measurement of a libkrun guest",
    )
    parser.add_argument("--profile", default=DEFAULT_PROFILE,
                        help=f"Profile name or path (default: {DEFAULT_PROFILE})")

    source = parser.add_argument_group("firmware images")
    source.add_argument("--libkrunfw", metavar="PATH",
                        help="Read qboot, kernel and initrd from a libkrunfw-sev library")
    source.add_argument("--firmware", help="Boot firmware image (path or URL)")
    source.add_argument("--kernel", help="Kernel image (path or URL)")
    source.add_argument("--kernel-addr", type=_int_arg, help="Kernel guest load address")
    source.add_argument("--initrd", help="Initial ramdisk image (path or URL)")

    parser.add_argument("--template-dir", default=None,
                        help="Directory of <id>.bin CPU-state templates")
    parser.add_argument("--profile-dir", default=None,
                        help="Directory of <name>.yml measurement profiles")
    parser.add_argument("--workers", type=int, default=None,
                        help="Threads used to hash content pages")

    check = parser.add_mutually_exclusive_group()
    check.add_argument("--expected", help="Expected measurement (hex)")
    check.add_argument("--report", help="Raw SEV-SNP attestation report to compare against")

    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("--list-profiles", action="store_true", help="List available profiles and exit")
    parser.add_argument("--list-templates", action="store_true", help="List CPU-state templates and exit")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Log progress (-vv for every region)")
    return parser


def _blob_source(parser: argparse.ArgumentParser, args: argparse.Namespace) -> BlobSource:
    file_args = (args.firmware, args.kernel, args.kernel_addr, args.initrd)

    if args.libkrunfw:
        if any(a is not None for a in file_args):
            parser.error("--libkrunfw cannot be combined with --firmware/--kernel/--kernel-addr/--initrd")
        return KrunfwBlobSource(args.libkrunfw)

    if any(a is None for a in file_args):
        parser.error("either --libkrunfw or all of --firmware, --kernel, --kernel-addr and --initrd are required")

    return FileBlobSource(
        firmware_path=_local_path(args.firmware),
        kernel_path=_local_path(args.kernel),
        kernel_load_address=args.kernel_addr,
        initrd_path=_local_path(args.initrd),
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(format='%(message)s', level=level)

    profile_dir = args.profile_dir or config.profile_dir()
    templates = TemplateStore(args.template_dir or config.template_dir())

    if args.list_profiles:
        for name in list_profiles(profile_dir):
            print(name)
        return EXIT_OK
    if args.list_templates:
        for template_id in templates.ids():
            print(template_id)
        return EXIT_OK

    try:
        workers = args.workers if args.workers is not None else config.default_workers()
        profile = get_profile(args.profile, profile_dir)
        source = _blob_source(parser, args)
        measurement = measure(profile, source, templates=templates, workers=workers)

        if args.json:
            print(json.dumps(measurement.to_dict(), indent=2))
        else:
            print(measurement.hex())

        if args.report:
            measurement.assert_equal(read_report_measurement(args.report))
            logger.info("Measurement matches attestation report")
        elif args.expected:
            measurement.assert_equal(args.expected)
            logger.info("Measurement matches expected value")
    except MeasurementMismatchError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_MISMATCH
    except (MeasurementError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())

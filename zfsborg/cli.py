"""
Command line entry point.

    zfsborg run  <config>           scheduled lifecycle
    zfsborg snap <config> <label>   archive an existing snapshot label
"""

import os
import re
import sys
import argparse
import logging
from typing import List, Optional

from zfsborg import PROG_NAME, __version__, configure_logging
from zfsborg.commands import CommandError
from zfsborg.config import ConfigError, get_defaults, load_config
from zfsborg.backup.destinations import DestinationError
from zfsborg.scheduler import run_scheduled, run_named_snapshot


logger = logging.getLogger(PROG_NAME)

LABEL_PATTERN = re.compile(r'^[A-Za-z0-9_.:-]+$')


def snapshot_label(value: str) -> str:
    """argparse type for a snapshot label (the part after '@')."""
    if not LABEL_PATTERN.match(value):
        raise argparse.ArgumentTypeError(
            f"invalid snapshot label {value!r} (allowed: letters, digits, '_', '.', ':', '-')"
        )
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROG_NAME,
        description="Tiered ZFS snapshot backups into borg repositories."
    )
    parser.add_argument('-v', '--verbose', action='store_true', help="Enable debug output")
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest='command', metavar='{run,snap}')

    run_parser = subparsers.add_parser(
        'run',
        help="Take today's monthly/weekly/daily snapshot, archive it and apply retention"
    )
    run_parser.add_argument('config', help="Path to the YAML configuration file")

    snap_parser = subparsers.add_parser(
        'snap',
        help="Archive an existing snapshot of every configured filesystem"
    )
    snap_parser.add_argument('config', help="Path to the YAML configuration file")
    snap_parser.add_argument('label', type=snapshot_label, help="Snapshot name after '@'")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point.

    Returns:
        Process exit code
    """
    parser = build_parser()
    if argv is None:
        argv = sys.argv[1:]

    if not argv:
        parser.print_usage(sys.stderr)
        return 1

    # Usage errors exit with status 2 here, before any side effect
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_usage(sys.stderr)
        return 1

    defaults = get_defaults()
    verbose = args.verbose or defaults.DEBUG
    configure_logging(verbose=verbose)

    if os.geteuid() != 0:
        logger.error("must be run as root")
        return 1

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(str(e))
        return 1

    if config.log_file:
        try:
            configure_logging(verbose=verbose, log_file=config.log_file)
        except OSError as e:
            logger.error(f"Cannot open LOG_FILE {config.log_file}: {e.strerror or e}")
            return 1

    try:
        if args.command == 'run':
            run_scheduled(config)
        else:
            run_named_snapshot(config, args.label)
    except (CommandError, DestinationError, OSError) as e:
        logger.error(str(e))
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())

"""Command line tool for applying and pruning a package of objects."""

import argparse
import asyncio
import logging
import sys
import traceback

from kapply.exceptions import KApplyException
from . import apply

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for applying a package of objects to a cluster.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    apply.ApplyAction.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> None:
    """Kapply command line tool main entry point."""

    parser = _make_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except KApplyException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("kapply error: ", err, file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("kapply: interrupted", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    main()

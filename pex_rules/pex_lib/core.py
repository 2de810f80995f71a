# mypy: allow-untyped-defs

from __future__ import print_function

import argparse
import logging
import os
import subprocess
import sys

from argparse import _SubParsersAction, ArgumentParser
from typing import Tuple

from pex_rules import bazel_utils
from pex_rules.pex_lib import cfg, metrics


def create_parser():
    # type: () -> Tuple[ArgumentParser, _SubParsersAction]
    metrics.set_mode("_bzl_pex_parse_args")
    ap = argparse.ArgumentParser(
        "bzl-pex", formatter_class=argparse.RawDescriptionHelpFormatter
    )
    ap.add_argument(
        "--workspace",
        help="workspace directory; defaults to the closest parent with a WORKSPACE file",
    )
    ap.add_argument(
        "--output-base",
        help="where outputs and fetched repositories go; defaults to $%s or <workspace>/%s"
        % (cfg.OUTPUT_BASE_ENV, cfg.DEFAULT_OUTPUT_BASE_NAME),
    )
    ap.add_argument(
        "--pex-builder",
        help="executable invoked to build each pex; defaults to the bundled pex-wrapper",
    )
    ap.add_argument(
        "--no-cache",
        action="store_true",
        help="run every action, even when its outputs are up-to-date",
    )
    ap.add_argument("-v", "--verbose", action="store_true")
    sp = ap.add_subparsers(dest="mode", metavar="")

    return ap, sp


def main(ap, argv=None):
    args = ap.parse_args(argv)
    metrics.set_mode(args.mode or "help")
    if args.mode is None:
        ap.print_help()
        sys.exit(1)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s: %(message)s")

    try:
        if args.workspace:
            args.workspace = os.path.abspath(args.workspace)
        else:
            args.workspace = bazel_utils.find_workspace()
        args.func(args)
    except bazel_utils.BazelError as e:
        metrics.set_error(type(e).__name__, str(e))
        if cfg.debug_enabled():
            raise
        sys.exit("ERROR: " + str(e))
    except subprocess.CalledProcessError as e:
        print(e, file=sys.stderr)
        if e.output:
            print(e.output, file=sys.stderr)
        if cfg.debug_enabled():
            raise
        sys.exit(e.returncode)
    except KeyboardInterrupt:
        sys.exit("ERROR: interrupted")

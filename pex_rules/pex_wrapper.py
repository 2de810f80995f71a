# mypy: allow-untyped-defs
"""The default pex builder: stages a pex manifest and hands it to `pex`.

    pex-wrapper [--not-zip-safe] [--no-use-wheel] [--python PYTHON]
                [--find-links DIR]... --pex-root DIR --entry-point MODULE
                --output-file PATH --cache-dir DIR MANIFEST

Modules are copied to their destination paths below the cache dir, then
`python -m pex` builds the archive from that directory plus the manifest's
requirements and prebuilt libraries.
"""

import argparse
import hashlib
import logging
import os
import shlex
import shutil
import subprocess
import sys

from typing import List, Optional

from pex_rules.pex_lib import cfg
from pex_rules.pex_lib.manifest import Manifest, ManifestError, parse_manifest

SOURCES_DIR_NAME = "sources"


def create_parser():
    # type: () -> argparse.ArgumentParser
    ap = argparse.ArgumentParser("pex-wrapper", description=__doc__)
    ap.add_argument("--not-zip-safe", action="store_true")
    ap.add_argument("--no-use-wheel", action="store_true")
    ap.add_argument("--python")
    ap.add_argument("--find-links", action="append", default=[])
    ap.add_argument("--pex-root", default=cfg.PEX_ROOT)
    ap.add_argument("--entry-point", required=True)
    ap.add_argument("--output-file", required=True)
    ap.add_argument("--cache-dir", default=cfg.PEX_CACHE_DIR)
    ap.add_argument("manifest")
    return ap


def read_manifest(path):
    # type: (str) -> Manifest
    try:
        with open(path) as f:
            return parse_manifest(f.read())
    except OSError as e:
        raise ManifestError("unable to read manifest {}: {}".format(path, e))


def sources_dir(cache_dir, output_file):
    # type: (str, str) -> str
    # One directory per output so concurrent builds don't trample each other.
    key = hashlib.sha1(os.path.abspath(output_file).encode("utf-8")).hexdigest()[:16]
    return os.path.join(cache_dir, SOURCES_DIR_NAME, key)


def stage_modules(manifest, staging_dir):
    # type: (Manifest, str) -> None
    if os.path.exists(staging_dir):
        shutil.rmtree(staging_dir)
    os.makedirs(staging_dir)
    for dest, src in sorted(manifest.modules.items()):
        if os.path.isabs(dest) or ".." in dest.split("/"):
            raise ManifestError("module destination {!r} escapes the pex".format(dest))
        target = os.path.join(staging_dir, dest)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        if not os.path.isfile(src):
            raise ManifestError("module source {!r} does not exist".format(src))
        shutil.copy2(src, target)


def pex_command(args, manifest, staging_dir, python=None):
    # type: (argparse.Namespace, Manifest, str, Optional[str]) -> List[str]
    cmd = [python or sys.executable, "-m", "pex", "-D", staging_dir]
    cmd += manifest.requirements
    cmd += manifest.prebuilt_libraries
    for find_links in args.find_links:
        cmd += ["--find-links", find_links]
    if args.python:
        cmd += ["--python", args.python]
    if args.no_use_wheel:
        cmd += ["--no-wheel"]
    # pex always extracts user code before running it now, so --not-zip-safe
    # has nothing left to control.
    if args.not_zip_safe:
        logging.debug("ignoring --not-zip-safe")
    cmd += [
        "--pex-root", args.pex_root,
        "--entry-point", args.entry_point,
        "--output-file", args.output_file,
    ]
    return cmd


def main(argv=None):
    # type: (Optional[List[str]]) -> int
    args = create_parser().parse_args(argv)
    if os.environ.get("PEX_VERBOSE", "0") not in ("", "0"):
        logging.basicConfig(level=logging.DEBUG)

    try:
        manifest = read_manifest(args.manifest)
        staging_dir = sources_dir(args.cache_dir, args.output_file)
        stage_modules(manifest, staging_dir)
    except ManifestError as e:
        sys.exit("ERROR: " + str(e))

    cmd = pex_command(args, manifest, staging_dir)
    if os.environ.get(cfg.DEBUG_ENV):
        print("exec: " + " ".join(shlex.quote(c) for c in cmd), file=sys.stderr)
    output_dir = os.path.dirname(args.output_file)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
    return subprocess.call(cmd)


if __name__ == "__main__":
    sys.exit(main())

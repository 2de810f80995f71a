import os

from typing import Dict, Optional, Set, Tuple

from pex_rules import bazel_utils, build_parser


class ParsedBuildFileCache(object):
    """keeps track of parsed BUILD files"""

    def __init__(self, workspace_dir: str):
        self.workspace_dir = os.path.realpath(workspace_dir)

        # package -> (real_build_file, parsed entry)
        self.parsed_builds: Dict[str, Tuple[str, build_parser.BuildParser]] = {}

        # packages without BUILD
        self.empty_build_dirs: Set[str] = set()

    def get_build(
        self, package: str
    ) -> Tuple[str, Optional[build_parser.BuildParser]]:
        if package in self.parsed_builds:
            return self.parsed_builds[package]

        if package in self.empty_build_dirs:
            return "", None

        directory = os.path.join(
            self.workspace_dir, bazel_utils.normalize_relative_target_to_os_path(package)
        )
        build_file = bazel_utils.find_build_file(directory)
        if not build_file:
            self.empty_build_dirs.add(package)
            return "", None

        real_build_file = os.path.realpath(build_file)
        entry = build_parser.parse_file(real_build_file, package=package)
        self.parsed_builds[package] = (real_build_file, entry)
        return real_build_file, entry


_CACHE_BY_WORKSPACE: Dict[str, ParsedBuildFileCache] = {}


def get_build_file_cache(workspace_dir: str) -> ParsedBuildFileCache:
    if workspace_dir not in _CACHE_BY_WORKSPACE:
        _CACHE_BY_WORKSPACE[workspace_dir] = ParsedBuildFileCache(workspace_dir)

    return _CACHE_BY_WORKSPACE[workspace_dir]


def clear_build_file_cache(workspace_dir: str) -> None:
    if workspace_dir in _CACHE_BY_WORKSPACE:
        _CACHE_BY_WORKSPACE.pop(workspace_dir)

from __future__ import annotations

import os

from typing import Iterable, List, NamedTuple, Optional, Tuple

WORKSPACE_FILES = ("WORKSPACE", "WORKSPACE.bazel")
BUILD_FILES = ("BUILD", "BUILD.bazel")

# Name Bazel gives the main repository when WORKSPACE does not declare one.
DEFAULT_WORKSPACE_NAME = "__main__"


class BazelError(Exception):
    pass


class NoSuchTargetError(BazelError):
    pass


class RuleError(BazelError):
    """Raised for analysis-time failures, the moral equivalent of fail()."""


class Label(NamedTuple):
    repo: str
    package: str
    name: str

    def __str__(self) -> str:
        prefix = "@" + self.repo if self.repo else ""
        return "{}//{}:{}".format(prefix, self.package, self.name)

    @property
    def is_external(self) -> bool:
        return bool(self.repo)

    def relative(self, label: str) -> Label:
        """Resolve `label` as written inside this label's package."""
        return resolve_label(self.package, label, repo=self.repo)


def parse_bazel_label(label: str) -> Tuple[str, str, str]:
    """
    Parses a Bazel label and returns the workspace name, package, and name.

    It also performs some basic sanity checks to check that the label is valid.
    If it is not, raises a BazelError.
    """
    if label.startswith("//"):
        workspace_name = ""
        rest = label[2:]
    elif label.startswith("@"):
        parts = label[1:].split("//")
        if len(parts) != 2:
            raise BazelError(f"invalid bazel label '{label}': missing '//' divider")
        workspace_name, rest = parts
        if not workspace_name:
            raise BazelError(f"invalid bazel label '{label}': empty repository name")
    else:
        raise BazelError(f"invalid bazel label '{label}': must start with '@' or '//'")

    if ":" in rest:
        parts = rest.split(":")
        if len(parts) != 2:
            raise BazelError(
                f"invalid bazel label '{label}': contains too many ':' chars"
            )
        package, target = parts
    else:
        package = rest
        target = rest.split("/")[-1]

    if package.endswith("/"):
        raise BazelError(f"invalid bazel label '{label}': package cannot end with '/'")
    if len(target) == 0:
        raise BazelError(f"invalid bazel label '{label}': target is empty")
    for part in target.split("/"):
        if part in (".", ".."):
            raise BazelError(
                f"invalid bazel label '{label}': target names may not contain '{part}'"
            )

    return workspace_name, package, target


def resolve_label(package: str, label: str, repo: str = "") -> Label:
    """Turn a label as written in a BUILD file of `package` into a Label.

    ":foo" and "foo" (and "sub/foo.py") name targets of the current package,
    anything starting with "//" or "@" is already absolute.
    """
    if not label:
        raise BazelError("empty label in package '{}'".format(package))
    if label.startswith("//"):
        _, pkg, name = parse_bazel_label(label)
        return Label(repo, pkg, name)
    if label.startswith("@"):
        other_repo, pkg, name = parse_bazel_label(label)
        return Label(other_repo, pkg, name)
    name = label[1:] if label.startswith(":") else label
    if not name or ":" in name:
        raise BazelError(
            "invalid label '{}' in package '{}'".format(label, package)
        )
    return Label(repo, package, name)


def find_workspace(starting_dir: Optional[str] = None) -> str:
    """Return the path of the enclosing Bazel workspace."""
    if starting_dir is None:
        starting_dir = os.getcwd()
    return _find_parent_directory_containing(starting_dir, WORKSPACE_FILES)


def find_workspace_file(workspace_dir: str) -> Optional[str]:
    for name in WORKSPACE_FILES:
        path = os.path.join(workspace_dir, name)
        if os.path.isfile(path):
            return path
    return None


def find_build_file(package_dir: str) -> Optional[str]:
    for name in BUILD_FILES:
        path = os.path.join(package_dir, name)
        if os.path.isfile(path):
            return path
    return None


def _find_parent_directory_containing(start: str, filenames: Tuple[str, ...]) -> str:
    """Given file or directory `start`, search upwards for any of `filenames`.

    This can return the path `start` itself (if `start` is a directory),
    or one of its ancestor directories, or can raise an error if none of
    the files is found.
    """
    path = os.path.abspath(start)
    while True:
        if any(os.path.exists(os.path.join(path, f)) for f in filenames):
            return path
        next_directory_up = os.path.dirname(path)
        if next_directory_up == path:
            raise BazelError(
                "cannot find a {} file in any parent directory of {}".format(
                    " or ".join(filenames), start
                )
            )
        path = next_directory_up


def package_for_directory(workspace: str, directory: str) -> str:
    relpath = os.path.relpath(os.path.abspath(directory), workspace)
    if relpath == ".":
        return ""
    if relpath.startswith(".."):
        raise BazelError(
            "directory {} is outside of workspace {}".format(directory, workspace)
        )
    return normalize_os_path_to_target(relpath)


class TargetPattern(NamedTuple):
    package: str
    # None selects every rule of the package.
    name: Optional[str]


def expand_target_patterns(workspace: str, patterns: Iterable[str], cwd: str = ".") -> List[TargetPattern]:
    """Expand command line target patterns into (package, name) pairs.

    Supports "//pkg:name", "//pkg", "//pkg:all", "//pkg/..." and the same
    forms relative to `cwd`.  Patterns prefixed by "-" are subtracted.
    """
    matched = set()
    filtered = set()
    for pattern in patterns:
        if not pattern:
            continue
        if pattern.startswith("-"):
            filtered.update(_expand_target_pattern(workspace, pattern[1:], cwd))
        else:
            matched.update(_expand_target_pattern(workspace, pattern, cwd))
    return sorted(
        matched - filtered, key=lambda p: (p.package, p.name or "")
    )


def _expand_target_pattern(workspace: str, pattern: str, cwd: str) -> List[TargetPattern]:
    if pattern.startswith("@"):
        raise BazelError("external repository targets cannot be built: " + pattern)

    if pattern.endswith("..."):
        recursive = True
        target_dir = pattern[:-3]
        if target_dir.endswith("/") and target_dir != "//":
            target_dir = target_dir[:-1]
        name = None  # type: Optional[str]
    else:
        recursive = False
        target_dir, _, name = pattern.partition(":")
        if name in ("all", "*"):
            name = None

    if target_dir.startswith("//"):
        abs_dir = os.path.join(workspace, normalize_relative_target_to_os_path(target_dir[2:]))
    else:
        abs_dir = os.path.join(
            os.path.abspath(cwd), normalize_relative_target_to_os_path(target_dir)
        )
    abs_dir = os.path.abspath(abs_dir)

    if not os.path.isdir(abs_dir):
        raise NoSuchTargetError("no such target directory: " + abs_dir)

    if recursive:
        dirs = sorted(root for root, _, _ in os.walk(abs_dir))
        dirs = [d for d in dirs if find_build_file(d)]
    else:
        if not find_build_file(abs_dir):
            raise NoSuchTargetError(
                "no BUILD file in package directory: " + abs_dir
            )
        dirs = [abs_dir]
        if not name and ":" not in pattern:
            # "//pkg" is shorthand for "//pkg:pkg".
            name = os.path.basename(abs_dir)

    return [TargetPattern(package_for_directory(workspace, d), name) for d in dirs]


def normalize_os_path_to_target(path: str) -> str:
    """A simple helper function that converts OS-specific path separators
    to the forward slash "/" as is used in Bazel targets."""
    return path.replace(os.path.sep, "/")


def normalize_relative_target_to_os_path(target: str) -> str:
    """A simple helper function that converts Bazel targets into paths
    with the appropriate OS-specific file separator (e.g. for use with os.path).

    Note that this is intended for use with relative targets that do not contain ":".
    Callers are expected to remove the "//" prefix if using absolute targets.
    """
    return target.replace("/", os.path.sep)

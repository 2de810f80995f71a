import os
import shutil

from typing import Iterable

from pex_rules.bazel_utils import DEFAULT_WORKSPACE_NAME
from pex_rules.pex_lib.files import File, OutputLayout

RUNFILES_SUFFIX = ".runfiles"


class RunfilesError(Exception):
    pass


def runfiles_dir(layout: OutputLayout, executable: File) -> str:
    return layout.abspath(executable) + RUNFILES_SUFFIX


def runfile_relpath(workspace_name: str, f: File) -> str:
    """Where `f` lands inside a runfiles tree.

    Workspace files go under the workspace name; files of external
    repositories ("../<repo>/...") under the repository name.
    """
    return os.path.normpath(os.path.join(workspace_name, f.short_path))


def build_runfiles_tree(layout: OutputLayout, executable: File, files: Iterable[File], workspace_name: str) -> str:
    """(Re)create `<executable>.runfiles/` as a tree of symlinks and return
    its path."""
    root = runfiles_dir(layout, executable)
    if os.path.lexists(root):
        shutil.rmtree(root)
    os.makedirs(os.path.join(root, workspace_name))
    for f in files:
        relpath = runfile_relpath(workspace_name, f)
        if relpath.startswith(".."):
            raise RunfilesError("runfile escapes the runfiles tree", f.short_path)
        link = os.path.join(root, relpath)
        os.makedirs(os.path.dirname(link), exist_ok=True)
        if os.path.lexists(link):
            os.remove(link)
        os.symlink(layout.abspath(f), link)
    return root


def _validate_repo_path(repo_path: str) -> None:
    if not repo_path.startswith(("//", "@")):
        raise RunfilesError("absolute Bazel path required", repo_path)
    if ":" in repo_path:
        raise RunfilesError("absolute Bazel target not allowed - use path", repo_path)
    for x in repo_path.split("/"):
        if x in (".", ".."):
            raise RunfilesError(
                "absolute Bazel path only - no relative paths", repo_path
            )


# Return a full path to a resource referenced by the Bazel target path.
# $RUNFILES points at the root of the runfiles tree; the main repository
# lives below it under $TEST_WORKSPACE.
def data_path(repo_path: str) -> str:
    _validate_repo_path(repo_path)

    runfiles_dir = os.getenv("RUNFILES")
    if not runfiles_dir:
        raise RunfilesError("RUNFILES environment variable not defined")

    if repo_path.startswith("@"):
        return os.path.join(runfiles_dir, repo_path[1:].replace("//", "/", 1))
    workspace_name = os.getenv("TEST_WORKSPACE") or DEFAULT_WORKSPACE_NAME
    return os.path.join(runfiles_dir, workspace_name, repo_path[2:])


def maybe_data_path(file_or_repo_path: str) -> str:
    """
    If given a Bazel target path, return a full file path to the referenced resource.
    Otherwise, return the input unchanged.
    """
    if file_or_repo_path.startswith(("//", "@")):
        return data_path(file_or_repo_path)
    else:
        return file_or_repo_path

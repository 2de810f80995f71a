from __future__ import annotations

import os

from typing import Iterable, List, Optional, Sequence

from pex_rules import bazel_utils
from pex_rules.bazel_utils import Label
from pex_rules.pex_lib import cfg


class File(object):
    """A file as seen by rule implementations.

    `path` is relative to the execution root (the workspace), unless the file
    lives outside of it, in which case it is absolute. `short_path` is where
    the file shows up relative to a runfiles tree; files from external
    repositories have a short_path starting with "../<repo>/".
    """

    def __init__(self, path: str, short_path: str, is_source: bool = True, owner: Optional[Label] = None) -> None:
        self.path = path
        self.short_path = short_path
        self.is_source = is_source
        self.owner = owner

    def __repr__(self) -> str:
        return "File({!r})".format(self.path)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, File) and other.path == self.path

    def __hash__(self) -> int:
        return hash(self.path)

    @property
    def dirname(self) -> str:
        return os.path.dirname(self.path)

    @property
    def basename(self) -> str:
        return os.path.basename(self.path)

    @property
    def extension(self) -> str:
        return os.path.splitext(self.path)[1].lstrip(".")


class FileType(object):
    def __init__(self, extensions: Sequence[str]) -> None:
        self.extensions = tuple(extensions)

    def matches(self, f: File) -> bool:
        return f.basename.endswith(self.extensions)

    def filter(self, files: Iterable[File]) -> List[File]:
        return [f for f in files if self.matches(f)]

    def __repr__(self) -> str:
        return "FileType({})".format(list(self.extensions))


pex_file_types = FileType(cfg.PEX_SRC_EXTENSIONS)
egg_file_types = FileType(cfg.EGG_EXTENSIONS)


def _join(*parts: str) -> str:
    return "/".join(p for p in parts if p)


class OutputLayout(object):
    """Where source, generated and external files live."""

    def __init__(self, workspace_dir: str, output_base: Optional[str] = None) -> None:
        self.workspace_dir = os.path.abspath(workspace_dir)
        if output_base is None:
            output_base = os.environ.get(cfg.OUTPUT_BASE_ENV) or os.path.join(
                self.workspace_dir, cfg.DEFAULT_OUTPUT_BASE_NAME
            )
        self.output_base = os.path.abspath(output_base)

    def _exec_path(self, abs_path: str) -> str:
        relpath = os.path.relpath(abs_path, self.workspace_dir)
        if relpath.startswith(".."):
            return abs_path
        return bazel_utils.normalize_os_path_to_target(relpath)

    @property
    def bin_dir(self) -> str:
        return self._exec_path(os.path.join(self.output_base, cfg.BIN_DIR_NAME))

    @property
    def external_dir(self) -> str:
        return os.path.join(self.output_base, cfg.EXTERNAL_DIR_NAME)

    @property
    def action_cache_file(self) -> str:
        return os.path.join(self.output_base, cfg.ACTION_CACHE_FILE)

    def abspath(self, f: File) -> str:
        return os.path.join(
            self.workspace_dir, bazel_utils.normalize_relative_target_to_os_path(f.path)
        )

    def source_file(self, label: Label) -> File:
        short_path = _join(label.package, label.name)
        return File(short_path, short_path, is_source=True, owner=label)

    def generated_file(self, package: str, name: str, owner: Optional[Label] = None) -> File:
        short_path = _join(package, name)
        return File(
            _join(self.bin_dir, short_path), short_path, is_source=False, owner=owner
        )

    def sibling(self, f: File, suffix: str) -> File:
        """A generated file named after `f` plus `suffix`, in the same package."""
        return File(
            f.path + suffix, f.short_path + suffix, is_source=False, owner=f.owner
        )

    def external_file(self, label: Label, relpath: str) -> File:
        rest = _join(label.package, relpath)
        path = self._exec_path(os.path.join(self.external_dir, label.repo, rest))
        return File(path, _join("..", label.repo, rest), is_source=True, owner=label)

    def builtin_file(self, label: Label, abs_path: str) -> File:
        return File(
            abs_path,
            _join("..", label.repo, label.package, label.name),
            is_source=True,
            owner=label,
        )

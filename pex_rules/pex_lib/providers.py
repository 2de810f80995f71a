from __future__ import annotations

from typing import Any, Dict, Generic, Iterable, Iterator, List, Optional, TypeVar

from pex_rules.bazel_utils import Label
from pex_rules.pex_lib.files import File

_T = TypeVar("_T")


class OrderedSet(Generic[_T]):
    """A set that iterates in insertion order.

    This is the "compile" ordering of a depset: whatever a dependency
    contributed comes first, things added later are appended, and an element
    keeps the position of its first occurrence.
    """

    def __init__(self, items: Iterable[_T] = ()) -> None:
        self._items: Dict[_T, None] = {}
        self.update(items)

    def add(self, item: _T) -> None:
        self._items.setdefault(item, None)

    def update(self, items: Iterable[_T]) -> None:
        for item in items:
            self.add(item)

    def __iadd__(self, items: Iterable[_T]) -> OrderedSet[_T]:
        self.update(items)
        return self

    def __add__(self, items: Iterable[_T]) -> OrderedSet[_T]:
        merged = OrderedSet(self)
        merged.update(items)
        return merged

    def __contains__(self, item: object) -> bool:
        return item in self._items

    def __iter__(self) -> Iterator[_T]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, OrderedSet):
            return list(self) == list(other)
        return NotImplemented

    def __repr__(self) -> str:
        return "OrderedSet({!r})".format(list(self))

    def to_list(self) -> List[_T]:
        return list(self._items)


class PyInfo(object):
    """The `py` provider: what a target contributes to a pex."""

    def __init__(self, transitive_sources: OrderedSet[File], transitive_eggs: OrderedSet[File], transitive_reqs: OrderedSet[str]) -> None:
        # transitive_sources isn't used by the pex rules themselves; it's
        # there for parity with the native py_library provider.
        self.transitive_sources = transitive_sources
        self.transitive_eggs = transitive_eggs
        self.transitive_reqs = transitive_reqs


class Runfiles(object):
    def __init__(self, files: Iterable[File] = ()) -> None:
        self.files: OrderedSet[File] = OrderedSet(files)

    def merge(self, other: Runfiles) -> Runfiles:
        return Runfiles(self.files + other.files)

    def __repr__(self) -> str:
        return "Runfiles({!r})".format(self.files.to_list())


class ConfiguredTarget(object):
    """The analyzed form of a rule: its providers and outputs."""

    def __init__(
        self,
        label: Label,
        kind: str,
        files: Iterable[File] = (),
        runfiles: Optional[Runfiles] = None,
        py: Optional[PyInfo] = None,
        executable: Optional[File] = None,
        test: bool = False,
        attrs: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.label = label
        self.kind = kind
        self.files: OrderedSet[File] = OrderedSet(files)
        self.runfiles = runfiles or Runfiles()
        self.py = py
        self.executable = executable
        self.test = test
        self.attrs = attrs or {}

    def __repr__(self) -> str:
        return "ConfiguredTarget({}, {})".format(self.label, self.kind)

    @property
    def default_runfiles(self) -> Runfiles:
        return self.runfiles


class FileTarget(object):
    """A label that names a plain file rather than a rule."""

    def __init__(self, label: Label, f: File) -> None:
        self.label = label
        self.files: OrderedSet[File] = OrderedSet([f])
        self.file = f
        self.py = None
        self.runfiles = Runfiles([f])
        self.executable = None

    def __repr__(self) -> str:
        return "FileTarget({})".format(self.label)

    @property
    def default_runfiles(self) -> Runfiles:
        return self.runfiles

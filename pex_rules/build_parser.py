# mypy: allow-any-generics

# Evaluates a BUILD (or WORKSPACE) file as Python with every unknown name
# standing in for a rule function, then hands back the recorded calls. It
# is not Starlark, but the subset BUILD files use parses fine.

from __future__ import annotations

import glob
import os.path

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pex_rules.bazel_utils import RuleError

DEFAULT_CONDITION = "//conditions:default"


def normalize_path(p: str) -> str:
    """Convenience function to convert all path separators to forward slashes."""
    return p.replace(os.path.sep, "/")


def _exec_wrapper(code: str, namespace: Any) -> Any:
    exec(code, namespace)


def _in_sub_package(package_dir: str, relpath: str) -> bool:
    parts = relpath.split("/")[:-1]
    d = package_dir
    for part in parts:
        d = os.path.join(d, part)
        if os.path.isfile(os.path.join(d, "BUILD")) or os.path.isfile(
            os.path.join(d, "BUILD.bazel")
        ):
            return True
    return False


class PackageGlob(object):
    """glob() for BUILD files: matches are package-relative, sorted, and never
    reach into sub-packages."""

    def __init__(self, package_dir: Optional[str] = None) -> None:
        self.package_dir = package_dir

    def _match(self, pattern: str, exclude_directories: bool) -> List[str]:
        assert self.package_dir is not None
        matches = []
        for path in glob.glob(os.path.join(self.package_dir, pattern), recursive=True):
            if exclude_directories and not os.path.isfile(path):
                continue
            relpath = normalize_path(os.path.relpath(path, self.package_dir))
            if relpath == "." or _in_sub_package(self.package_dir, relpath):
                continue
            matches.append(relpath)
        return matches

    def glob(self, include: Sequence[str], exclude: Sequence[str] = (), exclude_directories: int = 1) -> List[str]:
        if self.package_dir is None:
            return []
        results = set()
        for pattern in include:
            results.update(self._match(pattern, bool(exclude_directories)))
        for pattern in exclude:
            results.difference_update(self._match(pattern, bool(exclude_directories)))
        return sorted(results)


class Select(object):
    """Represents a `select()` call in Starlark."""

    def __init__(self, select_map: Dict[str, Any]) -> None:
        self._select_map = dict(select_map)

    def __repr__(self) -> str:
        return "select({})".format(repr(self._select_map))

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, Select) and other.select_map == self._select_map

    @property
    def select_map(self) -> Dict[str, Any]:
        return self._select_map

    def resolve(self, conditions: Iterable[str] = ()) -> Any:
        """Pick the branch of the first matching condition, falling back to
        //conditions:default."""
        for condition in conditions:
            if condition in self._select_map:
                return self._select_map[condition]
        if DEFAULT_CONDITION not in self._select_map:
            raise RuleError(
                "select() has no matching condition and no {} branch".format(DEFAULT_CONDITION)
            )
        return self._select_map[DEFAULT_CONDITION]


def select_func(*args: Dict[str, Any], **kwargs: Any) -> List[Select]:
    """Handles `select()` calls in BUILD files.

    A select is only supported inside list-valued attributes, so it is
    returned wrapped in a list that can be concatenated with other lists."""
    assert not kwargs, "select() does not take keyword arguments"
    assert len(args) == 1, "select() takes exactly one dict"
    return [Select(args[0])]


def resolve_selects(attr_val: Any, conditions: Iterable[str] = ()) -> Any:
    """Replace every Select inside a list value by its chosen branch."""
    if not isinstance(attr_val, list):
        return attr_val

    resolved: List[Any] = []
    for val in attr_val:
        if isinstance(val, Select):
            chosen = val.resolve(conditions)
            if isinstance(chosen, list):
                resolved.extend(chosen)
            else:
                resolved.append(chosen)
        else:
            resolved.append(val)
    return resolved


class Rule(object):
    def __init__(self, rule_type: str, attr_map: Dict[str, Any], location: Optional[str] = None) -> None:
        self._rule_type = rule_type
        self._attr_map = dict(attr_map)
        self.location = location

    def __repr__(self) -> str:
        return "Rule({}, name={!r})".format(self._rule_type, self.name)

    @property
    def rule_type(self) -> str:
        return self._rule_type

    @property
    def name(self) -> Optional[str]:
        return self._attr_map.get("name")

    @property
    def attr_map(self) -> Dict[str, Any]:
        # Handed out as a copy; parsed rules never change.
        return dict(self._attr_map)


class _MissingItem(object):
    """An object that can pretend to be either a function or a struct.
    While most items in a BUILD file are rules, we can occasionally get
    structs (such as the `selects` struct in bazel-skylib).
    """

    def __init__(self, parser: BuildParser, name: str) -> None:
        self.name = name
        self.parser = parser

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        parser = object.__getattribute__(self, "parser")
        parser._record(object.__getattribute__(self, "name"), args, kwargs)

    def __getattribute__(self, key: str) -> _MissingItem:
        return _MissingItem(
            object.__getattribute__(self, "parser"),
            "{}.{}".format(object.__getattribute__(self, "name"), key),
        )


class _MacroDict(dict):
    def __init__(self, parser: BuildParser) -> None:
        self.parser = parser
        super(_MacroDict, self).__init__()

    def __missing__(self, name: str) -> _MissingItem:
        return _MissingItem(self.parser, name)


class BuildParser(object):
    def __init__(self) -> None:
        self.filename: Optional[str] = None
        self._clauses: List[Tuple[str, Dict[str, Any]]] = []
        self._rules: Dict[str, Rule] = {}
        self._ordered_rules: List[Rule] = []

    def _record(self, rule_type: str, args: Tuple, kwargs: Dict[str, Any]) -> None:
        self._clauses.append((rule_type, kwargs))

    def parse(self, data: str, fname: Optional[str] = None, package: str = "") -> BuildParser:
        """Evaluate the contents of a BUILD file belonging to `package`."""
        self.filename = fname

        package_dir = None
        if fname and os.path.isfile(fname):
            package_dir = os.path.dirname(fname)

        build_globals = _MacroDict(self)
        build_globals["package_name"] = lambda: package
        build_globals["repository_name"] = lambda: "@"
        build_globals["glob"] = PackageGlob(package_dir).glob
        build_globals["select"] = select_func
        build_globals["True"] = True
        build_globals["False"] = False
        build_globals["None"] = None
        build_globals["str"] = str
        build_globals["len"] = len
        try:
            _exec_wrapper(data, build_globals)
        except SyntaxError as e:
            e.filename = fname
            raise
        except Exception as e:
            # Add a small amount of file context to the error
            e.args += (fname,)
            raise

        for rule_type, kwargs in self._clauses:
            rule = Rule(rule_type, kwargs, location=fname)
            self._ordered_rules.append(rule)
            if rule.name is not None:
                if rule.name in self._rules:
                    raise RuleError(
                        "{}: target '{}' is declared more than once".format(fname, rule.name)
                    )
                self._rules[rule.name] = rule
        return self

    # Return a rule by name.
    def get_rule(self, name: str) -> Rule:
        rule = self._rules.get(name)
        if not rule:
            raise KeyError("no rule with name", name)
        return rule

    def get_rules_by_types(self, type_names: Sequence[str]) -> List[Rule]:
        return [r for r in self._ordered_rules if r.rule_type in type_names]

    def get_all_rules(self) -> Tuple[Rule, ...]:
        return tuple(self._ordered_rules)

    def workspace_name(self) -> Optional[str]:
        """The name declared by a `workspace(name = ...)` clause, if any."""
        for rule in self.get_rules_by_types(["workspace"]):
            return rule.name
        return None


def parse_file(fname: str, package: str = "") -> BuildParser:
    with open(fname, "r") as f:
        return parse(f.read(), fname=fname, package=package)


def parse(src: str, fname: str = "<BUILD>", package: str = "") -> BuildParser:
    return BuildParser().parse(src, fname, package=package)

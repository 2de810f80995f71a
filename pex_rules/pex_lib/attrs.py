"""Attribute schemas for the pex rules and the checking done on them.

Checking happens before any label is resolved: values are type-checked,
defaults are filled in and label strings are parsed relative to the
declaring package. Resolving labels into targets and files is the
business of `targets.TargetGraph`.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Union

from pex_rules import bazel_utils
from pex_rules.bazel_utils import Label, RuleError
from pex_rules.pex_lib import cfg
from pex_rules.pex_lib.files import FileType, egg_file_types, pex_file_types

LABEL = "label"
LABEL_LIST = "label_list"
STRING = "string"
STRING_LIST = "string_list"
BOOL = "bool"
INT = "int"

_PY_TYPES = {
    STRING: (str,),
    BOOL: (bool,),
    INT: (int,),
}


class Attr(object):
    def __init__(
        self,
        kind: str,
        default: Any = None,
        mandatory: bool = False,
        allow_files: Union[bool, FileType] = False,
        providers: Sequence[str] = (),
        executable: bool = False,
        single_file: bool = False,
        values: Sequence[Any] = (),
    ) -> None:
        self.kind = kind
        self.default = default
        self.mandatory = mandatory
        self.allow_files = allow_files
        self.providers = tuple(providers)
        self.executable = executable
        self.single_file = single_file
        self.values = tuple(values)

    @property
    def is_label(self) -> bool:
        return self.kind in (LABEL, LABEL_LIST)

    def default_value(self) -> Any:
        if self.kind in (LABEL_LIST, STRING_LIST):
            return list(self.default or [])
        return self.default


def label_list(**kwargs: Any) -> Attr:
    return Attr(LABEL_LIST, **kwargs)


def label(**kwargs: Any) -> Attr:
    return Attr(LABEL, **kwargs)


def string(**kwargs: Any) -> Attr:
    return Attr(STRING, **kwargs)


def string_list(**kwargs: Any) -> Attr:
    return Attr(STRING_LIST, **kwargs)


def bool_(**kwargs: Any) -> Attr:
    return Attr(BOOL, **kwargs)


def int_(**kwargs: Any) -> Attr:
    return Attr(INT, **kwargs)


Schema = Dict[str, Attr]

COMMON_ATTRS: Schema = {
    "name": string(mandatory=True),
    "visibility": string_list(),
    "tags": string_list(),
    "testonly": bool_(default=False),
}

TEST_ATTRS: Schema = {
    "args": string_list(),
    "size": string(values=sorted(cfg.SIZE_TIMEOUT_SECONDS)),
    "timeout": string(values=sorted(cfg.TIMEOUT_SECONDS)),
    "flaky": bool_(default=False),
    "local": bool_(),
}

PEX_ATTRS: Schema = {
    "srcs": label_list(allow_files=pex_file_types),
    "deps": label_list(providers=["py"]),
    "eggs": label_list(allow_files=egg_file_types),
    "reqs": string_list(),
    "data": label_list(allow_files=True),
}

PEX_BIN_ATTRS: Schema = dict(
    PEX_ATTRS,
    main=label(allow_files=True, single_file=True),
    entrypoint=string(),
    interpreter=string(),
    pex_use_wheels=bool_(default=True),
    pex_verbosity=int_(default=0),
    zip_safe=bool_(default=True),
)

PYTEST_PEX_TEST_ATTRS: Schema = dict(
    PEX_ATTRS,
    runner=label(executable=True, mandatory=True),
    launcher_template=label(
        allow_files=True,
        single_file=True,
        default=cfg.DEFAULT_LAUNCHER_TEMPLATE_LABEL,
    ),
)

PY_LIBRARY_ATTRS: Schema = {
    "srcs": label_list(allow_files=pex_file_types),
    "deps": label_list(providers=["py"]),
    "data": label_list(allow_files=True),
    "imports": string_list(),
    "srcs_version": string(),
}

FILEGROUP_ATTRS: Schema = {
    "srcs": label_list(allow_files=True),
    "data": label_list(allow_files=True),
}

RULE_SCHEMAS: Dict[str, Schema] = {
    cfg.PEX_LIBRARY_RULE: PEX_ATTRS,
    cfg.PEX_BINARY_RULE: PEX_BIN_ATTRS,
    cfg.PEX_TEST_RULE: PEX_BIN_ATTRS,
    cfg.PYTEST_PEX_TEST_RULE: PYTEST_PEX_TEST_ATTRS,
    cfg.PY_LIBRARY_RULE: PY_LIBRARY_ATTRS,
    cfg.FILEGROUP_RULE: FILEGROUP_ATTRS,
}


def schema_for(kind: str) -> Schema:
    schema = dict(COMMON_ATTRS, **RULE_SCHEMAS[kind])
    if kind in cfg.PEX_TEST_RULE_TYPES:
        schema.update(TEST_ATTRS)
    return schema


def _check_value(where: str, attr: Attr, value: Any) -> None:
    if attr.kind in (LABEL_LIST, STRING_LIST):
        if not isinstance(value, (list, tuple)) or not all(
            isinstance(v, str) for v in value
        ):
            raise RuleError(
                "{}: expected a list of strings, got {!r}".format(where, value)
            )
        return
    if attr.kind == LABEL:
        if not isinstance(value, str):
            raise RuleError("{}: expected a label string, got {!r}".format(where, value))
        return
    expected = _PY_TYPES[attr.kind]
    # bool is an int subclass; an int attribute does not take True.
    if not isinstance(value, expected) or (
        attr.kind == INT and isinstance(value, bool)
    ):
        raise RuleError(
            "{}: expected a value of type {}, got {!r}".format(where, attr.kind, value)
        )
    if attr.values and value not in attr.values:
        raise RuleError(
            "{}: invalid value {!r}, expected one of {}".format(
                where, value, list(attr.values)
            )
        )


def check_attrs(kind: str, target: Label, raw_attrs: Dict[str, Any]) -> Dict[str, Any]:
    """Validate `raw_attrs` against the schema of `kind`.

    Returns a complete attribute dict: defaults filled in, label strings
    turned into Labels relative to the target's package.
    """
    schema = schema_for(kind)
    unknown = sorted(set(raw_attrs) - set(schema))
    if unknown:
        raise RuleError(
            "{} rule {}: unknown attribute(s) {}".format(kind, target, ", ".join(unknown))
        )

    checked: Dict[str, Any] = {}
    for name, attr in schema.items():
        where = "{} rule {}: attribute '{}'".format(kind, target, name)
        value = raw_attrs.get(name)
        if value is None:
            if attr.mandatory:
                raise RuleError("{}: missing value for mandatory attribute".format(where))
            value = attr.default_value()
        else:
            _check_value(where, attr, value)
            if attr.kind in (LABEL_LIST, STRING_LIST):
                value = list(value)

        if attr.is_label and value is not None:
            value = _parse_labels(where, target, attr, value)
        checked[name] = value
    return checked


def _parse_labels(where: str, target: Label, attr: Attr, value: Any) -> Union[Label, List[Label]]:
    try:
        if attr.kind == LABEL:
            return target.relative(value)
        labels = [target.relative(v) for v in value]
    except bazel_utils.BazelError as e:
        raise RuleError("{}: {}".format(where, e))
    seen = set()
    for lbl in labels:
        if lbl in seen:
            raise RuleError("{}: label '{}' is duplicated".format(where, lbl))
        seen.add(lbl)
    return labels


def allowed_file_type(attr: Attr) -> Optional[FileType]:
    """The FileType files must match, or None when any file is fine."""
    if isinstance(attr.allow_files, FileType):
        return attr.allow_files
    return None

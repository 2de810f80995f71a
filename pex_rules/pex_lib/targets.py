# mypy: allow-untyped-defs

from __future__ import annotations

import logging
import os

from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pex_rules import bazel_utils, build_parser
from pex_rules.bazel_utils import Label, NoSuchTargetError, RuleError
from pex_rules.pex_lib import attrs, cache, cfg, repositories, rules
from pex_rules.pex_lib.actions import Action
from pex_rules.pex_lib.files import File, OutputLayout
from pex_rules.pex_lib.providers import ConfiguredTarget, FileTarget

Target = Union[ConfiguredTarget, FileTarget]


class RuleDecl(object):
    """A rule declared in a BUILD file, after macro expansion."""

    def __init__(self, kind: str, label: Label, raw_attrs: Dict[str, Any], location: Optional[str]) -> None:
        self.kind = kind
        self.label = label
        self.raw_attrs = raw_attrs
        self.location = location

    def __repr__(self) -> str:
        return "RuleDecl({}, {})".format(self.kind, self.label)

    def predeclared_outputs(self) -> Dict[str, str]:
        """Output file name -> the name of the rule creating it."""
        if self.kind in (cfg.PEX_BINARY_RULE, cfg.PEX_TEST_RULE):
            return {self.label.name + ".pex": self.label.name}
        return {}


def read_workspace_name(workspace_dir: str) -> str:
    workspace_file = bazel_utils.find_workspace_file(workspace_dir)
    if workspace_file:
        name = build_parser.parse_file(workspace_file).workspace_name()
        if name:
            return name
    return bazel_utils.DEFAULT_WORKSPACE_NAME


class TargetGraph(object):
    """Loads packages and analyzes targets on demand.

    Every analyzed target is memoized; the actions its rule registered are
    appended to `actions`, so the list is always in dependency order.
    """

    def __init__(
        self,
        layout: OutputLayout,
        pex_builder: Sequence[str],
        build_cache: Optional[cache.ParsedBuildFileCache] = None,
        workspace_name: Optional[str] = None,
    ) -> None:
        self.layout = layout
        self.workspace_dir = layout.workspace_dir
        self.pex_builder = list(pex_builder)
        self.build_cache = build_cache or cache.ParsedBuildFileCache(self.workspace_dir)
        if workspace_name is None:
            workspace_name = read_workspace_name(self.workspace_dir)
        self.workspace_name = workspace_name
        self.actions: List[Action] = []
        self._packages: Dict[str, Dict[str, RuleDecl]] = {}
        self._targets: Dict[Label, Target] = {}
        self._analysis_stack: List[Label] = []

    def package(self, package: str) -> Dict[str, RuleDecl]:
        """The rules of `package` by name. Raises NoSuchTargetError when the
        package has no BUILD file."""
        if package in self._packages:
            return self._packages[package]

        build_file, parsed = self.build_cache.get_build(package)
        if parsed is None:
            raise NoSuchTargetError(
                "no such package '{}': BUILD file not found in {}".format(
                    package, os.path.join(self.workspace_dir, package)
                )
            )

        decls: Dict[str, RuleDecl] = {}
        for rule in parsed.get_all_rules():
            if rule.rule_type in cfg.NON_TARGET_CLAUSES or rule.name is None:
                continue
            for kind, raw_attrs in self._expand(rule, package, build_file):
                label = Label("", package, raw_attrs["name"])
                if label.name in decls:
                    raise RuleError(
                        "{}: target '{}' is declared more than once".format(
                            build_file, label.name
                        )
                    )
                decls[label.name] = RuleDecl(kind, label, raw_attrs, build_file)

        self._packages[package] = decls
        return decls

    def _expand(self, rule: build_parser.Rule, package: str, build_file: str) -> List[Tuple[str, Dict[str, Any]]]:
        try:
            raw_attrs = {
                k: build_parser.resolve_selects(v) for k, v in rule.attr_map.items()
            }
        except RuleError as e:
            raise RuleError("{}: //{}:{}: {}".format(build_file, package, rule.name, e))
        macro = rules.MACROS.get(rule.rule_type)
        if macro is None:
            return [(rule.rule_type, raw_attrs)]
        try:
            return macro(**raw_attrs)
        except TypeError as e:
            raise RuleError(
                "{}: {} macro //{}:{}: {}".format(
                    build_file, rule.rule_type, package, rule.name, e
                )
            )
        except RuleError as e:
            raise RuleError(
                "{}: {} macro //{}:{}: {}".format(
                    build_file, rule.rule_type, package, rule.name, e
                )
            )

    def rules_in_package(self, package: str) -> List[Label]:
        """Labels of the supported rules of `package`, in declaration order."""
        labels = []
        for decl in self.package(package).values():
            if decl.kind in rules.RULE_IMPLEMENTATIONS:
                labels.append(decl.label)
            else:
                logging.debug("skipping %s rule %s", decl.kind, decl.label)
        return labels

    def get(self, label: Union[Label, str]) -> Target:
        """Analyze `label` (if needed) and return its target."""
        if isinstance(label, str):
            label = Label(*bazel_utils.parse_bazel_label(label))

        if label in self._targets:
            return self._targets[label]

        if label in self._analysis_stack:
            cycle = self._analysis_stack[self._analysis_stack.index(label) :] + [label]
            raise RuleError(
                "cycle in dependency graph:\n    " + "\n    ".join(str(l) for l in cycle)
            )

        self._analysis_stack.append(label)
        try:
            target = self._resolve(label)
        finally:
            self._analysis_stack.pop()
        self._targets[label] = target
        return target

    def _resolve(self, label: Label) -> Target:
        if label.repo == cfg.BUILTIN_REPO and str(label) in cfg.BUILTIN_FILES:
            return FileTarget(
                label, self.layout.builtin_file(label, cfg.BUILTIN_FILES[str(label)])
            )
        if label.is_external:
            return FileTarget(
                label, repositories.resolve_external_file(self.layout, label)
            )

        decls = self.package(label.package)
        decl = decls.get(label.name)
        if decl is not None:
            return self._analyze(decl)

        for other in decls.values():
            owner = other.predeclared_outputs().get(label.name)
            if owner is not None:
                # Analyzing the owner registers the action that writes the file.
                self.get(other.label)
                return FileTarget(
                    label,
                    self.layout.generated_file(label.package, label.name, owner=other.label),
                )

        source = os.path.join(
            self.workspace_dir,
            bazel_utils.normalize_relative_target_to_os_path(label.package),
            bazel_utils.normalize_relative_target_to_os_path(label.name),
        )
        if os.path.isfile(source):
            return FileTarget(label, self.layout.source_file(label))
        raise NoSuchTargetError(
            "no such target '{}': target '{}' not declared in package '{}'".format(
                label, label.name, label.package
            )
        )

    def _analyze(self, decl: RuleDecl) -> ConfiguredTarget:
        impl = rules.RULE_IMPLEMENTATIONS.get(decl.kind)
        if impl is None:
            raise RuleError(
                "{}: rule type '{}' of {} is not supported".format(
                    decl.location, decl.kind, decl.label
                )
            )
        logging.debug("analyzing %s", decl.label)
        checked = attrs.check_attrs(decl.kind, decl.label, decl.raw_attrs)
        schema = attrs.schema_for(decl.kind)

        attr_values: Dict[str, Any] = {}
        files: Dict[str, List[File]] = {}
        single_files = []
        executables: Dict[str, Optional[File]] = {}
        for name, attr in schema.items():
            value = checked[name]
            if not attr.is_label:
                attr_values[name] = value
                continue
            if attr.single_file:
                single_files.append(name)
            if value is None:
                attr_values[name] = None
                files[name] = []
                continue
            labels = [value] if attr.kind == attrs.LABEL else value
            targets = [self._dependency(decl, name, attr, l) for l in labels]
            attr_files = []
            for target in targets:
                attr_files.extend(self._attr_files(decl, name, attr, target))
            if attr.single_file and len(attr_files) != 1:
                raise RuleError(
                    "in {} rule {}: attribute '{}' must contain a single file".format(
                        decl.kind, decl.label, name
                    )
                )
            if attr.executable:
                executables[name] = targets[0].executable
            attr_values[name] = targets[0] if attr.kind == attrs.LABEL else targets
            files[name] = attr_files

        ctx = rules.RuleContext(
            decl.label,
            decl.kind,
            attr_values,
            files,
            self.layout,
            self.workspace_name,
            self.pex_builder,
            single_files=single_files,
            executables=executables,
        )
        target = impl(ctx)
        self.actions.extend(ctx.actions)
        return target

    def _dependency(self, decl: RuleDecl, name: str, attr: attrs.Attr, label: Label) -> Target:
        target = self.get(label)
        where = "in {} attribute of {} rule {}".format(name, decl.kind, decl.label)
        if isinstance(target, FileTarget):
            if not attr.allow_files:
                raise RuleError(
                    "{}: source file '{}' is misplaced here (expected no files)".format(
                        where, label
                    )
                )
            file_type = attrs.allowed_file_type(attr)
            if file_type is not None and not file_type.matches(target.file):
                raise RuleError(
                    "{}: source file '{}' is misplaced here (expected {})".format(
                        where, label, ", ".join(file_type.extensions)
                    )
                )
        for provider in attr.providers:
            if getattr(target, provider, None) is None:
                raise RuleError(
                    "{}: '{}' does not have mandatory providers: '{}'".format(
                        where, label, provider
                    )
                )
        if attr.executable and target.executable is None:
            raise RuleError(
                "{}: '{}' must be an executable rule".format(where, label)
            )
        return target

    def _attr_files(self, decl: RuleDecl, name: str, attr: attrs.Attr, target: Target) -> List[File]:
        file_type = attrs.allowed_file_type(attr)
        target_files = target.files.to_list()
        if file_type is None or isinstance(target, FileTarget):
            return target_files
        matching = file_type.filter(target_files)
        if target_files and not matching:
            raise RuleError(
                "in {} attribute of {} rule {}: '{}' does not produce any {} {} files "
                "(expected {})".format(
                    name,
                    decl.kind,
                    decl.label,
                    target.label,
                    decl.kind,
                    name,
                    ", ".join(file_type.extensions),
                )
            )
        return matching

    def configured(self, label: Union[Label, str]) -> ConfiguredTarget:
        """Like get(), but only for rules."""
        target = self.get(label)
        if not isinstance(target, ConfiguredTarget):
            raise NoSuchTargetError("'{}' is a file, not a rule".format(label))
        return target

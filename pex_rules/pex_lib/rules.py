"""Rule implementations for pex_library, pex_binary, pex_test and pex_pytest.

Each implementation receives a RuleContext whose attributes are already
checked and resolved, registers the actions it needs through the context and
returns a ConfiguredTarget. Nothing here touches the file system.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pex_rules.bazel_utils import Label, RuleError
from pex_rules.pex_lib import cfg, manifest
from pex_rules.pex_lib.actions import (
    Action,
    FileWriteAction,
    LinkAction,
    SpawnAction,
    TemplateExpandAction,
)
from pex_rules.pex_lib.files import File, OutputLayout, egg_file_types, pex_file_types
from pex_rules.pex_lib.providers import ConfiguredTarget, OrderedSet, PyInfo, Runfiles

# Attributes whose targets' runfiles are picked up by collect_default.
DEFAULT_RUNFILES_ATTRS = ("srcs", "deps", "data")


class RuleContext(object):
    """What a rule implementation gets to see of its target.

    `attr` holds attribute values, with label attributes resolved to targets;
    `files` the files of label attributes; `file` the single file of
    single_file attributes; `executable` the executable of executable
    attributes; `outputs` the predeclared outputs.
    """

    def __init__(
        self,
        label: Label,
        kind: str,
        attr: Dict[str, Any],
        files: Dict[str, List[File]],
        layout: OutputLayout,
        workspace_name: str,
        pex_builder: Sequence[str],
        single_files: Sequence[str] = (),
        executables: Optional[Dict[str, Optional[File]]] = None,
    ) -> None:
        self.label = label
        self.kind = kind
        self.layout = layout
        self.workspace_name = workspace_name
        self.pex_builder = list(pex_builder)
        self.attr = SimpleNamespace(**attr)
        self.files = SimpleNamespace(**files)
        self.file = SimpleNamespace(
            **{
                name: (files[name][0] if files.get(name) else None)
                for name in single_files
            }
        )
        self.executable = SimpleNamespace(**(executables or {}))
        self.outputs = SimpleNamespace(**self._predeclared_outputs())
        self.actions: List[Action] = []

    def _predeclared_outputs(self) -> Dict[str, File]:
        outputs = {}
        if self.kind in cfg.PEX_EXECUTABLE_RULE_TYPES:
            outputs["executable"] = self.layout.generated_file(
                self.label.package, self.label.name, owner=self.label
            )
        if self.kind in (cfg.PEX_BINARY_RULE, cfg.PEX_TEST_RULE):
            outputs["deploy_pex"] = self.layout.generated_file(
                self.label.package, self.label.name + ".pex", owner=self.label
            )
        return outputs

    @property
    def is_test(self) -> bool:
        return self.kind in cfg.PEX_TEST_RULE_TYPES

    def new_file(self, sibling: File, suffix: str) -> File:
        return self.layout.sibling(sibling, suffix)

    def runfiles(
        self,
        files: Iterable[File] = (),
        transitive_files: Iterable[File] = (),
        collect_default: bool = False,
    ) -> Runfiles:
        collected = OrderedSet(files)
        collected += transitive_files
        if collect_default:
            for attr_name in DEFAULT_RUNFILES_ATTRS:
                for target in getattr(self.attr, attr_name, None) or []:
                    if attr_name != "deps":
                        collected += target.files
                    collected += target.default_runfiles.files
        return Runfiles(collected)

    def file_action(self, output: File, content: str, executable: bool = False) -> None:
        self.actions.append(FileWriteAction(output, content, executable=executable))

    def template_action(
        self,
        template: File,
        output: File,
        substitutions: Mapping[str, str],
        executable: bool = False,
    ) -> None:
        self.actions.append(
            TemplateExpandAction(template, output, substitutions, executable=executable)
        )

    def action(
        self,
        mnemonic: str,
        inputs: Iterable[File],
        outputs: Sequence[File],
        arguments: Sequence[str],
        env: Mapping[str, str],
        execution_requirements: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.actions.append(
            SpawnAction(
                mnemonic,
                inputs,
                outputs,
                self.pex_builder + list(arguments),
                env,
                execution_requirements=execution_requirements,
            )
        )

    def link_action(self, mnemonic: str, src: File, dst: File) -> None:
        self.actions.append(LinkAction(mnemonic, src, dst))

    def result(
        self,
        files: Iterable[File] = (),
        runfiles: Optional[Runfiles] = None,
        py: Optional[PyInfo] = None,
    ) -> ConfiguredTarget:
        return ConfiguredTarget(
            self.label,
            self.kind,
            files=files,
            runfiles=runfiles,
            py=py,
            executable=getattr(self.outputs, "executable", None),
            test=self.is_test,
            attrs=vars(self.attr),
        )


def rule_error(ctx: RuleContext, msg: str) -> RuleError:
    return RuleError("in {} rule {}: {}".format(ctx.kind, ctx.label, msg))


def _collect_transitive_sources(ctx):
    source_files = OrderedSet()
    for dep in ctx.attr.deps:
        source_files += dep.py.transitive_sources
    source_files += pex_file_types.filter(ctx.files.srcs)
    return source_files


def _collect_transitive_eggs(ctx):
    transitive_eggs = OrderedSet()
    for dep in ctx.attr.deps:
        transitive_eggs += dep.py.transitive_eggs
    transitive_eggs += egg_file_types.filter(getattr(ctx.files, "eggs", []))
    return transitive_eggs


def _collect_transitive_reqs(ctx):
    transitive_reqs = OrderedSet()
    for dep in ctx.attr.deps:
        transitive_reqs += dep.py.transitive_reqs
    transitive_reqs += getattr(ctx.attr, "reqs", [])
    return transitive_reqs


def collect_transitive(ctx: RuleContext) -> PyInfo:
    return PyInfo(
        transitive_sources=_collect_transitive_sources(ctx),
        transitive_eggs=_collect_transitive_eggs(ctx),
        transitive_reqs=_collect_transitive_reqs(ctx),
    )


def _deps_runfiles(ctx):
    files = OrderedSet()
    for dep in ctx.attr.deps:
        files += dep.default_runfiles.files
    return files


def pex_library_impl(ctx: RuleContext) -> ConfiguredTarget:
    transitive_files = OrderedSet(ctx.files.srcs)
    transitive_files += _deps_runfiles(ctx)
    return ctx.result(
        files=[],
        py=collect_transitive(ctx),
        runfiles=ctx.runfiles(collect_default=True, transitive_files=transitive_files),
    )


# py_library only brings its own sources; eggs and requirements of its deps
# still flow through it.
py_library_impl = pex_library_impl


def filegroup_impl(ctx: RuleContext) -> ConfiguredTarget:
    files = OrderedSet(ctx.files.srcs)
    return ctx.result(
        files=files,
        runfiles=ctx.runfiles(files=files, collect_default=True),
    )


def make_manifest(ctx: RuleContext, py: PyInfo, runfiles: Runfiles, output: File) -> str:
    pex_files = {}
    pex_eggs = {}

    for f in py.transitive_eggs:
        # Dest path doesn't matter for eggs/wheels
        pex_eggs[f.path] = f.path

    for f in runfiles.files:
        pex_files[manifest.module_dest_path(f.short_path)] = f.path

    manifest_text = manifest.write_pex_manifest_text(
        pex_files, pex_eggs, py.transitive_reqs
    )
    ctx.file_action(output=output, content=manifest_text)
    return manifest_text


def main_module_name(main_file: File) -> str:
    """Translate main_file's short path into a python module name."""
    return manifest.module_dest_path(main_file.short_path).replace("/", ".")[:-3]


def pex_builder_arguments(
    attr: Any,
    transitive_eggs: Iterable[File],
    main_pkg: str,
    deploy_pex: File,
    manifest_file: File,
) -> List[str]:
    arguments: List[str] = [] if attr.zip_safe else ["--not-zip-safe"]
    arguments += [] if attr.pex_use_wheels else ["--no-use-wheel"]
    if attr.interpreter:
        arguments += ["--python", attr.interpreter]
    for egg in transitive_eggs:
        arguments += ["--find-links", egg.dirname]
    arguments += [
        # May be redundant since we also set PEX_ROOT
        "--pex-root", cfg.PEX_ROOT,
        "--entry-point", main_pkg,
        "--output-file", deploy_pex.path,
        "--cache-dir", cfg.PEX_CACHE_DIR,
        manifest_file.path,
    ]
    return arguments


def _entry_point(ctx) -> Tuple[str, Optional[File]]:
    if ctx.attr.entrypoint and ctx.file.main:
        raise rule_error(ctx, "Please specify either entrypoint or main, not both.")
    if ctx.attr.entrypoint:
        return ctx.attr.entrypoint, None
    if ctx.file.main:
        main_file = ctx.file.main
    else:
        py_srcs = pex_file_types.filter(ctx.files.srcs)
        if not py_srcs:
            raise rule_error(
                ctx,
                "no entry point: set `entrypoint` or `main`, or list a .py file in `srcs`.",
            )
        main_file = py_srcs[0]
    return main_module_name(main_file), main_file


def pex_binary_impl(ctx: RuleContext) -> ConfiguredTarget:
    """Shared by pex_binary and pex_test."""
    transitive_files = OrderedSet(ctx.files.srcs)

    main_pkg, main_file = _entry_point(ctx)
    if main_file:
        transitive_files.add(main_file)

    deploy_pex = ctx.outputs.deploy_pex

    py = collect_transitive(ctx)

    transitive_files += _deps_runfiles(ctx)
    runfiles = ctx.runfiles(collect_default=True, transitive_files=transitive_files)

    manifest_file = ctx.new_file(deploy_pex, ".manifest")
    make_manifest(ctx, py, runfiles, manifest_file)

    arguments = pex_builder_arguments(
        ctx.attr, py.transitive_eggs, main_pkg, deploy_pex, manifest_file
    )

    inputs = [manifest_file] + runfiles.files.to_list() + py.transitive_eggs.to_list()

    ctx.action(
        mnemonic=cfg.PEX_BUILDER_MNEMONIC,
        inputs=inputs,
        outputs=[deploy_pex],
        arguments=arguments,
        env=cfg.pex_builder_env(ctx.attr.pex_verbosity),
        execution_requirements=cfg.PEX_EXECUTION_REQUIREMENTS,
    )

    # foo.pex and foo are identical; both are kept since callers use either.
    executable = ctx.outputs.executable
    ctx.link_action(cfg.LINK_PEX_MNEMONIC, deploy_pex, executable)

    return ctx.result(files=[executable], runfiles=runfiles)


def get_runfile_path(ctx: RuleContext, f: File) -> str:
    """Return the path to f, relative to runfiles."""
    if ctx.workspace_name:
        return ctx.workspace_name + "/" + f.short_path
    return f.short_path


def launcher_substitutions(ctx: RuleContext, test_runner: File, test_files: Iterable[File]) -> Dict[str, str]:
    test_file_paths = ["${RUNFILES}/" + get_runfile_path(ctx, f) for f in test_files]
    return {
        "%test_runner%": get_runfile_path(ctx, test_runner),
        "%test_files%": " \\\n    ".join(test_file_paths),
    }


def pytest_pex_test_impl(ctx: RuleContext) -> ConfiguredTarget:
    test_runner = ctx.executable.runner
    output_file = ctx.outputs.executable

    ctx.template_action(
        template=ctx.file.launcher_template,
        output=output_file,
        substitutions=launcher_substitutions(ctx, test_runner, ctx.files.srcs),
        executable=True,
    )

    transitive_files = OrderedSet(ctx.files.srcs + [test_runner])
    transitive_files += _deps_runfiles(ctx)

    return ctx.result(
        files=[output_file],
        runfiles=ctx.runfiles(
            files=[output_file],
            transitive_files=transitive_files,
            collect_default=True,
        ),
    )


RULE_IMPLEMENTATIONS: Dict[str, Callable[[RuleContext], ConfiguredTarget]] = {
    cfg.PEX_LIBRARY_RULE: pex_library_impl,
    cfg.PEX_BINARY_RULE: pex_binary_impl,
    cfg.PEX_TEST_RULE: pex_binary_impl,
    cfg.PYTEST_PEX_TEST_RULE: pytest_pex_test_impl,
    cfg.PY_LIBRARY_RULE: py_library_impl,
    cfg.FILEGROUP_RULE: filegroup_impl,
}


def pex_pytest(
    name,
    srcs,
    deps=[],
    eggs=[],
    data=[],
    args=[],
    flaky=False,
    local=None,
    size=None,
    timeout=None,
    tags=[],
    **kwargs
):
    # type: (...) -> List[Tuple[str, Dict[str, Any]]]
    """Expand a pex_pytest macro into the rules it declares.

    This produces two things:

      1. A pex_binary (`<name>_runner`) containing all your code and its
         dependencies, plus py.test, with the entrypoint set to the py.test
         runner.
      2. A small shell script launching `<name>_runner` with each of the
         `srcs` enumerated as command line arguments. This is the actual test
         entrypoint.

    Returns (rule type, attributes) pairs.
    """
    if "main" in kwargs:
        raise RuleError("Specifying a `main` file makes no sense for pex_pytest.")
    if "entrypoint" in kwargs:
        raise RuleError("Do not specify `entrypoint` for pex_pytest.")

    runner_name = name + cfg.PYTEST_RUNNER_SUFFIX
    runner = dict(
        kwargs,
        name=runner_name,
        srcs=srcs,
        deps=deps,
        data=data,
        eggs=list(eggs) + cfg.PYTEST_EGGS,
        entrypoint=cfg.PYTEST_ENTRYPOINT,
    )
    test = dict(
        name=name,
        runner=":" + runner_name,
        args=args,
        data=data,
        flaky=flaky,
        local=local,
        size=size,
        srcs=srcs,
        timeout=timeout,
        tags=tags,
    )
    return [(cfg.PEX_BINARY_RULE, runner), (cfg.PYTEST_PEX_TEST_RULE, test)]


MACROS = {
    cfg.PEX_PYTEST_MACRO: pex_pytest,
}

# mypy: allow-untyped-defs

import os

import pytest

from pex_rules.bazel_utils import Label, NoSuchTargetError, RuleError
from pex_rules.pex_lib import cfg, repositories, rules
from pex_rules.pex_lib.actions import (
    FileWriteAction,
    LinkAction,
    SpawnAction,
    TemplateExpandAction,
)
from pex_rules.pex_lib.files import File, OutputLayout
from pex_rules.pex_lib.targets import TargetGraph

PEX_BUILDER = ["/usr/bin/pexbuilder"]

EXAMPLES_BUILD = """
load("//pex:pex_rules.bzl", "pex_binary", "pex_library", "pex_pytest")

pex_binary(
    name = "foo",
    srcs = ["foo.py"],
)

pex_library(
    name = "libfoo",
    srcs = ["foo.py"],
    reqs = [
        "flask",
        "pyyaml",
    ],
)

pex_pytest(
    name = "foo_test",
    size = "small",
    srcs = ["foo_test.py"],
    args = ["--strict"],
    deps = [":libfoo"],
)
"""

LIB_BUILD = """
pex_library(
    name = "base",
    srcs = ["base.py"],
    eggs = ["vendor/six.whl"],
    reqs = ["requests"],
)

pex_library(
    name = "util",
    srcs = ["util.py"],
    deps = [":base"],
    eggs = ["vendor/attrs.egg"],
    reqs = ["requests", "click"],
    data = ["util.json"],
)

filegroup(
    name = "configs",
    srcs = ["a.cfg", "b.cfg"],
)
"""

APP_BUILD = """
pex_binary(
    name = "app",
    srcs = ["app.py", "helper.py"],
    main = "main.py",
    deps = ["//lib:util"],
    data = ["//lib:configs"],
    interpreter = "/usr/bin/python3",
    zip_safe = False,
    pex_use_wheels = False,
    pex_verbosity = 3,
)

pex_binary(
    name = "tool",
    srcs = ["tool.py"],
    entrypoint = "app.tool_main",
)

pex_test(
    name = "app_test",
    srcs = ["app_test.py"],
    deps = ["//lib:base"],
    flaky = True,
)
"""


def _write(path, content=""):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
        f.write(content)


def _fake_fetch(layout, name, filename):
    repo_dir = repositories.repository_dir(layout, name)
    _write(os.path.join(repo_dir, "file", filename))
    _write(os.path.join(repo_dir, repositories.COMPLETE_MARKER))


@pytest.fixture
def workspace(tmp_path):
    ws = str(tmp_path)
    _write(os.path.join(ws, "WORKSPACE"), 'workspace(name = "pex_ws")\n')
    _write(os.path.join(ws, "examples", "BUILD"), EXAMPLES_BUILD)
    for name in ("foo.py", "foo_test.py"):
        _write(os.path.join(ws, "examples", name))
    _write(os.path.join(ws, "lib", "BUILD"), LIB_BUILD)
    for name in ("base.py", "util.py", "util.json", "a.cfg", "b.cfg", "vendor/six.whl", "vendor/attrs.egg"):
        _write(os.path.join(ws, "lib", name))
    _write(os.path.join(ws, "app", "BUILD"), APP_BUILD)
    for name in ("app.py", "helper.py", "main.py", "tool.py", "app_test.py"):
        _write(os.path.join(ws, "app", name))
    return ws


@pytest.fixture
def layout(workspace):
    layout = OutputLayout(workspace, os.path.join(workspace, "pex-out"))
    _fake_fetch(layout, "pytest_whl", "pytest-3.0.2-py2.py3-none-any.whl")
    _fake_fetch(layout, "py_whl", "py-1.4.31-py2.py3-none-any.whl")
    return layout


@pytest.fixture
def graph(layout):
    return TargetGraph(layout, PEX_BUILDER)


def _action_for(graph, output_path):
    for action in graph.actions:
        if any(o.path == output_path for o in action.outputs):
            return action
    raise AssertionError("no action creates " + output_path)


def _files(files):
    return [f.path for f in files]


def test_workspace_name(graph):
    assert graph.workspace_name == "pex_ws"


def test_default_workspace_name(tmp_path):
    _write(str(tmp_path / "WORKSPACE"))
    graph = TargetGraph(OutputLayout(str(tmp_path)), PEX_BUILDER)
    assert graph.workspace_name == "__main__"


def test_pex_library_provider(graph):
    util = graph.configured("//lib:util")
    assert util.files.to_list() == []
    assert _files(util.py.transitive_sources) == ["lib/base.py", "lib/util.py"]
    assert _files(util.py.transitive_eggs) == ["lib/vendor/six.whl", "lib/vendor/attrs.egg"]
    assert util.py.transitive_reqs.to_list() == ["requests", "click"]
    assert _files(util.runfiles.files) == ["lib/util.py", "lib/base.py", "lib/util.json"]
    assert graph.actions == []


def test_filegroup(graph):
    configs = graph.configured("//lib:configs")
    assert _files(configs.files) == ["lib/a.cfg", "lib/b.cfg"]


EXPECTED_APP_MANIFEST = """modules:
\tapp/app.py:app/app.py
\tapp/helper.py:app/helper.py
\tapp/main.py:app/main.py
\tlib/util.py:lib/util.py
\tlib/base.py:lib/base.py
\tlib/util.json:lib/util.json
\tlib/a.cfg:lib/a.cfg
\tlib/b.cfg:lib/b.cfg
requirements:
\trequests:requests
\tclick:click
prebuiltLibraries:
\tlib/vendor/six.whl:lib/vendor/six.whl
\tlib/vendor/attrs.egg:lib/vendor/attrs.egg
"""


def test_pex_binary_manifest(graph):
    app = graph.configured("//app:app")
    manifest = _action_for(graph, "pex-out/bin/app/app.pex.manifest")
    assert isinstance(manifest, FileWriteAction)
    assert manifest.content == EXPECTED_APP_MANIFEST
    assert _files(app.files) == ["pex-out/bin/app/app"]
    assert app.executable.path == "pex-out/bin/app/app"
    assert not app.test


def test_pex_binary_builder_invocation(graph):
    graph.configured("//app:app")
    build = _action_for(graph, "pex-out/bin/app/app.pex")
    assert isinstance(build, SpawnAction)
    assert build.mnemonic == "PexPython"
    assert build.argv == PEX_BUILDER + [
        "--not-zip-safe",
        "--no-use-wheel",
        "--python", "/usr/bin/python3",
        "--find-links", "lib/vendor",
        "--find-links", "lib/vendor",
        "--pex-root", ".pex",
        "--entry-point", "app.main",
        "--output-file", "pex-out/bin/app/app.pex",
        "--cache-dir", ".pex/build",
        "pex-out/bin/app/app.pex.manifest",
    ]
    assert build.env == {
        "PATH": "/bin:/usr/bin:/usr/local/bin",
        "PEX_VERBOSE": "3",
        "PEX_ROOT": ".pex",
    }
    assert build.execution_requirements == {"requires-network": "1"}
    assert _files(build.inputs)[0] == "pex-out/bin/app/app.pex.manifest"
    assert _files(build.inputs)[-2:] == ["lib/vendor/six.whl", "lib/vendor/attrs.egg"]


def test_pex_binary_action_order(graph):
    graph.configured("//app:app")
    assert [type(a) for a in graph.actions] == [FileWriteAction, SpawnAction, LinkAction]
    link = graph.actions[-1]
    assert link.mnemonic == "LinkPex"
    assert link.src.path == "pex-out/bin/app/app.pex"
    assert link.dst.path == "pex-out/bin/app/app"


def test_pex_binary_defaults_and_entrypoint(graph):
    graph.configured("//app:tool")
    build = _action_for(graph, "pex-out/bin/app/tool.pex")
    assert build.argv == PEX_BUILDER + [
        "--pex-root", ".pex",
        "--entry-point", "app.tool_main",
        "--output-file", "pex-out/bin/app/tool.pex",
        "--cache-dir", ".pex/build",
        "pex-out/bin/app/tool.pex.manifest",
    ]
    assert build.env["PEX_VERBOSE"] == "0"


def test_first_src_is_the_default_main(graph):
    graph.configured("//examples:foo")
    build = _action_for(graph, "pex-out/bin/examples/foo.pex")
    assert build.argv[build.argv.index("--entry-point") + 1] == "examples.foo"


def test_pex_test(graph):
    app_test = graph.configured("//app:app_test")
    assert app_test.test
    assert app_test.attrs["flaky"] is True
    assert app_test.attrs["size"] is None


def test_pex_pytest_macro(graph):
    assert [str(l) for l in graph.rules_in_package("examples")] == [
        "//examples:foo",
        "//examples:libfoo",
        "//examples:foo_test_runner",
        "//examples:foo_test",
    ]

    test = graph.configured("//examples:foo_test")
    assert test.test
    assert test.kind == cfg.PYTEST_PEX_TEST_RULE
    assert test.attrs["args"] == ["--strict"]
    assert test.attrs["size"] == "small"

    runner = graph.configured("//examples:foo_test_runner")
    assert runner.kind == cfg.PEX_BINARY_RULE
    build = _action_for(graph, "pex-out/bin/examples/foo_test_runner.pex")
    assert build.argv[build.argv.index("--entry-point") + 1] == "pytest"
    assert build.argv.count("--find-links") == 2
    assert "pex-out/external/pytest_whl/file" in build.argv
    assert "pex-out/external/py_whl/file" in build.argv

    manifest = _action_for(graph, "pex-out/bin/examples/foo_test_runner.pex.manifest")
    assert "requirements:\n\tflask:flask\n\tpyyaml:pyyaml\n" in manifest.content
    assert (
        "\tpex-out/external/pytest_whl/file/pytest-3.0.2-py2.py3-none-any.whl:"
        "pex-out/external/pytest_whl/file/pytest-3.0.2-py2.py3-none-any.whl\n"
    ) in manifest.content


def test_pytest_launcher(graph):
    test = graph.configured("//examples:foo_test")
    launcher = _action_for(graph, "pex-out/bin/examples/foo_test")
    assert isinstance(launcher, TemplateExpandAction)
    assert launcher.executable
    assert launcher.template.path == cfg.BUILTIN_FILES[cfg.DEFAULT_LAUNCHER_TEMPLATE_LABEL]
    assert launcher.substitutions == {
        "%test_runner%": "pex_ws/examples/foo_test_runner",
        "%test_files%": "${RUNFILES}/pex_ws/examples/foo_test.py",
    }
    assert _files(test.runfiles.files) == [
        "pex-out/bin/examples/foo_test",
        "examples/foo_test.py",
        "pex-out/bin/examples/foo_test_runner",
    ]


def test_pytest_launcher_joins_test_files(workspace, layout):
    _write(
        os.path.join(workspace, "multi", "BUILD"),
        'pex_pytest(name = "t", srcs = ["a_test.py", "b_test.py"])\n',
    )
    _write(os.path.join(workspace, "multi", "a_test.py"))
    _write(os.path.join(workspace, "multi", "b_test.py"))
    graph = TargetGraph(layout, PEX_BUILDER, workspace_name="")
    graph.configured("//multi:t")
    launcher = _action_for(graph, "pex-out/bin/multi/t")
    assert launcher.substitutions == {
        "%test_runner%": "multi/t_runner",
        "%test_files%": "${RUNFILES}/multi/a_test.py \\\n    ${RUNFILES}/multi/b_test.py",
    }


def test_generated_file_label(graph):
    target = graph.get("//app:app.pex")
    assert target.file.path == "pex-out/bin/app/app.pex"
    # Asking for the output analyzes its owner.
    assert _action_for(graph, "pex-out/bin/app/app.pex")


def test_memoized_analysis(graph):
    assert graph.get("//lib:util") is graph.get(Label("", "lib", "util"))
    graph.configured("//app:app")
    graph.configured("//app:app")
    assert len(graph.actions) == 3


def _graph_for(tmp_path, build, files=()):
    ws = str(tmp_path)
    _write(os.path.join(ws, "WORKSPACE"))
    _write(os.path.join(ws, "pkg", "BUILD"), build)
    for name in files:
        _write(os.path.join(ws, "pkg", name))
    return TargetGraph(OutputLayout(ws), PEX_BUILDER)


def test_entrypoint_and_main_conflict(tmp_path):
    graph = _graph_for(
        tmp_path,
        'pex_binary(name = "b", srcs = ["b.py"], main = "b.py", entrypoint = "b")\n',
        ["b.py"],
    )
    with pytest.raises(RuleError) as e:
        graph.configured("//pkg:b")
    assert "Please specify either entrypoint or main, not both." in str(e.value)


def test_pex_binary_without_entry_point(tmp_path):
    graph = _graph_for(tmp_path, 'pex_binary(name = "b", data = ["x.txt"])\n', ["x.txt"])
    with pytest.raises(RuleError) as e:
        graph.configured("//pkg:b")
    assert "no entry point" in str(e.value)


def test_pex_pytest_rejects_main(tmp_path):
    graph = _graph_for(
        tmp_path, 'pex_pytest(name = "t", srcs = ["t.py"], main = "t.py")\n', ["t.py"]
    )
    with pytest.raises(RuleError) as e:
        graph.configured("//pkg:t")
    assert "Specifying a `main` file makes no sense for pex_pytest." in str(e.value)


def test_pex_pytest_rejects_entrypoint(tmp_path):
    graph = _graph_for(
        tmp_path, 'pex_pytest(name = "t", srcs = ["t.py"], entrypoint = "t")\n', ["t.py"]
    )
    with pytest.raises(RuleError) as e:
        graph.configured("//pkg:t")
    assert "Do not specify `entrypoint` for pex_pytest." in str(e.value)


def test_pex_pytest_missing_srcs(tmp_path):
    graph = _graph_for(tmp_path, 'pex_pytest(name = "t")\n')
    with pytest.raises(RuleError) as e:
        graph.configured("//pkg:t")
    assert "srcs" in str(e.value)


def test_wrong_file_type(tmp_path):
    graph = _graph_for(tmp_path, 'pex_library(name = "l", srcs = ["l.txt"])\n', ["l.txt"])
    with pytest.raises(RuleError) as e:
        graph.configured("//pkg:l")
    assert "source file '//pkg:l.txt' is misplaced here (expected .py)" in str(e.value)


def test_rule_without_matching_files(tmp_path):
    graph = _graph_for(
        tmp_path,
        'filegroup(name = "fg", srcs = ["x.txt"])\n'
        'pex_library(name = "l", srcs = [":fg"])\n',
        ["x.txt"],
    )
    with pytest.raises(RuleError) as e:
        graph.configured("//pkg:l")
    assert "does not produce any pex_library srcs files" in str(e.value)


def test_deps_need_py_provider(tmp_path):
    graph = _graph_for(
        tmp_path,
        'pex_binary(name = "b", srcs = ["b.py"])\n'
        'pex_library(name = "l", deps = [":b"])\n',
        ["b.py"],
    )
    with pytest.raises(RuleError) as e:
        graph.configured("//pkg:l")
    assert "'//pkg:b' does not have mandatory providers: 'py'" in str(e.value)


def test_deps_reject_files(tmp_path):
    graph = _graph_for(tmp_path, 'pex_library(name = "l", deps = ["x.py"])\n', ["x.py"])
    with pytest.raises(RuleError) as e:
        graph.configured("//pkg:l")
    assert "expected no files" in str(e.value)


def test_dependency_cycle(tmp_path):
    graph = _graph_for(
        tmp_path,
        'pex_library(name = "a", deps = [":b"])\n'
        'pex_library(name = "b", deps = [":a"])\n',
    )
    with pytest.raises(RuleError) as e:
        graph.configured("//pkg:a")
    assert "cycle in dependency graph" in str(e.value)
    assert "//pkg:a\n    //pkg:b\n    //pkg:a" in str(e.value)


def test_missing_targets(tmp_path):
    graph = _graph_for(tmp_path, 'pex_library(name = "l", srcs = ["gone.py"])\n')
    with pytest.raises(NoSuchTargetError):
        graph.configured("//pkg:l")
    with pytest.raises(NoSuchTargetError):
        graph.configured("//pkg:nope")
    with pytest.raises(NoSuchTargetError):
        graph.configured("//nopkg:x")


def test_unsupported_rule(tmp_path):
    graph = _graph_for(tmp_path, 'genrule(name = "g", cmd = "true")\n')
    assert graph.rules_in_package("pkg") == []
    with pytest.raises(RuleError) as e:
        graph.configured("//pkg:g")
    assert "rule type 'genrule'" in str(e.value)


def test_duplicate_target_from_macro(tmp_path):
    graph = _graph_for(
        tmp_path,
        'pex_pytest(name = "t", srcs = ["t.py"])\n'
        'pex_library(name = "t_runner")\n',
        ["t.py"],
    )
    with pytest.raises(RuleError) as e:
        graph.package("pkg")
    assert "declared more than once" in str(e.value)


def test_missing_external_repository(tmp_path):
    graph = _graph_for(tmp_path, 'pex_library(name = "l", eggs = ["@py_whl//file"])\n')
    with pytest.raises(repositories.FetchError) as e:
        graph.configured("//pkg:l")
    assert "bzl-pex fetch" in str(e.value)


def test_select_resolves_to_default(tmp_path):
    graph = _graph_for(
        tmp_path,
        'pex_library(name = "l", srcs = select({"//conditions:default": ["a.py"]}))\n',
        ["a.py"],
    )
    assert _files(graph.configured("//pkg:l").py.transitive_sources) == ["pkg/a.py"]


def test_main_module_name():
    assert rules.main_module_name(File("app/tools/main.py", "app/tools/main.py")) == "app.tools.main"
    external = File("pex-out/external/tools/cli/main.py", "../tools/cli/main.py")
    assert rules.main_module_name(external) == "tools.cli.main"

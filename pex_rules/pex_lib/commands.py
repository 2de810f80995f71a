# mypy: allow-untyped-defs
import argparse
import os
import sys

from typing import Dict, List

from pex_rules import bazel_utils, runfiles
from pex_rules.bazel_utils import BazelError, Label
from pex_rules.pex_lib import cache, cfg, exec_wrapper, metrics, repositories
from pex_rules.pex_lib.actions import ActionRunner, FileWriteAction
from pex_rules.pex_lib.files import OutputLayout
from pex_rules.pex_lib.providers import ConfiguredTarget
from pex_rules.pex_lib.targets import TargetGraph


def default_pex_builder():
    # type: () -> List[str]
    return [sys.executable, "-m", "pex_rules.pex_wrapper"]


def _layout(args):
    # type: (argparse.Namespace) -> OutputLayout
    return OutputLayout(args.workspace, args.output_base)


def _graph(args, layout):
    # type: (argparse.Namespace, OutputLayout) -> TargetGraph
    pex_builder = [args.pex_builder] if args.pex_builder else default_pex_builder()
    return TargetGraph(
        layout,
        pex_builder,
        build_cache=cache.get_build_file_cache(layout.workspace_dir),
    )


def expand_targets(args, graph):
    # type: (argparse.Namespace, TargetGraph) -> List[Label]
    labels = []  # type: List[Label]
    for pattern in bazel_utils.expand_target_patterns(args.workspace, args.targets):
        if pattern.name is None:
            labels.extend(graph.rules_in_package(pattern.package))
        else:
            labels.append(Label("", pattern.package, pattern.name))
    if not labels:
        raise BazelError("No targets specified.")
    return labels


def _build(args, layout, graph, labels):
    # type: (argparse.Namespace, OutputLayout, TargetGraph, List[Label]) -> List[ConfiguredTarget]
    with metrics.create_and_register_timer("analysis_ms"):
        targets = [graph.configured(label) for label in labels]
    runner = ActionRunner(layout, use_cache=not args.no_cache)
    with metrics.create_and_register_timer("execution_ms"):
        runner.run(graph.actions)
    metrics.set_gauge("targets", len(targets))
    return targets


def _single_target(args, graph):
    # type: (argparse.Namespace, TargetGraph) -> ConfiguredTarget
    labels = expand_targets(args, graph)
    if len(labels) != 1:
        raise BazelError(
            "expected exactly one target, got {}: {}".format(
                len(labels), " ".join(str(l) for l in labels)
            )
        )
    return graph.configured(labels[0])


def cmd_build(args):
    # type: (argparse.Namespace) -> None
    layout = _layout(args)
    graph = _graph(args, layout)
    for target in _build(args, layout, graph, expand_targets(args, graph)):
        if not target.files:
            print("Target {} up-to-date (nothing to build)".format(target.label))
            continue
        print("Target {} up-to-date:".format(target.label))
        for f in target.files:
            print("  " + f.path)


def cmd_run(args):
    # type: (argparse.Namespace) -> None
    layout = _layout(args)
    graph = _graph(args, layout)
    target = _single_target(args, graph)
    if target.executable is None:
        raise BazelError("cannot run target {}: not executable".format(target.label))
    _build(args, layout, graph, [target.label])

    root = runfiles.build_runfiles_tree(
        layout, target.executable, target.runfiles.files, graph.workspace_name
    )
    env = dict(os.environ)
    env["RUNFILES"] = root
    binary = layout.abspath(target.executable)
    exec_wrapper.execve(binary, [binary] + list(args.run_args), env)


def matches_tag_filters(tags, tag_filters):
    # type: (List[str], List[str]) -> bool
    """`--test_tag_filters` semantics: every "-tag" must be absent, and when
    any positive tag is given at least one must be present."""
    required = [t for t in tag_filters if not t.startswith("-")]
    excluded = [t[1:] for t in tag_filters if t.startswith("-")]
    if any(t in tags for t in excluded):
        return False
    return not required or any(t in tags for t in required)


def _run_test(args, layout, graph, target):
    # type: (argparse.Namespace, OutputLayout, TargetGraph, ConfiguredTarget) -> str
    root = runfiles.build_runfiles_tree(
        layout, target.executable, target.runfiles.files, graph.workspace_name
    )
    env = dict(os.environ)
    env.update(
        RUNFILES=root,
        TEST_SRCDIR=root,
        TEST_WORKSPACE=graph.workspace_name,
    )
    binary = layout.abspath(target.executable)
    argv = [binary] + list(target.attrs.get("args") or []) + list(args.test_arg)
    timeout = cfg.timeout_for_test(target.attrs.get("size"), target.attrs.get("timeout"))
    attempts = cfg.FLAKY_TEST_ATTEMPTS if target.attrs.get("flaky") else 1

    status = "FAILED"
    for attempt in range(1, attempts + 1):
        result = exec_wrapper.run_with_timeout(binary, argv, env=env, timeout=timeout)
        if result.timed_out:
            status = "TIMEOUT"
        elif result.exit_code == 0:
            status = "PASSED"
        else:
            status = "FAILED"
        if status == "PASSED":
            break
        if attempt < attempts:
            print(
                "{} {} (attempt {} of {}), retrying".format(
                    target.label, status, attempt, attempts
                ),
                file=sys.stderr,
            )
    print("{:<60} {} in {:.1f}s".format(str(target.label), status, result.duration_s))
    return status


def cmd_test(args):
    # type: (argparse.Namespace) -> None
    layout = _layout(args)
    graph = _graph(args, layout)
    tag_filters = [t for t in args.test_tag_filters.split(",") if t]
    labels = []
    for label in expand_targets(args, graph):
        target = graph.configured(label)
        if not target.test:
            continue
        if not matches_tag_filters(target.attrs.get("tags") or [], tag_filters):
            continue
        labels.append(label)
    if not labels:
        raise BazelError("No test targets were found, yet testing was requested.")

    targets = _build(args, layout, graph, labels)
    results = {}  # type: Dict[str, str]
    for target in targets:
        results[str(target.label)] = _run_test(args, layout, graph, target)

    failed = sorted(label for label, status in results.items() if status != "PASSED")
    metrics.set_gauge("tests_failed", len(failed))
    print(
        "Executed {} out of {} test(s): {} passed, {} failed".format(
            len(results), len(results), len(results) - len(failed), len(failed)
        )
    )
    if failed:
        sys.exit(1)


def manifest_text(graph, target):
    # type: (TargetGraph, ConfiguredTarget) -> str
    if target.kind not in (cfg.PEX_BINARY_RULE, cfg.PEX_TEST_RULE):
        raise BazelError("{} is a {}, not a pex binary".format(target.label, target.kind))
    wanted = graph.layout.generated_file(
        target.label.package, target.label.name + ".pex.manifest"
    )
    for action in graph.actions:
        if isinstance(action, FileWriteAction) and action.outputs[0] == wanted:
            return action.content
    raise BazelError("no manifest was generated for {}".format(target.label))


def cmd_manifest(args):
    # type: (argparse.Namespace) -> None
    layout = _layout(args)
    graph = _graph(args, layout)
    target = _single_target(args, graph)
    sys.stdout.write(manifest_text(graph, target))


def cmd_fetch(args):
    # type: (argparse.Namespace) -> None
    layout = _layout(args)
    fetched = repositories.pex_repositories(layout, force=args.force)
    metrics.set_gauge("repositories_fetched", len(fetched))
    if not fetched:
        print("All repositories are up-to-date.")


def register_cmd_build(sp):
    sap = sp.add_parser("build", help="Build pex targets.")
    sap.add_argument("targets", nargs="+", help="target patterns, e.g. //foo:bar or //foo/...")
    sap.set_defaults(func=cmd_build)


def register_cmd_run(sp):
    sap = sp.add_parser("run", help="Build and run a pex binary.")
    sap.add_argument("target")
    sap.add_argument("run_args", nargs=argparse.REMAINDER, help="arguments after --")
    sap.set_defaults(func=_cmd_run_single)


def _cmd_run_single(args):
    args.targets = [args.target]
    if args.run_args and args.run_args[0] == "--":
        args.run_args = args.run_args[1:]
    cmd_run(args)


def register_cmd_test(sp):
    sap = sp.add_parser("test", help="Build and run pex tests.")
    sap.add_argument("targets", nargs="+")
    sap.add_argument(
        "--test-tag-filters",
        default="",
        help="comma separated tags; '-tag' excludes tests carrying it",
    )
    sap.add_argument(
        "--test-arg",
        action="append",
        default=[],
        help="extra argument passed to every test; may be repeated",
    )
    sap.set_defaults(func=cmd_test)


def register_cmd_manifest(sp):
    sap = sp.add_parser("manifest", help="Print the pex manifest of a target.")
    sap.add_argument("target")
    sap.set_defaults(func=_cmd_manifest_single)


def _cmd_manifest_single(args):
    args.targets = [args.target]
    cmd_manifest(args)


def register_cmd_fetch(sp):
    sap = sp.add_parser("fetch", help="Download the third party files pex rules use.")
    sap.add_argument("--force", action="store_true", help="fetch again even if present")
    sap.set_defaults(func=cmd_fetch)


def register_all(sp):
    register_cmd_build(sp)
    register_cmd_run(sp)
    register_cmd_test(sp)
    register_cmd_manifest(sp)
    register_cmd_fetch(sp)

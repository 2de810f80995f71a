"""The pex manifest: the text file handed to the pex builder.

Three sections, each a header line followed by tab-indented key:value
lines::

    modules:
    \tfoo/bar.py:foo/bar.py
    requirements:
    \tflask:flask
    prebuiltLibraries:
    \tpex-out/external/py_whl/file/py.whl:pex-out/external/py_whl/file/py.whl

`modules` maps the path inside the archive to the path of the file relative
to the execution root. Requirements and prebuilt libraries map to themselves.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, NamedTuple

from pex_rules.bazel_utils import BazelError

MODULES = "modules"
REQUIREMENTS = "requirements"
PREBUILT_LIBRARIES = "prebuiltLibraries"
SECTIONS = (MODULES, REQUIREMENTS, PREBUILT_LIBRARIES)


class ManifestError(BazelError):
    pass


class Manifest(NamedTuple):
    modules: Dict[str, str]
    requirements: List[str]
    prebuilt_libraries: List[str]


def textify_pex_input(input_map: Mapping[str, str]) -> str:
    """Converts map to text format. Each file on separate line."""
    kv_pairs = ["\t%s:%s" % (pkg, input_map[pkg]) for pkg in input_map.keys()]
    return "\n".join(kv_pairs)


def write_pex_manifest_text(files: Mapping[str, str], eggs: Mapping[str, str], requirements: Iterable[str]) -> str:
    reqs = list(requirements)
    return (
        "\n".join(
            [
                "%s:\n%s" % (MODULES, textify_pex_input(files)),
                "%s:\n%s" % (REQUIREMENTS, textify_pex_input(dict(zip(reqs, reqs)))),
                "%s:\n%s" % (PREBUILT_LIBRARIES, textify_pex_input(eggs)),
            ]
        )
        + "\n"
    )


def module_dest_path(short_path: str) -> str:
    """Where a runfile lands inside the pex: its short path, minus the "../"
    external files carry."""
    if short_path.startswith("../"):
        return short_path[3:]
    return short_path


def parse_manifest(text: str) -> Manifest:
    sections: Dict[str, Dict[str, str]] = {}
    current = None
    for lineno, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            continue
        if not line.startswith("\t"):
            header = line.rstrip()
            if not header.endswith(":") or header[:-1] not in SECTIONS:
                raise ManifestError(
                    "line {}: unknown manifest section {!r}".format(lineno, line)
                )
            current = header[:-1]
            if current in sections:
                raise ManifestError(
                    "line {}: duplicate manifest section {!r}".format(lineno, current)
                )
            sections[current] = {}
            continue
        if current is None:
            raise ManifestError("line {}: entry outside of any section".format(lineno))
        key, sep, value = _split_entry(current, line[1:])
        if not sep:
            raise ManifestError(
                "line {}: expected key:value, got {!r}".format(lineno, line[1:])
            )
        sections[current][key] = value

    missing = [s for s in SECTIONS if s not in sections]
    if missing:
        raise ManifestError("missing manifest section(s): " + ", ".join(missing))
    return Manifest(
        modules=sections[MODULES],
        requirements=list(sections[REQUIREMENTS]),
        prebuilt_libraries=list(sections[PREBUILT_LIBRARIES]),
    )


def _split_entry(section: str, entry: str):
    # Requirements and prebuilt libraries map to themselves and may contain
    # ':' themselves (URLs, for one), so split those in the middle.
    if section != MODULES and len(entry) % 2 == 1:
        half = len(entry) // 2
        if entry[half] == ":" and entry[:half] == entry[half + 1 :]:
            return entry[:half], ":", entry[half + 1 :]
    return entry.partition(":")

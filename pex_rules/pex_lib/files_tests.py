import os

from pex_rules.bazel_utils import Label
from pex_rules.pex_lib import cfg
from pex_rules.pex_lib.files import File, OutputLayout, egg_file_types, pex_file_types


def test_file_properties():
    f = File("pex-out/bin/foo/bar.pex", "foo/bar.pex", is_source=False)
    assert f.dirname == "pex-out/bin/foo"
    assert f.basename == "bar.pex"
    assert f.extension == "pex"
    assert f == File("pex-out/bin/foo/bar.pex", "other")
    assert len({f, File("pex-out/bin/foo/bar.pex", "foo/bar.pex")}) == 1


def test_file_types():
    files = [File(p, p) for p in ("a.py", "b.whl", "c.txt", "d.egg", "e.pyc")]
    assert [f.path for f in pex_file_types.filter(files)] == ["a.py"]
    assert [f.path for f in egg_file_types.filter(files)] == ["b.whl", "d.egg"]


def test_layout_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv(cfg.OUTPUT_BASE_ENV, raising=False)
    layout = OutputLayout(str(tmp_path))
    assert layout.output_base == os.path.join(str(tmp_path), "pex-out")
    assert layout.bin_dir == "pex-out/bin"
    assert layout.action_cache_file == os.path.join(
        str(tmp_path), "pex-out", "action_cache.json"
    )


def test_layout_output_base_from_env(tmp_path, monkeypatch):
    out = tmp_path / "elsewhere"
    monkeypatch.setenv(cfg.OUTPUT_BASE_ENV, str(out))
    layout = OutputLayout(str(tmp_path / "ws"))
    assert layout.output_base == str(out)
    # Outside the workspace, paths stay absolute.
    assert layout.bin_dir == os.path.join(str(out), "bin")


def test_source_and_generated_files(tmp_path):
    layout = OutputLayout(str(tmp_path), str(tmp_path / "pex-out"))
    src = layout.source_file(Label("", "foo", "sub/bar.py"))
    assert src.path == src.short_path == "foo/sub/bar.py"
    assert src.is_source

    top = layout.source_file(Label("", "", "main.py"))
    assert top.path == "main.py"

    gen = layout.generated_file("foo", "bin.pex")
    assert gen.path == "pex-out/bin/foo/bin.pex"
    assert gen.short_path == "foo/bin.pex"
    assert not gen.is_source

    manifest = layout.sibling(gen, ".manifest")
    assert manifest.path == "pex-out/bin/foo/bin.pex.manifest"
    assert manifest.short_path == "foo/bin.pex.manifest"

    assert layout.abspath(gen) == os.path.join(
        str(tmp_path), "pex-out", "bin", "foo", "bin.pex"
    )


def test_external_file(tmp_path):
    layout = OutputLayout(str(tmp_path), str(tmp_path / "pex-out"))
    f = layout.external_file(Label("py_whl", "file", "file"), "py-1.4.31-py2.py3-none-any.whl")
    assert f.path == "pex-out/external/py_whl/file/py-1.4.31-py2.py3-none-any.whl"
    assert f.short_path == "../py_whl/file/py-1.4.31-py2.py3-none-any.whl"
    assert f.dirname == "pex-out/external/py_whl/file"

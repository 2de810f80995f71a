# mypy: allow-untyped-defs

import hashlib
import io
import os
import tarfile

import pytest

from pex_rules.bazel_utils import Label, NoSuchTargetError
from pex_rules.pex_lib import cfg, repositories
from pex_rules.pex_lib.files import OutputLayout
from pex_rules.pex_lib.repositories import FetchError

WHEEL = b"not really a wheel"


def _sha256(data):
    return hashlib.sha256(data).hexdigest()


def _tarball(files):
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


@pytest.fixture
def layout(tmp_path):
    return OutputLayout(str(tmp_path), str(tmp_path / "pex-out"))


class _Payloads(dict):
    pass


@pytest.fixture
def payloads(monkeypatch):
    served = _Payloads()
    served.requested = []

    def urlopen(url, timeout=None):
        served.requested.append(url)
        if url not in served:
            raise repositories.urllib.error.URLError("404")
        return io.BytesIO(served[url])

    monkeypatch.setattr(repositories.urllib.request, "urlopen", urlopen)
    return served


def test_download(tmp_path, payloads):
    payloads["http://x/a.whl"] = WHEEL
    dest = str(tmp_path / "d" / "a.whl")
    repositories.download("http://x/a.whl", dest, _sha256(WHEEL))
    with open(dest, "rb") as f:
        assert f.read() == WHEEL
    assert os.listdir(str(tmp_path / "d")) == ["a.whl"]


def test_download_checksum_mismatch(tmp_path, payloads):
    payloads["http://x/a.whl"] = WHEEL
    dest = str(tmp_path / "d" / "a.whl")
    with pytest.raises(FetchError) as e:
        repositories.download("http://x/a.whl", dest, "0" * 64)
    assert "checksum mismatch" in str(e.value)
    assert os.listdir(str(tmp_path / "d")) == []


def test_download_error(tmp_path, payloads):
    with pytest.raises(FetchError) as e:
        repositories.download("http://x/missing.whl", str(tmp_path / "a.whl"), "0" * 64)
    assert "error downloading http://x/missing.whl" in str(e.value)


def test_fetch_http_file(layout, payloads, capsys):
    repo = cfg.HttpFile("py_whl", "http://x/py-1.4.31-py2.py3-none-any.whl", _sha256(WHEEL))
    payloads[repo.url] = WHEEL

    assert repositories.pex_repositories(layout, [repo]) == ["py_whl"]
    assert "Fetching @py_whl from " + repo.url in capsys.readouterr().out
    assert repositories.is_fetched(layout, "py_whl")

    f = repositories.resolve_external_file(layout, Label("py_whl", "file", "file"))
    assert f.path == "pex-out/external/py_whl/file/py-1.4.31-py2.py3-none-any.whl"
    assert f.short_path == "../py_whl/file/py-1.4.31-py2.py3-none-any.whl"

    # Already in place.
    assert repositories.pex_repositories(layout, [repo]) == []
    assert len(payloads.requested) == 1
    assert repositories.pex_repositories(layout, [repo], force=True) == ["py_whl"]
    assert len(payloads.requested) == 2


def test_fetch_archive_strips_prefix(layout, payloads):
    data = _tarball(
        {
            "virtualenv-15.0.2/virtualenv.py": b"print('venv')\n",
            "virtualenv-15.0.2/docs/index.rst": b"docs\n",
            "other/ignored.txt": b"",
        }
    )
    repo = cfg.HttpArchive(
        "virtualenv", "http://x/virtualenv-15.0.2.tar.gz", _sha256(data), "virtualenv-15.0.2"
    )
    payloads[repo.url] = data

    repositories.fetch_repository(layout, repo)
    repo_dir = repositories.repository_dir(layout, "virtualenv")
    assert os.path.isfile(os.path.join(repo_dir, "virtualenv.py"))
    assert os.path.isfile(os.path.join(repo_dir, "docs", "index.rst"))
    assert not os.path.exists(os.path.join(repo_dir, "other"))

    f = repositories.resolve_external_file(layout, Label("virtualenv", "", "virtualenv.py"))
    assert f.path == "pex-out/external/virtualenv/virtualenv.py"
    assert f.short_path == "../virtualenv/virtualenv.py"


def test_fetch_archive_with_wrong_prefix(layout, payloads):
    data = _tarball({"pkg/a.py": b""})
    repo = cfg.HttpArchive("pkg", "http://x/pkg.tar.gz", _sha256(data), "pkg-1.0")
    payloads[repo.url] = data
    with pytest.raises(FetchError) as e:
        repositories.fetch_repository(layout, repo)
    assert "prefix 'pkg-1.0' not found" in str(e.value)
    assert not repositories.is_fetched(layout, "pkg")


def test_resolve_unfetched_repository(layout):
    with pytest.raises(FetchError) as e:
        repositories.resolve_external_file(layout, Label("pytest_whl", "file", "file"))
    assert "run `bzl-pex fetch` first" in str(e.value)


def test_resolve_missing_external_file(layout, payloads):
    repo = cfg.HttpFile("py_whl", "http://x/py.whl", _sha256(WHEEL))
    payloads[repo.url] = WHEEL
    repositories.fetch_repository(layout, repo)
    with pytest.raises(NoSuchTargetError):
        repositories.resolve_external_file(layout, Label("py_whl", "", "nope.py"))

"""Fetches the third party files the pex rules depend on.

Every repository lands under <output_base>/external/<name>/: http files as
file/<basename of the url>, archives unpacked with their strip prefix
removed.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tarfile
import tempfile
import urllib.error
import urllib.request

from typing import Iterable, List, Optional, Union

from pex_rules import bazel_utils
from pex_rules.bazel_utils import BazelError, Label, NoSuchTargetError
from pex_rules.pex_lib import cfg
from pex_rules.pex_lib.files import File, OutputLayout

Repository = Union[cfg.HttpFile, cfg.HttpArchive]

# Marker written once a repository is completely in place.
COMPLETE_MARKER = ".fetched"


class FetchError(BazelError):
    pass


def _sha256(path: str) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        while True:
            buf = f.read(1024 * 1024)
            if not buf:
                break
            h.update(buf)
    return h.hexdigest()


def download(url: str, dest: str, sha256: str) -> None:
    """Download `url` to `dest`, checking its sha256 before moving it in place."""
    os.makedirs(os.path.dirname(dest), exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=os.path.dirname(dest), prefix=".download-")
    try:
        with os.fdopen(fd, "wb") as out:
            try:
                with urllib.request.urlopen(
                    url, timeout=cfg.DOWNLOAD_TIMEOUT_SECS
                ) as response:
                    shutil.copyfileobj(response, out)
            except (urllib.error.URLError, OSError) as e:
                raise FetchError("error downloading {}: {}".format(url, e))
        actual = _sha256(tmp)
        if actual != sha256:
            raise FetchError(
                "checksum mismatch for {}: expected {}, got {}".format(url, sha256, actual)
            )
        os.replace(tmp, dest)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)


def _extract(archive: str, dest: str, strip_prefix: str) -> None:
    prefix = strip_prefix.rstrip("/") + "/" if strip_prefix else ""
    with tarfile.open(archive, "r:*") as tarball:
        members = []
        for member in tarball.getmembers():
            if prefix:
                if not member.name.startswith(prefix):
                    continue
                member.name = member.name[len(prefix) :]
            if not member.name or member.name.startswith("/") or ".." in member.name.split("/"):
                continue
            members.append(member)
        if prefix and not members:
            raise FetchError(
                "prefix '{}' not found in archive {}".format(strip_prefix, archive)
            )
        tarball.extractall(path=dest, members=members)


def repository_dir(layout: OutputLayout, name: str) -> str:
    return os.path.join(layout.external_dir, name)


def is_fetched(layout: OutputLayout, name: str) -> bool:
    return os.path.exists(os.path.join(repository_dir(layout, name), COMPLETE_MARKER))


def fetch_repository(layout: OutputLayout, repo: Repository, force: bool = False) -> bool:
    """Fetch one repository. Returns False when it was already in place."""
    if is_fetched(layout, repo.name) and not force:
        logging.debug("%s already fetched", repo.name)
        return False

    repo_dir = repository_dir(layout, repo.name)
    if os.path.exists(repo_dir):
        shutil.rmtree(repo_dir)
    print("Fetching @{} from {}".format(repo.name, repo.url))

    filename = os.path.basename(repo.url)
    if isinstance(repo, cfg.HttpArchive):
        with tempfile.TemporaryDirectory() as tmp_dir:
            archive = os.path.join(tmp_dir, filename)
            download(repo.url, archive, repo.sha256)
            _extract(archive, repo_dir, repo.strip_prefix)
    else:
        download(repo.url, os.path.join(repo_dir, "file", filename), repo.sha256)

    with open(os.path.join(repo_dir, COMPLETE_MARKER), "w"):
        pass
    return True


def pex_repositories(
    layout: OutputLayout,
    repositories: Optional[Iterable[Repository]] = None,
    force: bool = False,
) -> List[str]:
    """Rules to be invoked for remote dependencies; returns the names fetched."""
    if repositories is None:
        repositories = list(cfg.HTTP_FILES) + list(cfg.HTTP_ARCHIVES)
    fetched = []
    for repo in repositories:
        if fetch_repository(layout, repo, force=force):
            fetched.append(repo.name)
    return fetched


def resolve_external_file(layout: OutputLayout, label: Label) -> File:
    """Map `@repo//pkg:name` onto a file of a fetched repository.

    `@repo//file` names the single file an http_file downloaded.
    """
    repo_dir = repository_dir(layout, label.repo)
    if not is_fetched(layout, label.repo):
        raise FetchError(
            "external repository '@{}' is not available (needed by {}); "
            "run `bzl-pex fetch` first".format(label.repo, label)
        )

    if label.package == "file" and label.name == "file":
        file_dir = os.path.join(repo_dir, "file")
        names = sorted(os.listdir(file_dir)) if os.path.isdir(file_dir) else []
        if len(names) != 1:
            raise NoSuchTargetError(
                "expected exactly one file in @{}//file, found {}".format(
                    label.repo, names
                )
            )
        return layout.external_file(label, names[0])

    path = os.path.join(
        repo_dir,
        bazel_utils.normalize_relative_target_to_os_path(label.package),
        bazel_utils.normalize_relative_target_to_os_path(label.name),
    )
    if not os.path.isfile(path):
        raise NoSuchTargetError("no such file '{}'".format(label))
    return layout.external_file(label, label.name)

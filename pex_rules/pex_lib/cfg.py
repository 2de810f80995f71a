from __future__ import annotations

import os

from typing import Dict, NamedTuple, Optional

###
### General configuration.
###
DEFAULT_OUTPUT_BASE_NAME = "pex-out"
BIN_DIR_NAME = "bin"
EXTERNAL_DIR_NAME = "external"
ACTION_CACHE_FILE = "action_cache.json"

DEBUG_ENV = "PEX_RULES_DEBUG"
OUTPUT_BASE_ENV = "PEX_RULES_OUTPUT_BASE"
METRICS_FILE_ENV = "PEX_RULES_METRICS_FILE"


def debug_enabled() -> bool:
    return bool(os.environ.get(DEBUG_ENV))


###
### Rule configuration.
###
PEX_LIBRARY_RULE = "pex_library"
PEX_BINARY_RULE = "pex_binary"
PEX_TEST_RULE = "pex_test"
PEX_PYTEST_MACRO = "pex_pytest"
PYTEST_PEX_TEST_RULE = "_pytest_pex_test"
PY_LIBRARY_RULE = "py_library"
FILEGROUP_RULE = "filegroup"

PEX_EXECUTABLE_RULE_TYPES = (PEX_BINARY_RULE, PEX_TEST_RULE, PYTEST_PEX_TEST_RULE)
PEX_TEST_RULE_TYPES = (PEX_TEST_RULE, PYTEST_PEX_TEST_RULE)

# Clauses that show up in BUILD files but never declare a target.
NON_TARGET_CLAUSES = (
    "load",
    "package",
    "licenses",
    "exports_files",
    "workspace",
)

PEX_SRC_EXTENSIONS = (".py",)
EGG_EXTENSIONS = (".egg", ".whl")

# Label of the launcher template shipped inside this package.
BUILTIN_REPO = "pex_rules"
DEFAULT_LAUNCHER_TEMPLATE_LABEL = "@pex_rules//pex:testlauncher.sh.template"
BUILTIN_FILES = {
    DEFAULT_LAUNCHER_TEMPLATE_LABEL: os.path.join(
        os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
        "testlauncher.sh.template",
    ),
}

PYTEST_ENTRYPOINT = "pytest"
PYTEST_EGGS = ["@pytest_whl//file", "@py_whl//file"]
PYTEST_RUNNER_SUFFIX = "_runner"

###
### Pex builder configuration.
###
PEX_ROOT = ".pex"
PEX_CACHE_DIR = ".pex/build"
PEX_BUILDER_PATH = "/bin:/usr/bin:/usr/local/bin"
PEX_BUILDER_MNEMONIC = "PexPython"
LINK_PEX_MNEMONIC = "LinkPex"
PEX_EXECUTION_REQUIREMENTS = {"requires-network": "1"}


def pex_builder_env(verbosity: int) -> Dict[str, str]:
    return {
        "PATH": PEX_BUILDER_PATH,
        "PEX_VERBOSE": str(verbosity),
        # So pex doesn't try to unpack into $HOME/.pex
        "PEX_ROOT": PEX_ROOT,
    }


###
### Test configuration.
###
TIMEOUT_SECONDS = {
    "short": 60,
    "moderate": 300,
    "long": 900,
    "eternal": 3600,
}
SIZE_TIMEOUT_SECONDS = {
    "small": 60,
    "medium": 300,
    "large": 900,
    "enormous": 3600,
}
DEFAULT_TEST_SIZE = "medium"
FLAKY_TEST_ATTEMPTS = 3


def timeout_for_test(size: Optional[str], timeout: Optional[str]) -> int:
    if timeout:
        return TIMEOUT_SECONDS[timeout]
    return SIZE_TIMEOUT_SECONDS[size or DEFAULT_TEST_SIZE]


###
### Third party repositories.
###
class HttpFile(NamedTuple):
    name: str
    url: str
    sha256: str


class HttpArchive(NamedTuple):
    name: str
    url: str
    sha256: str
    strip_prefix: str


HTTP_FILES = (
    HttpFile(
        name="pytest_whl",
        url="https://pypi.python.org/packages/c4/bf/80d1cd053b1c86f6ecb23300fba3a7c572419b5edc155da0f3f104d42775/pytest-3.0.2-py2.py3-none-any.whl",
        sha256="4b0872d00159dd8d7a27c4a45a2be77aac8a6e70c3af9a7c76c040c3e3715b9d",
    ),
    HttpFile(
        name="py_whl",
        url="https://pypi.python.org/packages/19/f2/4b71181a49a4673a12c8f5075b8744c5feb0ed9eba352dd22512d2c04d47/py-1.4.31-py2.py3-none-any.whl",
        sha256="4a3e4f3000c123835ac39cab5ccc510642153bc47bc1f13e2bbb53039540ae69",
    ),
    HttpFile(
        name="wheel_src",
        url="https://pypi.python.org/packages/c9/1d/bd19e691fd4cfe908c76c429fe6e4436c9e83583c4414b54f6c85471954a/wheel-0.29.0.tar.gz",
        sha256="1ebb8ad7e26b448e9caa4773d2357849bf80ff9e313964bcaf79cbf0201a1648",
    ),
    HttpFile(
        name="setuptools_src",
        url="https://pypi.python.org/packages/d3/16/21cf5dc6974280197e42d57bf7d372380562ec69aef9bb796b5e2dbbed6e/setuptools-20.10.1.tar.gz",
        sha256="3e59c885f09ed0d631816468e431b347b5103339e77a21cbf56df6283319b5dd",
    ),
    HttpFile(
        name="pex_src",
        url="https://pypi.python.org/packages/6d/b9/aacedca314f7061f84c021c9eaac9ceac9c57f277e4e9bbb6d998facec8d/pex-1.1.14.tar.gz",
        sha256="2d0f5ec39d61c0ef0f806247d7e2702e5354583df7f232db5d9a3b287173e857",
    ),
    HttpFile(
        name="requests_src",
        url="https://pypi.python.org/packages/2e/ad/e627446492cc374c284e82381215dcd9a0a87c4f6e90e9789afefe6da0ad/requests-2.11.1.tar.gz",
        sha256="5acf980358283faba0b897c73959cecf8b841205bb4b2ad3ef545f46eae1a133",
    ),
)

HTTP_ARCHIVES = (
    HttpArchive(
        name="virtualenv",
        url="https://pypi.python.org/packages/5c/79/5dae7494b9f5ed061cff9a8ab8d6e1f02db352f3facf907d9eb614fb80e9/virtualenv-15.0.2.tar.gz",
        sha256="fab40f32d9ad298fba04a260f3073505a16d52539a84843cf8c8369d4fd17167",
        strip_prefix="virtualenv-15.0.2",
    ),
)

DOWNLOAD_TIMEOUT_SECS = 60

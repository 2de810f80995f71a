# mypy: allow-untyped-defs

from __future__ import annotations

import hashlib
import json
import logging
import os
import shlex
import shutil
import subprocess
import sys
import time

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from pex_rules import atomic
from pex_rules.bazel_utils import BazelError
from pex_rules.pex_lib import cfg, metrics
from pex_rules.pex_lib.files import File, OutputLayout


def sha256_file(path):
    with open(path, "rb") as f:
        h = hashlib.sha256()
        h.update(str(os.stat(path).st_mode).encode("utf-8"))
        while True:
            buf = f.read(1024 * 1024)
            if not buf:
                break
            h.update(buf)
        return h.hexdigest()


class ActionError(BazelError):
    pass


class Action(object):
    mnemonic = "Action"

    def __init__(self, inputs: Iterable[File], outputs: Sequence[File]) -> None:
        self.inputs = list(inputs)
        self.outputs = list(outputs)

    def describe(self) -> str:
        return "{} {}".format(self.mnemonic, ", ".join(o.path for o in self.outputs))

    def definition(self) -> Dict[str, Any]:
        """Everything besides input contents that determines the outputs."""
        return {
            "mnemonic": self.mnemonic,
            "outputs": [o.path for o in self.outputs],
        }

    def run(self, layout: OutputLayout) -> None:
        raise NotImplementedError


class FileWriteAction(Action):
    mnemonic = "FileWrite"

    def __init__(self, output: File, content: str, executable: bool = False) -> None:
        super(FileWriteAction, self).__init__([], [output])
        self.content = content
        self.executable = executable

    def definition(self):
        d = super(FileWriteAction, self).definition()
        d.update(content=self.content, executable=self.executable)
        return d

    def run(self, layout):
        atomic.atomic_write(
            layout.abspath(self.outputs[0]), self.content, executable=self.executable
        )


class TemplateExpandAction(Action):
    mnemonic = "TemplateExpand"

    def __init__(self, template: File, output: File, substitutions: Mapping[str, str], executable: bool = False) -> None:
        super(TemplateExpandAction, self).__init__([template], [output])
        self.template = template
        self.substitutions = dict(substitutions)
        self.executable = executable

    def definition(self):
        d = super(TemplateExpandAction, self).definition()
        d.update(substitutions=self.substitutions, executable=self.executable)
        return d

    def expand(self, template_text: str) -> str:
        for key, value in self.substitutions.items():
            template_text = template_text.replace(key, value)
        return template_text

    def run(self, layout):
        with open(layout.abspath(self.template)) as f:
            content = self.expand(f.read())
        atomic.atomic_write(
            layout.abspath(self.outputs[0]), content, executable=self.executable
        )


class SpawnAction(Action):
    """Runs an external program, e.g. the pex builder."""

    def __init__(
        self,
        mnemonic: str,
        inputs: Iterable[File],
        outputs: Sequence[File],
        argv: Sequence[str],
        env: Mapping[str, str],
        execution_requirements: Optional[Mapping[str, str]] = None,
    ) -> None:
        super(SpawnAction, self).__init__(inputs, outputs)
        self.mnemonic = mnemonic
        self.argv = list(argv)
        self.env = dict(env)
        # Recorded for parity with the host build system; nothing here
        # sandboxes, so "requires-network" is always satisfied.
        self.execution_requirements = dict(execution_requirements or {})

    def definition(self):
        d = super(SpawnAction, self).definition()
        d.update(
            argv=self.argv, env=self.env, execution_requirements=self.execution_requirements
        )
        return d

    def run(self, layout):
        for output in self.outputs:
            os.makedirs(os.path.dirname(layout.abspath(output)), exist_ok=True)
        if cfg.debug_enabled():
            print(
                "exec: {env} {args}".format(
                    env=" ".join(
                        "{}={}".format(k, shlex.quote(v)) for k, v in sorted(self.env.items())
                    ),
                    args=" ".join(shlex.quote(a) for a in self.argv),
                ),
                file=sys.stderr,
            )
        proc = subprocess.run(
            self.argv,
            env=self.env,
            cwd=layout.workspace_dir,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
        if proc.returncode != 0:
            sys.stderr.buffer.write(proc.stdout)
            raise ActionError(
                "{} failed: {} returned non-zero exit status {}".format(
                    self.describe(), self.argv[0], proc.returncode
                )
            )
        missing = [o.path for o in self.outputs if not os.path.exists(layout.abspath(o))]
        if missing:
            raise ActionError(
                "{} did not create output(s): {}".format(self.describe(), ", ".join(missing))
            )


class LinkAction(Action):
    """Hard-link `src` to `dst`, falling back to a copy across devices."""

    def __init__(self, mnemonic: str, src: File, dst: File) -> None:
        super(LinkAction, self).__init__([src], [dst])
        self.mnemonic = mnemonic
        self.src = src
        self.dst = dst

    def run(self, layout):
        src = layout.abspath(self.src)
        dst = layout.abspath(self.dst)
        os.makedirs(os.path.dirname(dst), exist_ok=True)
        if os.path.lexists(dst):
            os.remove(dst)
        try:
            os.link(src, dst)
        except OSError:
            shutil.copy2(src, dst)


class ActionCache(object):
    """Remembers, per output path, the key of the action that last wrote it.

    Stored as json in the output base. The key covers the action definition
    and the contents of every input, so touching a file without changing it
    does not trigger a rebuild.
    """

    def __init__(self, file_name: str) -> None:
        self.file_name = file_name
        self._cache: Dict[str, str] = {}
        self._dirty = False

    def load(self) -> None:
        try:
            with open(self.file_name) as f:
                self._cache = json.load(f)
        except FileNotFoundError:
            self._cache = {}
        except ValueError:
            corrupted = self.file_name + time.strftime(".%m_%d_%Y_%H_%M_%S_corrupted")
            os.rename(self.file_name, corrupted)
            print(
                "WARNING: Corrupted action cache. Saved as: {}".format(corrupted),
                file=sys.stderr,
            )
            self._cache = {}

    def save(self) -> None:
        if not self._dirty:
            return
        atomic.atomic_write(self.file_name, json.dumps(self._cache, indent=1, sort_keys=True))
        self._dirty = False

    def __enter__(self) -> ActionCache:
        self.load()
        return self

    def __exit__(self, *args: Any) -> None:
        self.save()

    def is_up_to_date(self, action: Action, key: str, layout: OutputLayout) -> bool:
        for output in action.outputs:
            if self._cache.get(output.path) != key:
                return False
            if not os.path.exists(layout.abspath(output)):
                return False
        return True

    def record(self, action: Action, key: str) -> None:
        for output in action.outputs:
            self._cache[output.path] = key
        self._dirty = True

    def forget(self, action: Action) -> None:
        for output in action.outputs:
            if self._cache.pop(output.path, None) is not None:
                self._dirty = True


class ActionRunner(object):
    """Runs actions one after the other, in the order they were registered."""

    def __init__(self, layout: OutputLayout, use_cache: bool = True) -> None:
        self.layout = layout
        self.use_cache = use_cache
        self.executed: List[Action] = []
        self.skipped: List[Action] = []

    def action_key(self, action: Action) -> str:
        h = hashlib.sha256()
        h.update(json.dumps(action.definition(), sort_keys=True).encode("utf-8"))
        for f in action.inputs:
            path = self.layout.abspath(f)
            if not os.path.exists(path):
                raise ActionError(
                    "missing input file '{}' for {}".format(f.path, action.describe())
                )
            h.update(f.path.encode("utf-8"))
            if os.path.isdir(path):
                raise ActionError(
                    "input '{}' of {} is a directory; use a filegroup instead".format(
                        f.path, action.describe()
                    )
                )
            h.update(sha256_file(path).encode("utf-8"))
        return h.hexdigest()

    def run(self, actions: Iterable[Action]) -> None:
        cache = ActionCache(self.layout.action_cache_file)
        cache.load()
        try:
            for action in actions:
                key = self.action_key(action)
                if self.use_cache and cache.is_up_to_date(action, key, self.layout):
                    logging.debug("up-to-date: %s", action.describe())
                    self.skipped.append(action)
                    continue
                logging.info("%s", action.describe())
                timer = metrics.Timer("action_{}_ms".format(action.mnemonic.lower()))
                with timer:
                    try:
                        action.run(self.layout)
                    except BaseException:
                        cache.forget(action)
                        raise
                metrics.log_cumulative_rate(timer.name, timer.get_interval_ms())
                cache.record(action, key)
                self.executed.append(action)
        finally:
            cache.save()
        metrics.log_cumulative_rate("actions_executed", len(self.executed))
        metrics.log_cumulative_rate("actions_skipped", len(self.skipped))

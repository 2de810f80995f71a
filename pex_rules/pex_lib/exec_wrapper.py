"""
Helper functions that replace os.exec* functions. This is mostly for debugging
and metrics purposes.
"""
import os
import shlex
import subprocess
import sys

from typing import List, Mapping, NamedTuple, Optional

from pex_rules.pex_lib import cfg, metrics


def _debug_echo(prefix, binary, args, env=None):
    # type: (str, str, List[str], Optional[Mapping[str, str]]) -> None
    if not cfg.debug_enabled():
        return
    cmd = binary + " " + " ".join(shlex.quote(s) for s in args[1:])
    if env is not None:
        cmd = " ".join("{}={}".format(k, shlex.quote(v)) for k, v in env.items()) + " " + cmd
    print("{}: {}".format(prefix, cmd), file=sys.stderr)


def execve(binary, args, env):
    # type: (str, List[str], Mapping[str, str]) -> None
    metrics.report_metrics()
    _debug_echo("exec", binary, args, env)
    os.execve(binary, args, env)


class RunResult(NamedTuple):
    exit_code: Optional[int]
    timed_out: bool
    duration_s: float


# Run the binary in a subprocess, killing it once `timeout` seconds have
# passed. Used by `bzl-pex test`, which needs the exit code of every test.
def run_with_timeout(binary, args, env=None, timeout=None):
    # type: (str, List[str], Optional[Mapping[str, str]], Optional[float]) -> RunResult
    _debug_echo("subprocess", binary, args)
    timer = metrics.Timer("subprocess_ms")
    with timer:
        proc = subprocess.Popen(args, executable=binary, env=env)
        try:
            exit_code = proc.wait(timeout=timeout)  # type: Optional[int]
            timed_out = False
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
            exit_code = None
            timed_out = True
        except KeyboardInterrupt:
            # Wait for child process to die on graceful interrupt.
            proc.wait()
            raise
    return RunResult(exit_code, timed_out, timer.get_interval_ms() / 1000.0)

"""
Metrics library for bzl-pex.
Timings and counters are collected in-process and reported once, on exit: to
stderr in debug mode and as json to $PEX_RULES_METRICS_FILE when set.
"""

from __future__ import annotations

import contextlib
import json
import os
import sys
import time

from collections import OrderedDict
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from pex_rules.pex_lib import cfg


class StatsError(Exception):
    pass


class Stats(object):
    def __init__(self) -> None:
        self.mode = "_bzl_pex_unknown"
        self.timers: List[Timer] = []
        self.gauges: Dict[str, int] = OrderedDict()
        self.rates: Dict[str, int] = OrderedDict()
        self.error: Optional[Tuple[str, str]] = None
        self.reported = False

    def claim(self, key: str, cumulative: bool = False) -> None:
        """Reserve `key`; only cumulative rates may be logged more than once."""
        if cumulative and key in self.rates:
            return
        if key in self.rates or key in self.gauges or any(t.name == key for t in self.timers):
            raise StatsError("duplicate stats name {}".format(key))


_stats = Stats()


def _now_ms() -> int:
    return int(time.monotonic() * 1000)


class Timer(object):
    """Measures wall time in milliseconds; usable as a context manager."""

    def __init__(self, name: str, interval_ms: Optional[int] = None) -> None:
        if not name.endswith("_ms"):
            raise StatsError("By convention, Timer names must end with _ms")
        self.name = name
        self.interval_ms = interval_ms
        self._started = _now_ms()

    def start(self) -> None:
        self._started = _now_ms()

    def stop(self) -> None:
        self.interval_ms = _now_ms() - self._started

    def get_interval_ms(self) -> int:
        # A running timer reports the time elapsed so far.
        if self.interval_ms is None:
            return _now_ms() - self._started
        return self.interval_ms

    def __enter__(self) -> Timer:
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()

    def __str__(self) -> str:
        return "%s: %dms" % (self.name, self.get_interval_ms())


def reset() -> None:
    """Forget everything recorded so far. Tests only."""
    global _stats
    _stats = Stats()


def create_and_register_timer(name: str, interval_ms: Optional[int] = None) -> Timer:
    timer = Timer(name, interval_ms)
    _stats.claim(name)
    _stats.timers.append(timer)
    return timer


def set_gauge(key: str, value: int) -> None:
    _stats.claim(key)
    _stats.gauges[key] = value


def log_cumulative_rate(key: str, value: int) -> None:
    _stats.claim(key, cumulative=True)
    _stats.rates[key] = _stats.rates.get(key, 0) + value


def set_mode(new_mode: str) -> None:
    _stats.mode = new_mode


def has_error() -> bool:
    return _stats.error is not None


def set_error(error_type: str, error_text: str) -> None:
    _stats.error = (error_type, error_text)


def collect() -> Dict[str, Any]:
    values: Dict[str, int] = {t.name: t.get_interval_ms() for t in _stats.timers}
    values.update(_stats.gauges)
    values.update(_stats.rates)
    data: Dict[str, Any] = {
        "bzl_pex": {"cmd": sys.argv, "mode": _stats.mode},
        "metrics": values,
    }
    if _stats.error is not None:
        error_type, error_text = _stats.error
        data["error"] = {"text": error_text, "type": error_type}
    return data


def _print_section(title: str, lines: Iterable[str]) -> None:
    lines = list(lines)
    if not lines:
        return
    print(title + ":", file=sys.stderr)
    for line in lines:
        print("    " + line, file=sys.stderr)


def report_metrics() -> None:
    """
    Report all metrics recorded so far. This should only be called at the end of a program's
    lifetime.
    """
    if _stats.reported:
        return
    _stats.reported = True

    if cfg.debug_enabled():
        _print_section("Timers", (str(t) for t in _stats.timers))
        _print_section("Gauges", ("{}: {}".format(k, v) for k, v in _stats.gauges.items()))
        _print_section(
            "Cumulative rates", ("{}: {}".format(k, v) for k, v in _stats.rates.items())
        )

    metrics_file = os.environ.get(cfg.METRICS_FILE_ENV)
    if not metrics_file:
        return
    try:
        with open(metrics_file, "w") as f:
            json.dump(collect(), f, indent=1, sort_keys=True)
    except OSError as e:
        print(
            "WARNING: unable to write metrics to {}: {}".format(metrics_file, e),
            file=sys.stderr,
        )


@contextlib.contextmanager
def main_metrics_scope() -> Iterator[None]:
    create_and_register_timer("total_duration_ms").start()
    try:
        yield
    except SystemExit as e:
        if not has_error() and e.code not in (None, 0):
            set_error("unknown", str(e))
        raise
    except BaseException as e:
        if not has_error():
            set_error("unknown", "{}: {}".format(type(e).__name__, e))
        raise
    finally:
        # exec_wrapper reports on its own before replacing the process.
        report_metrics()

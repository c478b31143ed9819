"""Failure injection for HTTP clients, driven by a rules file that is watched for changes.

Each non-empty line of the rules file is one rule, made of space-separated
``key=value`` pairs. Known keys are ``dest`` (the ``host:port`` a request or
connection goes to), ``stage`` (``dial`` or ``request``), ``rate`` (a failure
percentage such as ``50%``) and ``redial`` (drop idle connections before the
request stage). A request or connection fails when any rule matches it.
"""

from __future__ import annotations

import logging
import os
import random
import sys
import threading
from dataclasses import dataclass
from urllib.parse import urlsplit

import requests
from requests.adapters import HTTPAdapter
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

_INT64_MIN = -(1 << 63)
_INT64_MAX = (1 << 63) - 1

# inotify reports a finished in-place write as "closed" and a write through a
# temporary file as a move onto the rules path.
if sys.platform.startswith("linux"):
    _RELOAD_EVENT_TYPES = frozenset({"closed"})
else:
    _RELOAD_EVENT_TYPES = frozenset({"created", "modified"})


class FlakyError(requests.exceptions.ConnectionError):
    """A request or connection was failed on purpose by a rule."""


@dataclass(frozen=True)
class Rule:
    """One rule: its pairs sorted by key, with the fixed pairs removed."""

    pairs: tuple[tuple[str, str], ...]

    def __str__(self) -> str:
        return " ".join(f"{key}={value}" for key, value in self.pairs)


def parse_pair(text: str) -> tuple[str, str]:
    """Split ``key=value`` at the first equals sign."""
    key, sep, value = text.partition("=")
    if not sep:
        raise ValueError("malformed pair: expected format key=value")
    return key, value


def _parse_int(text: str) -> int:
    """Parse an integer literal with an optional 0x, 0o, 0b or leading-0 octal prefix."""
    digits = text
    negative = False
    if digits[:1] in ("+", "-") and digits:
        negative = digits[0] == "-"
        digits = digits[1:]
    if not digits or digits[:1] in ("+", "-") or digits != digits.strip():
        raise ValueError(f"invalid integer {text!r}")
    if len(digits) > 1 and digits[0] == "0" and digits[1] not in "xXoObB":
        digits = "0o" + digits[1:]
    try:
        number = int(digits, 0)
    except ValueError:
        raise ValueError(f"invalid integer {text!r}") from None
    if negative:
        number = -number
    if not _INT64_MIN <= number <= _INT64_MAX:
        raise ValueError(f"integer out of range: {text!r}")
    return number


def _parse_rate(value: str) -> int:
    return _parse_int(value[:-1] if value.endswith("%") else value)


def parse_rules(text: str, fixed_pairs=()) -> list[Rule]:
    """Parse a rules file, dropping rules whose fixed-pair keys carry other values."""
    fixed = list(fixed_pairs)
    rules = []
    for line in text.strip().split("\n"):
        by_key: dict[str, str] = {}
        for part in line.split(" "):
            key, value = parse_pair(part)
            if key == "rate":
                _parse_rate(value)
            by_key[key] = value
        if any(key in by_key and by_key[key] != value for key, value in fixed):
            continue
        for key, _ in fixed:
            by_key.pop(key, None)
        rules.append(Rule(tuple(sorted(by_key.items()))))
    return rules


class ConfigChangeAwaiter:
    """Waits until the rules of a RoundTripper are reloaded."""

    def __init__(self, round_tripper: RoundTripper, old_revision: int):
        self._round_tripper = round_tripper
        self._old_revision = old_revision

    def wait(self, timeout=None) -> None:
        """Block until a reload happened; raise TimeoutError if ``timeout`` expires first."""
        rt = self._round_tripper
        with rt._config:
            changed = rt._config.wait_for(
                lambda: rt._revision != self._old_revision, timeout
            )
        if not changed:
            raise TimeoutError("rules were not reloaded in time")


class _RulesFileHandler(FileSystemEventHandler):
    def __init__(self, round_tripper: RoundTripper):
        super().__init__()
        self._round_tripper = round_tripper

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        if event.event_type == "moved":
            path = event.dest_path
        elif event.event_type in _RELOAD_EVENT_TYPES:
            path = event.src_path
        else:
            return
        if os.path.abspath(os.fsdecode(path)) != self._round_tripper.rules_path:
            return
        try:
            self._round_tripper.load_rules()
        except (OSError, ValueError) as err:
            logger.error("loading failure rules failed: %s", err)


def _dial_guarded(base, should_fail):
    class _GuardedPool(base):
        def _new_conn(self):
            host = f"[{self.host}]" if ":" in self.host else self.host
            if should_fail(f"{host}:{self.port}"):
                raise FlakyError("dial failed by flakyhttp")
            return super()._new_conn()

    _GuardedPool.__name__ = f"Flaky{base.__name__}"
    return _GuardedPool


class RoundTripper(HTTPAdapter):
    """A requests transport adapter that fails requests and connections as the rules say.

    The extra positional arguments are application-specific ``key=value``
    pairs; rules naming such a key with a different value are ignored.
    The rules file should live in a directory of its own.
    """

    def __init__(self, rules_path, *args):
        self.rules_path = os.path.abspath(os.fspath(rules_path))
        self._fixed_pairs = tuple(parse_pair(p) for p in args)
        self._config = threading.Condition()
        self._revision = 0
        self._rules: tuple[Rule, ...] = ()
        super().__init__()

        directory = os.path.dirname(self.rules_path)
        if not os.path.isdir(directory):
            raise FileNotFoundError(f"no such directory: {directory}")
        self._observer = Observer()
        self._observer.daemon = True
        self._observer.start()
        try:
            self._observer.schedule(_RulesFileHandler(self), directory, recursive=False)
            self.load_rules()
        except FileNotFoundError:
            pass
        except BaseException:
            self._stop_watching()
            raise

    def init_poolmanager(self, *args, **kwargs):
        super().init_poolmanager(*args, **kwargs)
        pools = self.poolmanager.pool_classes_by_scheme
        self.poolmanager.pool_classes_by_scheme = {
            scheme: _dial_guarded(pool_class, self._fail_dial)
            for scheme, pool_class in pools.items()
        }

    def load_rules(self) -> None:
        """Read and install the rules file; raise if it is missing or malformed."""
        with open(self.rules_path, encoding="utf-8") as f:
            rules = parse_rules(f.read(), self._fixed_pairs)
        with self._config:
            self._revision += 1
            self._rules = tuple(rules)
            self._config.notify_all()

    def config_change_awaiter(self) -> ConfigChangeAwaiter:
        """Return an awaiter for the next reload after the current one."""
        with self._config:
            return ConfigChangeAwaiter(self, self._revision)

    def _fail_common(self, stage: str, dest: str) -> bool:
        with self._config:
            for rule in self._rules:
                if self._rule_matches(rule, stage, dest):
                    return True
            return False

    def _rule_matches(self, rule: Rule, stage: str, dest: str) -> bool:
        for key, value in rule.pairs:
            if key == "dest":
                if value != dest:
                    return False
            elif key == "rate":
                if not random.random() * 100 < _parse_rate(value):
                    return False
            elif key == "stage":
                if value != stage:
                    return False
            elif key == "redial":
                # irrelevant for the dial stage, which comes after the request stage
                if stage == "request":
                    self.poolmanager.clear()
            else:
                raise RuntimeError(f"BUG: unexpected pair {key}={value}")
        return True

    def _fail_dial(self, addr: str) -> bool:
        return self._fail_common("dial", addr)

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        host = urlsplit(request.url).netloc.rpartition("@")[2]
        if self._fail_common("request", host):
            raise FlakyError("request failed by flakyhttp", request=request)
        return super().send(
            request, stream=stream, timeout=timeout, verify=verify, cert=cert, proxies=proxies
        )

    def _stop_watching(self) -> None:
        if self._observer.is_alive():
            self._observer.stop()
            self._observer.join()

    def close(self) -> None:
        """Stop watching the rules file and close all connections."""
        self._stop_watching()
        super().close()

    def __enter__(self) -> RoundTripper:
        return self

    def __exit__(self, *args) -> None:
        self.close()
"""Status of the servers of a RobustIRC network."""

from __future__ import annotations

import json
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

import requests

from robustinternal import robusthttp

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_TIME_RE = re.compile(r"(.{19})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})")


@dataclass
class ServerStatus:
    """What one server reports about itself and the network."""

    server: str = ""
    state: str = ""
    leader: str = ""
    peers: list[str] = field(default_factory=list)
    applied_index: int = 0
    commit_index: int = 0
    last_contact: datetime = ZERO_TIME
    executable_hash: str = ""
    current_time: datetime = ZERO_TIME


def _time(value):
    match = _TIME_RE.fullmatch(value) if isinstance(value, str) else None
    if match is None:
        raise ValueError(f"expected an RFC 3339 time, got {value!r}")
    base, fraction, zone = match.groups()
    fraction = "." + fraction[:6].ljust(6, "0") if fraction else ""
    return datetime.fromisoformat(base + fraction + ("+00:00" if zone == "Z" else zone))


def _uint64(value):
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < 1 << 64:
        raise ValueError(f"expected an unsigned 64-bit integer, got {value!r}")
    return value


def _str(value):
    if not isinstance(value, str):
        raise ValueError(f"expected a string, got {value!r}")
    return value


def _strs(value):
    if not isinstance(value, list):
        raise ValueError(f"expected a list of strings, got {value!r}")
    return [_str(v) for v in value]


_FIELDS = {
    "server": ("server", _str),
    "state": ("state", _str),
    "leader": ("leader", _str),
    "peers": ("peers", _strs),
    "appliedindex": ("applied_index", _uint64),
    "commitindex": ("commit_index", _uint64),
    "lastcontact": ("last_contact", _time),
    "executablehash": ("executable_hash", _str),
    "currenttime": ("current_time", _time),
}


def parse_status(data, server=None) -> ServerStatus:
    """Build a ServerStatus from a JSON object or its text.

    Keys match case-insensitively, unknown keys and nulls are ignored, and a
    given ``server`` overrides the reported one.
    """
    if isinstance(data, (str, bytes, bytearray)):
        data = json.loads(data)
    if not isinstance(data or {}, dict):
        raise ValueError("status must be a JSON object")
    values = {}
    for key, value in (data or {}).items():
        spec = _FIELDS.get(key.lower())
        if spec is not None and value is not None:
            values[spec[0]] = spec[1](value)
    if server is not None:
        values["server"] = server
    return ServerStatus(**values)


def get_server_status(server, network_password) -> ServerStatus:
    """Fetch the status of one server (host:port or an https:// URL)."""
    url = server if server.startswith("https://") else f"https://{server}/"
    with robusthttp.client(network_password, True) as session:
        with session.get(url, headers={"Accept": "application/json"}, timeout=5.0) as resp:
            if resp.status_code != requests.codes.ok:
                raise requests.HTTPError(
                    f"Expected HTTP OK, got {resp.status_code} {resp.reason}",
                    response=resp,
                )
            return parse_status(resp.content)


def collect_statuses(servers, network_password) -> dict[str, ServerStatus]:
    """Fetch all statuses concurrently, keyed by server; the first failure is raised."""
    servers = list(servers)
    if not servers:
        return {}
    with ThreadPoolExecutor(max_workers=len(servers)) as pool:
        futures = [(s, pool.submit(get_server_status, s, network_password)) for s in servers]
    errors = [f.exception() for _, f in futures if f.exception() is not None]
    if errors:
        raise errors[0]
    return {s: replace(f.result(), server=s) for s, f in futures}
"""HTTP clients for a RobustIRC network that send the network password on every request."""

from __future__ import annotations

import os
import ssl
from dataclasses import dataclass

import requests
from requests.adapters import HTTPAdapter

from robustinternal.flakyhttp import RoundTripper

NETWORK_USER = "robustirc"

# (connect, read) timeouts in seconds.
DEADLINED_TIMEOUT = (2.0, 10.0)
UNDEADLINED_TIMEOUT = (10.0, None)
FLAKY_TIMEOUT = (30.0, None)


@dataclass
class Settings:
    """Process-wide transport settings.

    ``tls_ca_file`` replaces the system CAs when non-empty, and a non-empty
    ``flakyhttp_rules_path`` enables failure injection from that rules file.
    """

    tls_ca_file: str = ""
    flakyhttp_rules_path: str = ""
    peer_addr: str = ""


settings = Settings()


def configure(tls_ca_file=None, flakyhttp_rules_path=None, peer_addr=None) -> Settings:
    """Update the settings; arguments left as None keep their current value."""
    if tls_ca_file is not None:
        settings.tls_ca_file = os.fspath(tls_ca_file)
    if flakyhttp_rules_path is not None:
        settings.flakyhttp_rules_path = os.fspath(flakyhttp_rules_path)
    if peer_addr is not None:
        settings.peer_addr = peer_addr
    return settings


class _DefaultsMixin:
    """Applies a trusted CA file and default timeouts to every request."""

    ca_file: str | None = None
    default_timeout = UNDEADLINED_TIMEOUT

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        if verify is True and self.ca_file:
            verify = self.ca_file
        if timeout is None:
            timeout = self.default_timeout
        return super().send(
            request, stream=stream, timeout=timeout, verify=verify, cert=cert, proxies=proxies
        )


class _RobustAdapter(_DefaultsMixin, HTTPAdapter):
    pass


class _FlakyAdapter(_DefaultsMixin, RoundTripper):
    pass


def _check_ca_file(path: str) -> None:
    with open(path, "rb"):
        pass
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    try:
        context.load_verify_locations(cafile=path)
    except ssl.SSLError as err:
        raise ValueError(f"Could not parse {path!r}, try deleting it") from err


def transport(deadlined) -> HTTPAdapter:
    """Return a transport adapter that respects the settings.

    A deadlined transport limits connecting to 2 seconds and every read to
    10 seconds; otherwise only connecting is limited, to 10 seconds.
    """
    ca_file = settings.tls_ca_file or None
    if ca_file:
        _check_ca_file(ca_file)
    if settings.flakyhttp_rules_path:
        adapter = _FlakyAdapter(
            settings.flakyhttp_rules_path, f"peeraddr={settings.peer_addr}"
        )
        adapter.default_timeout = FLAKY_TIMEOUT
    else:
        adapter = _RobustAdapter()
        adapter.default_timeout = DEADLINED_TIMEOUT if deadlined else UNDEADLINED_TIMEOUT
    adapter.ca_file = ca_file
    return adapter


def client(password, deadlined) -> requests.Session:
    """Return a session that authenticates with the network password on every request."""
    session = requests.Session()
    session.trust_env = False
    session.auth = (NETWORK_USER, password)
    adapter = transport(deadlined)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session
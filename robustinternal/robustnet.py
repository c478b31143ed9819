"""Common operations on a RobustIRC network, such as replacing its configuration."""

from __future__ import annotations

import requests

from robustinternal import robusthttp

REVISION_HEADER = "X-RobustIRC-Config-Revision"


def _expect_ok(resp: requests.Response) -> None:
    if resp.status_code != requests.codes.ok:
        raise requests.HTTPError(
            f"Expected HTTP OK, got {resp.status_code} {resp.reason}", response=resp
        )


def set_config(servers, config, network_password) -> None:
    """Replace the network configuration through the first server.

    The current revision is fetched first and sent along, so that the
    update is rejected if the configuration changed in between.
    """
    servers = list(servers)
    if not servers:
        raise ValueError("no servers given")
    url = f"https://{servers[0]}/config"
    with robusthttp.client(network_password, True) as session:
        with session.get(url) as resp:
            _expect_ok(resp)
            revision = resp.headers.get(REVISION_HEADER, "")
        with session.post(
            url, data=config.encode("utf-8"), headers={REVISION_HEADER: revision}
        ) as resp:
            _expect_ok(resp)
"""Decide whether a RobustIRC network is healthy."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

from robustinternal.status import ServerStatus, collect_statuses


class NetworkUnhealthyError(Exception):
    """The network is not healthy; ``statuses`` holds what was collected."""

    def __init__(self, message: str, statuses: dict[str, ServerStatus]):
        super().__init__(message)
        self.statuses = statuses


def _q(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def ensure_network_healthy(servers, network_password) -> dict[str, ServerStatus]:
    """Return all statuses if every server is reachable, all agree on one
    leader, each is Leader or Follower and every follower heard from the
    leader within two seconds; otherwise raise."""
    statuses = collect_statuses(servers, network_password)
    leader = ""
    now = datetime.now(timezone.utc)
    for status in statuses.values():
        if status.state not in ("Leader", "Follower"):
            raise NetworkUnhealthyError(
                f"Server {_q(status.server)} in state {_q(status.state)}, "
                "need Leader or Follower",
                statuses,
            )
        if not leader:
            leader = status.leader
        elif leader != status.leader:
            raise NetworkUnhealthyError(
                f"Server {_q(status.server)} thinks {_q(status.leader)} is leader, "
                f"others think {_q(leader)} is leader",
                statuses,
            )
        if status.state == "Follower" and now - status.last_contact > timedelta(seconds=2):
            raise NetworkUnhealthyError(
                f"Server {_q(status.server)} was last contacted by the leader at "
                f"{status.last_contact}, which is over 2 seconds ago",
                statuses,
            )
    if not leader:
        raise NetworkUnhealthyError("There is no leader currently", statuses)
    return statuses
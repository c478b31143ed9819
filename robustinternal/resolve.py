"""Turn a RobustIRC network name into the list of its servers."""

from __future__ import annotations

import logging
import random
from itertools import groupby

import dns.resolver

logger = logging.getLogger(__name__)


def _order_records(records):
    """Sort SRV records by priority, shuffling each priority by weight."""
    ordered = []
    by_priority = sorted(records, key=lambda r: r.priority)
    for _, group in groupby(by_priority, key=lambda r: r.priority):
        group = list(group)
        while group:
            weights = [r.weight for r in group]
            pick = random.choices(group, weights=weights)[0] if sum(weights) else group[0]
            group.remove(pick)
            ordered.append(pick)
    return ordered


def resolve_network(network: str) -> list[str]:
    """Return the servers of a network as ``host:port`` strings.

    A comma-separated value is a list of servers (blank entries dropped);
    otherwise the ``_robustirc._tcp`` SRV records of the name are used.
    """
    parts = network.split(",")
    if len(parts) > 1:
        logger.info("Interpreting %r as list of servers instead of network name", network)
        return [part for part in parts if part.strip()]

    answer = dns.resolver.resolve(f"_robustirc._tcp.{network}", "SRV")
    return [
        f"{record.target.to_text().removesuffix('.')}:{record.port}"
        for record in _order_records(list(answer))
    ]
# robustinternal

Library helpers for tools that operate on a RobustIRC network: HTTP clients
that send the network password, failure injection for those clients, server
discovery, status and health checks, and configuration updates.

## Installation

```
pip install robustinternal
```

To run the tests:

```
pip install "robustinternal[test]"
pytest
```

## Modules

### `robustinternal.robusthttp`

Builds `requests` sessions for talking to network nodes.

- `configure(tls_ca_file=None, flakyhttp_rules_path=None, peer_addr=None)`
  updates the process-wide `Settings` (`tls_ca_file`, `flakyhttp_rules_path`,
  `peer_addr`) and returns them. Arguments left as `None` keep their value.
- `transport(deadlined)` returns a transport adapter. A deadlined adapter
  allows 2 seconds to connect and 10 seconds per read. Otherwise connecting is
  limited to 10 seconds and reads are not limited. When `tls_ca_file` is set,
  that file is used instead of the system CAs. A missing file raises `OSError`
  and an unparsable one raises `ValueError`. When `flakyhttp_rules_path` is set,
  the adapter is a failure-injecting `flakyhttp.RoundTripper` built with the
  pair `peeraddr=<peer_addr>`, with a 30-second connect timeout.
- `client(password, deadlined)` returns a `requests.Session` that ignores proxy
  settings from the environment. It sends basic authentication as user
  `robustirc` with the given password, and uses `transport(deadlined)` for
  both `http://` and `https://`.

### `robustinternal.flakyhttp`

`RoundTripper(rules_path, *pairs)` is a `requests` transport adapter that
fails requests and new connections on purpose, as a rules file says. It
watches the file's directory and reloads the rules when the file is written.
A missing rules file at start means no rules. A missing directory raises
`FileNotFoundError`. Keep the rules file in a directory of its own.

Each line of the file is one rule made of space-separated `key=value` pairs:

```
dest=node1.example.com:443 rate=50% stage=request
dest=node2.example.com:443 stage=request redial=force
```

- `dest` is the `host:port` of the request or connection.
- `stage` is `request` (checked before each request is sent) or `dial`
  (checked when a new connection is opened).
- `rate` is a failure percentage. It takes an integer, with or without `%`.
- `redial` drops pooled connections when the rule is checked at the request
  stage, so that a fresh connection is dialled.

A request or connection fails with `FlakyError`, which is a
`requests.exceptions.ConnectionError`, when every pair of some rule matches.
The extra constructor arguments are `key=value` pairs such as
`peeraddr=node1.example.com:443`. A rule that names one of these keys with a
different value is dropped. Otherwise the key is removed from the rule.

Further members:

- `load_rules()` reloads the file now.
- `config_change_awaiter()` returns a `ConfigChangeAwaiter`. Its
  `wait(timeout=None)` blocks until the next reload and raises `TimeoutError`
  if the timeout expires first.
- `close()` stops watching and closes connections. The adapter is also a
  context manager.
- `parse_pair(text)` and `parse_rules(text, fixed_pairs=())` are the parsers
  behind the file format. They raise `ValueError` on malformed input.
  `parse_rules` returns a list of `Rule` objects.

```python
import requests
from robustinternal.flakyhttp import RoundTripper

with RoundTripper("/tmp/flaky/flakyhttp.rules") as adapter:
    session = requests.Session()
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.get("http://localhost:8080/")
```

### `robustinternal.status`

- `ServerStatus` is a dataclass with the fields `server`, `state`, `leader`,
  `peers`, `applied_index`, `commit_index`, `last_contact`, `executable_hash`
  and `current_time`.
- `parse_status(data, server=None)` builds a `ServerStatus` from a JSON object
  or from JSON text. Keys match case-insensitively. Unknown keys and nulls are
  ignored. Times are RFC 3339.
- `get_server_status(server, network_password)` fetches the status of one
  node. The node is given as `host:port` or as an `https://` URL. The request
  has a 5-second timeout, and a reply other than 200 raises
  `requests.HTTPError`.
- `collect_statuses(servers, network_password)` fetches all nodes in parallel
  and returns a dict keyed by server. If any fetch fails, the first failure is
  raised.

### `robustinternal.healthy`

`ensure_network_healthy(servers, network_password)` collects all statuses and
returns them if the network is healthy. It raises `NetworkUnhealthyError`,
with the collected data in its `statuses` attribute, if any of these holds:

- a node is neither `Leader` nor `Follower`;
- the nodes disagree on the leader;
- a follower was last contacted by the leader more than two seconds ago;
- there is no leader.

A node that cannot be reached raises the underlying `requests` error instead.

### `robustinternal.resolve`

`resolve_network(network)` returns a list of `host:port` strings. A
comma-separated value is taken as a list of servers, with blank entries
dropped. Any other value is looked up as `_robustirc._tcp.<network>` SRV
records. The records are ordered by priority and, within a priority, shuffled
by weight.

### `robustinternal.robustnet`

`set_config(servers, config, network_password)` replaces the network
configuration through the first server. It fetches `/config` to learn the
current revision, then posts the new configuration with that revision in the
`X-RobustIRC-Config-Revision` header. A reply other than 200 raises
`requests.HTTPError`, and an empty server list raises `ValueError`.

## Example

```python
import requests

from robustinternal.healthy import NetworkUnhealthyError, ensure_network_healthy
from robustinternal.resolve import resolve_network

network_password = "password"
servers = resolve_network("irc.example.com")
try:
    statuses = ensure_network_healthy(servers, network_password)
except NetworkUnhealthyError as err:
    print(f"unhealthy: {err}")
except requests.RequestException as err:
    print(f"unreachable: {err}")
else:
    for server, status in statuses.items():
        print(server, status.state, status.leader)
```

## What this package does not do

It is a library only. It installs no command-line tool, runs no RobustIRC
node or server, and stores nothing.
import os
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest import mock

import pytest
import requests

from robustinternal.flakyhttp import (
    FlakyError,
    Rule,
    RoundTripper,
    parse_pair,
    parse_rules,
)


class _OkayHandler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def do_GET(self):
        body = b"okay"
        self.send_response(200)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, *args):
        pass


@pytest.fixture
def server():
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _OkayHandler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield httpd
    httpd.shutdown()
    httpd.server_close()


class _Env:
    def __init__(self, rules_path, rt, host):
        self.rules_path = rules_path
        self.rt = rt
        self.host = host
        self.url = f"http://{host}/"
        self.session = requests.Session()
        self.session.mount("http://", rt)

    def configure(self, *rules):
        awaiter = self.rt.config_change_awaiter()
        tmp = os.path.join(os.path.dirname(self.rules_path), ".rules.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            f.write("\n".join(rules))
        os.replace(tmp, self.rules_path)
        awaiter.wait(5)

    def works(self):
        try:
            resp = self.session.get(self.url, timeout=5)
        except requests.RequestException:
            return False
        return resp.text == "okay"


@pytest.fixture
def make_env(tmp_path, server):
    envs = []

    def factory(*pairs):
        rules_dir = tmp_path / "rules"
        rules_dir.mkdir(exist_ok=True)
        rules_path = str(rules_dir / "flakyhttp.rules")
        rt = RoundTripper(rules_path, *pairs)
        host = f"127.0.0.1:{server.server_address[1]}"
        env = _Env(rules_path, rt, host)
        envs.append(env)
        return env

    yield factory
    for env in envs:
        env.session.close()
        env.rt.close()


def test_parse_pair_splits_at_first_equals():
    assert parse_pair("a=b=c") == ("a", "b=c")
    assert parse_pair("key=") == ("key", "")


def test_parse_pair_malformed():
    with pytest.raises(ValueError, match="malformed pair"):
        parse_pair("novalue")


def test_parse_rules_sorts_pairs():
    rules = parse_rules("stage=dial rate=10% dest=a:1\n")
    assert rules == [Rule((("dest", "a:1"), ("rate", "10%"), ("stage", "dial")))]


def test_parse_rules_multiple_lines_and_duplicates():
    rules = parse_rules("dest=a:1 dest=b:2\nstage=request")
    assert rules == [Rule((("dest", "b:2"),)), Rule((("stage", "request"),))]


def test_parse_rules_fixed_pairs():
    text = "peeraddr=n1 rate=100%\npeeraddr=n2 stage=dial\nstage=request"
    rules = parse_rules(text, [("peeraddr", "n2")])
    assert rules == [Rule((("stage", "dial"),)), Rule((("stage", "request"),))]


def test_parse_rules_rate_literals():
    rules = parse_rules("rate=0x10%\nrate=010\nrate=-5%")
    assert [r.pairs[0][1] for r in rules] == ["0x10%", "010", "-5%"]


@pytest.mark.parametrize("text", ["rate=abc%", "rate=%", "rate=5%%", "rate=08"])
def test_parse_rules_invalid_rate(text):
    with pytest.raises(ValueError):
        parse_rules(text)


@pytest.mark.parametrize("text", ["", "dest=a  stage=dial", "dest"])
def test_parse_rules_malformed(text):
    with pytest.raises(ValueError, match="malformed pair"):
        parse_rules(text)


def test_malformed_fixed_pair(tmp_path):
    with pytest.raises(ValueError, match="malformed pair"):
        RoundTripper(str(tmp_path / "flakyhttp.rules"), "robustirc")


def test_missing_directory(tmp_path):
    with pytest.raises(FileNotFoundError):
        RoundTripper(str(tmp_path / "missing" / "flakyhttp.rules"))


def test_invalid_rules_file_at_start(tmp_path):
    path = tmp_path / "flakyhttp.rules"
    path.write_text("rate=lots")
    with pytest.raises(ValueError):
        RoundTripper(str(path))


def test_rules_file_loaded_at_start(tmp_path, server):
    host = f"127.0.0.1:{server.server_address[1]}"
    path = tmp_path / "flakyhttp.rules"
    path.write_text(f"dest={host} rate=100%\n")
    with RoundTripper(str(path)) as rt, requests.Session() as session:
        session.mount("http://", rt)
        with pytest.raises(FlakyError, match="request failed by flakyhttp"):
            session.get(f"http://{host}/", timeout=5)


def test_awaiter_times_out(make_env):
    env = make_env()
    with pytest.raises(TimeoutError):
        env.rt.config_change_awaiter().wait(0.05)


def test_fail_all(make_env):
    env = make_env()
    assert env.works()
    env.configure(f"dest={env.host} rate=100%\n")
    assert not env.works()


def test_fail_all_connections(make_env):
    env = make_env()
    env.configure(f"dest={env.host} rate=100% stage=dial\n")
    assert not env.works()


def test_fail_new_connections(make_env):
    env = make_env()
    assert env.works()
    env.configure(
        f"dest={env.host} rate=100% stage=dial",
        f"dest={env.host} stage=request redial=force",
    )
    assert not env.works()


def test_application_specific(make_env):
    env = make_env("robustirc=node2")
    assert env.works()
    env.configure("robustirc=node1 rate=100% stage=request")
    assert env.works()
    env.configure("robustirc=node2 rate=100% stage=request")
    assert not env.works()


def test_other_destination_unaffected(make_env):
    env = make_env()
    env.configure("dest=192.0.2.1:80 rate=100%")
    assert env.works()


def test_fail_rate(make_env):
    env = make_env()
    env.configure(f"dest={env.host} rate=50% stage=request")
    failing = sum(1 for _ in range(400) if not env.works())
    assert 140 <= failing <= 260


@pytest.mark.parametrize("draw, expected", [(0.49, False), (0.5, True)])
def test_rate_boundary(make_env, draw, expected):
    env = make_env()
    env.configure(f"dest={env.host} rate=50% stage=request")
    with mock.patch("random.random", return_value=draw):
        assert env.works() is expected


def test_unknown_key_is_a_bug(make_env):
    env = make_env()
    env.configure("colour=blue")
    with pytest.raises(RuntimeError, match="unexpected pair colour=blue"):
        env.session.get(env.url, timeout=5)
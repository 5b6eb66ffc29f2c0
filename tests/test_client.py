import ipaddress
import threading
import time

import pytest

from mcast_ping.client import ProbeClient, build_probe
from mcast_ping.errors import RecvFailed
from mcast_ping.logger import LogLevel
from mcast_ping.server import ProbeServer
from mcast_ping.stats import StatsAggregator

GROUP = ipaddress.IPv6Address("ff02::1:3")
PORT = 3000


@pytest.fixture
def client_ep(make_endpoint):
    return make_endpoint("fe80::20", 50000)

def make_client(ep, logger, lines, **kw):
    kw.setdefault("interval_ms", 20)
    kw.setdefault("timeout_ms", 50)
    kw.setdefault("report_interval", 60.0)
    return ProbeClient(ep, GROUP, PORT, logger=logger, out=lines.append, **kw)


def test_build_probe():
    assert build_probe(1) == b"PING 1"
    assert build_probe(123) == b"PING 123"

def test_end_to_end_single_server(make_endpoint, client_ep, logger):
    server_ep = make_endpoint("fe80::10", PORT)
    server_ep.join(GROUP)
    server = ProbeServer(server_ep, poll_interval=0.05, logger=logger)
    server.start()
    lines = []
    try:
        client = make_client(client_ep, logger, lines, interval_ms=100, timeout_ms=300, count=5)
        snap = client.run()
    finally:
        server.stop()

    assert snap.total_sent == 5
    assert 0 <= snap.total_received <= snap.total_sent
    # the in-memory network is lossless
    assert snap.total_received == 5
    assert list(snap.per_peer) == ["fe80::10"]
    assert snap.per_peer["fe80::10"] == snap.total_received
    assert [p for p, _ in client_ep.sent] == [b"PING %d" % i for i in range(1, 6)]
    assert all(dest == (str(GROUP), PORT, 0, 0) for _, dest in client_ep.sent)
    assert "FINAL: sent=5 recv=5 success=100.00%" in lines
    assert "  fe80::10: 5 replies (100.00% of probes)" in lines

def test_replies_attributed_per_peer(make_endpoint, client_ep, logger):
    servers = []
    for ip in ("fe80::a", "fe80::b", "fe80::c"):
        ep = make_endpoint(ip, PORT)
        ep.join(GROUP)
        srv = ProbeServer(ep, poll_interval=0.05, logger=logger)
        srv.start()
        servers.append(srv)
    lines = []
    try:
        snap = make_client(client_ep, logger, lines, count=4, timeout_ms=300).run()
    finally:
        for srv in servers: srv.stop()

    assert snap.total_sent == 4
    assert snap.per_peer == {"fe80::a": 4, "fe80::b": 4, "fe80::c": 4}
    assert snap.total_received == sum(snap.per_peer.values()) == 12
    assert snap.success_rate == pytest.approx(300.0)

def test_failed_send_is_not_counted(client_ep, logger):
    client_ep.fail_sends = 2
    lines = []
    snap = make_client(client_ep, logger, lines, count=5).run()
    assert snap.total_sent == 3
    assert snap.total_received == 0
    assert len(client_ep.sent) == 3
    warnings = logger.messages(LogLevel.WARN)
    assert sum("failed to send ping" in m for m in warnings) == 2

def test_no_server_means_zero_success(client_ep, logger):
    lines = []
    snap = make_client(client_ep, logger, lines, count=3).run()
    assert snap.total_sent == 3
    assert snap.total_received == 0
    assert snap.per_peer == {}
    assert lines[-1] == "FINAL: sent=3 recv=0 success=0.00%"

def test_receiver_counts_any_datagram(client_ep, logger):
    stats = StatsAggregator()
    client = make_client(client_ep, logger, [], stats=stats, interval_ms=1000)
    client_ep.inject(b"\x00\xffgarbage", ("2001:db8::5", 3000, 0, 0))
    client_ep.inject(b"RESPONSE:9", ("2001:db8::5", 3001, 0, 0))
    client_ep.inject_error(RecvFailed("recvfrom failed", OSError(111, "Connection refused")))
    client_ep.inject(b"ACK", ("2001:db8::6", 3000, 0, 0))
    client.start()
    try:
        deadline = time.time() + 2
        while stats.snapshot().total_received < 3 and time.time() < deadline:
            time.sleep(0.01)
    finally:
        client.stop()
    snap = stats.snapshot()
    assert snap.per_peer == {"2001:db8::5": 2, "2001:db8::6": 1}

def test_reporter_prints_periodically(client_ep, logger):
    lines = []
    client = make_client(client_ep, logger, lines, report_interval=0.05, interval_ms=10)
    client.start()
    time.sleep(0.3)
    client.stop()
    reports = [l for l in lines if l.startswith("sent=")]
    assert len(reports) >= 2
    assert all("success=" in l for l in reports)

def test_stop_ends_run(client_ep, logger):
    lines = []
    client = make_client(client_ep, logger, lines, interval_ms=10)
    result = {}
    t = threading.Thread(target=lambda: result.update(snap=client.run()))
    t.start()
    time.sleep(0.15)
    client.stop()
    t.join(timeout=2.0)
    assert not t.is_alive()
    snap = result["snap"]
    assert snap.total_sent >= 1
    assert lines[-1].startswith("FINAL: sent=")

def test_sequence_is_monotonic(client_ep, logger):
    make_client(client_ep, logger, [], count=10, interval_ms=5).run()
    seqs = [int(p.split()[1]) for p, _ in client_ep.sent]
    assert seqs == list(range(1, 11))

def test_per_peer_breakdown_can_be_disabled(make_endpoint, client_ep, logger):
    server_ep = make_endpoint("fe80::10", PORT)
    server_ep.join(GROUP)
    server = ProbeServer(server_ep, poll_interval=0.05, logger=logger)
    server.start()
    lines = []
    try:
        make_client(client_ep, logger, lines, count=2, timeout_ms=300, per_peer=False).run()
    finally:
        server.stop()
    assert not any("replies (" in l for l in lines)

import ipaddress
import queue
import socket
import threading

import pytest

from mcast_ping.errors import ReceiveTimeout, SendFailed
from mcast_ping.logger import ILogger


class RecordingLogger(ILogger):
    def __init__(self):
        self.records = []
        self._lock = threading.Lock()

    def log(self, level, component, msg):
        with self._lock:
            self.records.append((level, component, msg))

    def messages(self, level=None):
        with self._lock:
            return [m for lv, _, m in self.records if level is None or lv == level]


class FakeNetwork:
    """Delivers datagrams between FakeEndpoints without touching the OS."""
    def __init__(self):
        self.members = {}   # group text -> [endpoint]
        self.hosts = {}     # (ip, port) -> endpoint
        self._lock = threading.Lock()

    def attach(self, ep):
        with self._lock:
            self.hosts[ep.local_address[:2]] = ep

    def join(self, ep, group):
        with self._lock:
            self.members.setdefault(str(ipaddress.IPv6Address(group)), []).append(ep)

    def deliver(self, sender, payload, dest):
        host = str(ipaddress.IPv6Address(dest[0]))
        with self._lock:
            if ipaddress.IPv6Address(host).is_multicast:
                targets = list(self.members.get(host, []))
            else:
                ep = self.hosts.get((host, dest[1]))
                targets = [ep] if ep else []
        for ep in targets:
            ep.inject(payload, sender.local_address)


class FakeEndpoint:
    def __init__(self, local_address, network=None):
        self.local_address = local_address
        self.network = network
        self.inbox = queue.Queue()
        self.sent = []
        self.fail_sends = 0
        self._lock = threading.Lock()
        if network: network.attach(self)

    def join(self, group):
        self.network.join(self, group)

    def inject(self, payload, src):
        self.inbox.put((payload, src))

    def inject_error(self, exc):
        self.inbox.put(exc)

    def send(self, payload, dest):
        with self._lock:
            if self.fail_sends:
                self.fail_sends -= 1
                raise SendFailed("simulated send failure", OSError(101, "Network is unreachable"))
            self.sent.append((payload, dest))
        if self.network:
            self.network.deliver(self, payload, dest)
        return len(payload)

    def receive(self, timeout, bufsize=1500):
        try:
            item = self.inbox.get(timeout=timeout)
        except queue.Empty:
            raise ReceiveTimeout(f"No datagram within {timeout:.3f}s")
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


@pytest.fixture
def logger():
    return RecordingLogger()

@pytest.fixture
def network():
    return FakeNetwork()

@pytest.fixture
def make_endpoint(network):
    def _make(ip, port):
        return FakeEndpoint((ip, port, 0, 0), network)
    return _make

def _ipv6_available():
    if not socket.has_ipv6:
        return False
    try:
        with socket.socket(socket.AF_INET6, socket.SOCK_DGRAM) as s:
            s.bind(("::1", 0))
        return True
    except OSError:
        return False

HAS_IPV6 = _ipv6_available()

@pytest.fixture
def ipv6_loopback():
    if not HAS_IPV6:
        pytest.skip("IPv6 loopback not available")
    return "::1"

import ipaddress
import threading
import time
from typing import Callable, Optional

from .address import DEFAULT_INTERFACE, InterfaceRef
from .endpoint import Endpoint, format_addr, peer_key
from .errors import ReceiveTimeout, RecvFailed, SendFailed
from .logger import ConsoleLogger, ILogger, LogLevel
from .stats import StatsAggregator, StatsSnapshot

def build_probe(seq: int) -> bytes:
    return f"PING {seq}".encode()

class ProbeClient:
    """
    Sends a multicast probe every ``interval_ms`` and counts unicast replies.

    Three daemon threads share one StatsAggregator: the sender, a receiver
    that credits every datagram to its source address, and a reporter that
    prints a snapshot every ``report_interval`` seconds. Replies are never
    matched to a particular probe.
    """
    def __init__(self, endpoint: Endpoint, group: ipaddress.IPv6Address, port: int,
                 interval_ms: int = 1000, timeout_ms: int = 500,
                 report_interval: float = 5.0, iface: InterfaceRef = DEFAULT_INTERFACE,
                 count: Optional[int] = None, per_peer: bool = True,
                 stats: Optional[StatsAggregator] = None,
                 logger: Optional[ILogger] = None,
                 out: Callable[[str], None] = print):
        self.endpoint = endpoint
        self.target = (str(group), port, 0, iface.index)
        self.interval = interval_ms / 1000.0
        self.timeout = timeout_ms / 1000.0
        self.report_interval = report_interval
        self.count = count
        self.per_peer = per_peer
        self.stats = stats or StatsAggregator()
        self.logger = logger or ConsoleLogger()
        self.out = out
        self.seq = 0
        self._stop = threading.Event()
        self._sender_done = threading.Event()
        self.threads = []

    def start(self):
        self.out(f"Starting client: sending to {format_addr(self.target)} every {self.interval * 1000:.0f} ms, "
                 f"timeout {self.timeout * 1000:.0f} ms")
        for name, target in (("probe-receiver", self._receive_loop),
                             ("probe-reporter", self._report_loop),
                             ("probe-sender", self._send_loop)):
            t = threading.Thread(target=target, name=name, daemon=True)
            t.start()
            self.threads.append(t)

    def stop(self):
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until stop() or, with a probe count, until the last probe has lingered."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self._stop.is_set():
            if self._sender_done.is_set():
                # Give replies to the last probe one receive window to arrive.
                self._stop.wait(self.timeout)
                self._stop.set()
                break
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            self._sender_done.wait(0.1 if remaining is None else min(0.1, remaining))
        return True

    def run(self) -> StatsSnapshot:
        """Start, block until interrupted or finished, then print the final summary."""
        self.start()
        try:
            self.wait()
        except KeyboardInterrupt:
            self.out("Ctrl-C received, printing stats...")
        finally:
            self.stop()
        return self.finish()

    def finish(self) -> StatsSnapshot:
        snap = self.stats.snapshot()
        self.out(f"FINAL: {snap.summary_line()}")
        if self.per_peer:
            for line in snap.peer_lines():
                self.out(line)
        return snap

    def report(self) -> StatsSnapshot:
        snap = self.stats.snapshot()
        self.out(snap.summary_line())
        if self.per_peer:
            for line in snap.peer_lines():
                self.out(line)
        return snap

    def _send_loop(self):
        next_at = time.monotonic()
        while not self._stop.is_set():
            if self.count is not None and self.seq >= self.count:
                self._sender_done.set()
                return
            self.seq += 1
            msg = build_probe(self.seq)
            try:
                self.endpoint.send(msg, self.target)
            except SendFailed as e:
                self.logger.log(LogLevel.WARN, "Client", f"failed to send ping {self.seq}: {e}")
            else:
                self.stats.record_sent()
            next_at += self.interval
            self._stop.wait(max(0.0, next_at - time.monotonic()))

    def _receive_loop(self):
        while not self._stop.is_set():
            try:
                data, src = self.endpoint.receive(self.timeout)
            except ReceiveTimeout:
                continue
            except RecvFailed as e:
                if self._stop.is_set(): return
                self.logger.log(LogLevel.DEBUG, "Client", f"recv error: {e}")
                self._stop.wait(0.01)
                continue
            self.logger.log(LogLevel.INFO, "Client", f"client got {len(data)} bytes from {format_addr(src)}")
            self.stats.record_reply(peer_key(src))

    def _report_loop(self):
        while not self._stop.wait(self.report_interval):
            self.report()

import queue
import threading
from enum import Enum
from typing import List, Optional, Tuple

from .endpoint import Endpoint, SockAddr, format_addr
from .errors import ReceiveTimeout, RecvFailed, SendFailed
from .logger import ConsoleLogger, ILogger, LogLevel

class ReplyFormat(Enum):
    ECHO = "echo"          # b"ACK:" + probe payload
    ACK = "ack"            # b"ACK"
    RESPONSE = "response"  # b"RESPONSE:<n>"

def build_reply(fmt: ReplyFormat, payload: bytes, n: int) -> bytes:
    if fmt == ReplyFormat.ACK:
        return b"ACK"
    if fmt == ReplyFormat.RESPONSE:
        return f"RESPONSE:{n}".encode()
    return b"ACK:" + payload

class ProbeServer:
    """
    Listens on a joined multicast endpoint and unicasts a reply to the
    source of every datagram.

    Replies are sent by a fixed pool of workers fed through a bounded
    queue. Intake never waits for a send to finish, but it does wait for
    queue space, so a flood of probes cannot spawn unbounded work.
    """
    def __init__(self, endpoint: Endpoint, reply_format: ReplyFormat = ReplyFormat.ECHO,
                 workers: int = 4, queue_size: int = 256, poll_interval: float = 0.2,
                 logger: Optional[ILogger] = None):
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.endpoint = endpoint
        self.reply_format = reply_format
        self.poll_interval = poll_interval
        self.logger = logger or ConsoleLogger()
        self.running = False
        self.thread = None
        self.worker_count = workers
        self.workers: List[threading.Thread] = []
        self.replies: "queue.Queue[Optional[Tuple[bytes, SockAddr]]]" = queue.Queue(maxsize=queue_size)
        self._lock = threading.Lock()
        self._number_lock = threading.Lock()
        self.received = 0
        self.replied = 0
        self.failed = 0

    def stats(self) -> dict:
        with self._lock:
            return {"received": self.received, "replied": self.replied, "failed": self.failed}

    def start(self):
        """Run the receive loop on a background thread."""
        self._start_workers()
        self.thread = threading.Thread(target=self._run, name="probe-server", daemon=True)
        self.thread.start()

    def run(self):
        """Run the receive loop on the calling thread until stop()."""
        self._start_workers()
        try:
            self._run()
        finally:
            self._stop_workers()

    def stop(self, timeout: float = 1.0):
        """
        Stop the receive loop.

        After start() this also joins the loop thread and the reply workers.
        After run() it only clears the flag; run() joins the workers on its way out.
        """
        self.running = False
        if self.thread and self.thread is not threading.current_thread():
            self.thread.join(timeout=timeout)
            self._stop_workers(timeout)

    def _start_workers(self):
        self.running = True
        for i in range(self.worker_count):
            t = threading.Thread(target=self._reply_worker, name=f"probe-reply-{i}", daemon=True)
            t.start()
            self.workers.append(t)

    def _stop_workers(self, timeout: float = 1.0):
        for _ in self.workers:
            try: self.replies.put(None, timeout=timeout)
            except queue.Full: break
        for t in self.workers:
            t.join(timeout=timeout)
        self.workers = []

    def _run(self):
        self.logger.log(LogLevel.INFO, "Server", f"Listening on {format_addr(self.endpoint.local_address)} "
                                                  f"(reply={self.reply_format.value}, workers={self.worker_count})")
        while self.running:
            try:
                data, src = self.endpoint.receive(self.poll_interval)
            except ReceiveTimeout:
                continue
            except RecvFailed as e:
                if not self.running: break
                self.logger.log(LogLevel.WARN, "Server", f"Receive failed: {e}")
                continue

            with self._lock: self.received += 1
            self.logger.log(LogLevel.INFO, "Server", f"received {len(data)} bytes from {format_addr(src)}")
            self._dispatch(data, src)

    def _dispatch(self, payload: bytes, dest: SockAddr):
        # Blocks while the queue is full; re-checks running so stop() is not held up.
        while self.running:
            try:
                self.replies.put((payload, dest), timeout=self.poll_interval)
                return
            except queue.Full:
                continue

    def _reply_worker(self):
        while True:
            item = self.replies.get()
            if item is None:
                return
            payload, dest = item
            if self.reply_format == ReplyFormat.RESPONSE:
                # n counts replies actually sent; numbering and sending stay serialized.
                with self._number_lock:
                    with self._lock: n = self.replied + 1
                    self._send_reply(build_reply(self.reply_format, payload, n), dest)
            else:
                self._send_reply(build_reply(self.reply_format, payload, 0), dest)

    def _send_reply(self, reply: bytes, dest: SockAddr):
        try:
            self.endpoint.send(reply, dest)
        except SendFailed as e:
            with self._lock: self.failed += 1
            self.logger.log(LogLevel.WARN, "Server", f"failed to send reply to {format_addr(dest)}: {e}")
            return
        with self._lock: self.replied += 1

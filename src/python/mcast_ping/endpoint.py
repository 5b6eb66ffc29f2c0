import os
import select
import socket
import struct
import time
import ipaddress
from typing import Optional, Tuple, Union

from .address import DEFAULT_INTERFACE, InterfaceRef
from .errors import BindFailed, JoinFailed, ReceiveTimeout, RecvFailed, SendFailed
from .logger import ConsoleLogger, ILogger, LogLevel

MAX_DATAGRAM = 1500

GroupLike = Union[str, ipaddress.IPv6Address]
SockAddr = Tuple

class Endpoint:
    """
    One IPv6 UDP socket shared by a sending and a receiving thread.

    The handle is non-blocking; ``receive`` waits in ``select`` so a
    concurrent ``send`` never sees a blocking-mode flip or a held lock.
    """
    def __init__(self, sock: socket.socket, logger: Optional[ILogger] = None):
        self.sock = sock
        self.logger = logger or ConsoleLogger()
        self.memberships = set()  # (group, index)
        self.packet_dump = os.environ.get("MCAST_PING_PACKET_DUMP") == "1"
        self.sock.setblocking(False)

    @staticmethod
    def _new_socket() -> socket.socket:
        try:
            return socket.socket(socket.AF_INET6, socket.SOCK_DGRAM)
        except OSError as e:
            raise BindFailed("Failed to create IPv6 UDP socket", e)

    @classmethod
    def bind_server(cls, port: int, group: GroupLike, iface: InterfaceRef = DEFAULT_INTERFACE,
                    loopback: bool = True, logger: Optional[ILogger] = None) -> "Endpoint":
        s = cls._new_socket()
        try:
            s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                try: s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
                except OSError: pass
            s.bind(("::", port))
        except OSError as e:
            s.close()
            raise BindFailed(f"Failed to bind [::]:{port}", e)

        ep = cls(s, logger)
        try:
            ep.join(group, iface)
        except JoinFailed:
            ep.close()
            raise
        if loopback:
            ep.set_loopback(True)
        ep.logger.log(LogLevel.INFO, "Endpoint", f"Bound [::]:{ep.local_address[1]}, joined {group} on {iface}")
        return ep

    @classmethod
    def bind_client(cls, iface: InterfaceRef = DEFAULT_INTERFACE, hops: Optional[int] = None,
                    logger: Optional[ILogger] = None, port: int = 0) -> "Endpoint":
        s = cls._new_socket()
        try:
            s.bind(("::", port))
        except OSError as e:
            s.close()
            raise BindFailed(f"Failed to bind [::]:{port}", e)

        ep = cls(s, logger)
        try:
            if not iface.is_default:
                ep.set_outbound_interface(iface)
            if hops is not None:
                ep.set_hops(hops)
        except OSError as e:
            ep.close()
            raise BindFailed(f"Failed to configure outbound multicast on {iface}", e)
        ep.logger.log(LogLevel.INFO, "Endpoint", f"Bound [::]:{ep.local_address[1]} (outbound {iface})")
        return ep

    @property
    def local_address(self) -> SockAddr:
        return self.sock.getsockname()

    def _mreq(self, group: GroupLike, iface: InterfaceRef) -> bytes:
        return struct.pack("16si", socket.inet_pton(socket.AF_INET6, str(group)), iface.index)

    def join(self, group: GroupLike, iface: InterfaceRef = DEFAULT_INTERFACE):
        try:
            self.sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_JOIN_GROUP, self._mreq(group, iface))
        except OSError as e:
            raise JoinFailed(f"Failed to join {group} on {iface}", e)
        self.memberships.add((str(group), iface.index))

    def leave(self, group: GroupLike, iface: InterfaceRef = DEFAULT_INTERFACE):
        key = (str(group), iface.index)
        if key not in self.memberships: return
        self.memberships.discard(key)
        try:
            self.sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_LEAVE_GROUP, self._mreq(group, iface))
        except OSError as e:
            self.logger.log(LogLevel.WARN, "Endpoint", f"Failed to leave {group} on {iface}: {e}")

    def set_outbound_interface(self, iface: InterfaceRef):
        self.sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_IF, iface.index)

    def set_loopback(self, enabled: bool):
        try:
            self.sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_LOOP, 1 if enabled else 0)
        except OSError as e:
            self.logger.log(LogLevel.WARN, "Endpoint", f"Failed to set multicast loopback: {e}")

    def set_hops(self, hops: int):
        self.sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_HOPS, hops)

    def send(self, payload: bytes, dest: SockAddr) -> int:
        try:
            return self.sock.sendto(payload, dest)
        except OSError as e:
            raise SendFailed(f"Failed to send {len(payload)} bytes to {format_addr(dest)}", e)

    def receive(self, timeout: Optional[float], bufsize: int = MAX_DATAGRAM) -> Tuple[bytes, SockAddr]:
        """Wait up to ``timeout`` seconds (None blocks) for one datagram."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                r, _, _ = select.select([self.sock], [], [], remaining)
            except (OSError, ValueError) as e:
                raise RecvFailed("select failed", e)
            if r:
                try:
                    data, addr = self.sock.recvfrom(bufsize)
                except BlockingIOError:
                    data = None
                except OSError as e:
                    raise RecvFailed("recvfrom failed", e)
                if data is not None:
                    if self.packet_dump:
                        self.logger.log(LogLevel.DEBUG, "DUMP", f"{len(data)} bytes from {format_addr(addr)}: {data!r}")
                    return data, addr
            if deadline is not None and time.monotonic() >= deadline:
                raise ReceiveTimeout(f"No datagram within {timeout:.3f}s")

    def close(self):
        if self.sock.fileno() < 0: return
        for group, idx in list(self.memberships):
            self.leave(group, InterfaceRef(idx))
        self.sock.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

def format_addr(addr: SockAddr) -> str:
    host, port = addr[0], addr[1]
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"

def peer_key(addr: SockAddr) -> str:
    """Identity of a replying node: its source IP without the port."""
    return addr[0]

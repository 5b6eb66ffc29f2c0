"""
Multicast group parsing and network interface resolution.

Group addresses are accepted in canonical IPv6 text form. Input that lost
its hextet separators (``ff12c909:3199:...``) is repaired by splitting any
segment longer than four characters into four-character chunks before a
second parse attempt.

Interface names are turned into numeric indexes through an
``InterfaceResolver``. The Unix resolver relies on ``if_nametoindex``; the
Windows resolver falls back to ``netsh`` when the socket module cannot map
a friendly name.
"""
import ipaddress
import platform
import re
import socket
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Union

import psutil

from .errors import InterfaceNotFound, InvalidAddress
from .logger import ConsoleLogger, ILogger, LogLevel

MULTICAST_NET = ipaddress.IPv6Network("ff00::/8")

def fix_ipv6_segments(text: str) -> str:
    parts: List[str] = []
    for seg in text.split(":"):
        if len(seg) <= 4:
            parts.append(seg)
            continue
        parts.extend(seg[i:i + 4] for i in range(0, len(seg), 4))
    return ":".join(parts)

def parse_multicast_address(text: str, logger: Optional[ILogger] = None) -> ipaddress.IPv6Address:
    """
    Parse ``text`` into an IPv6 group address.

    Raises InvalidAddress when neither the input nor its repaired form parse.
    An address outside ff00::/8 is returned with a warning.
    """
    logger = logger or ConsoleLogger()
    candidate = text.strip()
    try:
        addr = ipaddress.IPv6Address(candidate)
    except ValueError:
        fixed = fix_ipv6_segments(candidate)
        try:
            addr = ipaddress.IPv6Address(fixed)
        except ValueError:
            raise InvalidAddress(text, fixed) from None
        logger.log(LogLevel.INFO, "Address", f"fixed multicast address from '{text}' -> '{fixed}'")

    if not is_multicast(addr):
        logger.log(LogLevel.WARN, "Address", f"{addr} is not an IPv6 multicast address (ff00::/8)")
    return addr

def is_multicast(addr: ipaddress.IPv6Address) -> bool:
    return addr in MULTICAST_NET


@dataclass(frozen=True)
class InterfaceRef:
    index: int = 0
    name: Optional[str] = None

    @property
    def is_default(self) -> bool:
        return self.index == 0

    def __str__(self):
        if self.name:
            return f"{self.name} (index {self.index})"
        return "default" if self.is_default else f"index {self.index}"

DEFAULT_INTERFACE = InterfaceRef()


class InterfaceResolver:
    def name_to_index(self, name: str) -> int: raise NotImplementedError()

    def known_interfaces(self) -> List[str]:
        return known_interfaces()

class UnixInterfaceResolver(InterfaceResolver):
    def name_to_index(self, name: str) -> int:
        try: return socket.if_nametoindex(name)
        except (OSError, ValueError): return 0

class WindowsInterfaceResolver(InterfaceResolver):
    """Friendly names such as "Ethernet 2" are not always known to if_nametoindex."""
    _ROW = re.compile(r"^\s*(\d+)\s+\d+\s+\d+\s+\S+\s+(.+?)\s*$")

    def name_to_index(self, name: str) -> int:
        try: return socket.if_nametoindex(name)
        except (OSError, ValueError): pass
        return self._netsh_lookup(name)

    def _netsh_lookup(self, name: str) -> int:
        try:
            res = subprocess.run(["netsh", "interface", "ipv6", "show", "interfaces"],
                                 capture_output=True, text=True, timeout=5)
        except (OSError, subprocess.SubprocessError):
            return 0
        return parse_netsh_interfaces(res.stdout).get(name.lower(), 0)

def parse_netsh_interfaces(output: str) -> dict:
    """Map lower-cased interface names to indexes from ``netsh ... show interfaces`` output."""
    table = {}
    for line in output.splitlines():
        m = WindowsInterfaceResolver._ROW.match(line)
        if m: table[m.group(2).lower()] = int(m.group(1))
    return table

def default_resolver() -> InterfaceResolver:
    if platform.system() == "Windows":
        return WindowsInterfaceResolver()
    return UnixInterfaceResolver()

def known_interfaces() -> List[str]:
    try:
        return sorted(psutil.net_if_addrs().keys())
    except (OSError, RuntimeError):
        return []

def resolve_interface(name_or_index: Union[None, int, str],
                      resolver: Optional[InterfaceResolver] = None) -> InterfaceRef:
    """
    Resolve an interface name or numeric index.

    ``None`` or an empty string means "let the OS choose" (index 0). Digit
    strings are taken literally without checking that the interface exists.
    """
    if name_or_index is None:
        return DEFAULT_INTERFACE
    if isinstance(name_or_index, int):
        if name_or_index < 0:
            raise InterfaceNotFound(str(name_or_index))
        return InterfaceRef(name_or_index)

    text = name_or_index.strip()
    if not text:
        return DEFAULT_INTERFACE
    if text.isdecimal():
        return InterfaceRef(int(text))

    resolver = resolver or default_resolver()
    idx = resolver.name_to_index(text)
    if idx <= 0:
        raise InterfaceNotFound(text, resolver.known_interfaces())
    return InterfaceRef(idx, text)

"""Exception types raised by the probing engine."""
from enum import IntEnum
from typing import List, Optional

class ErrorCode(IntEnum):
    OK = 0
    INVALID_ADDRESS = 2
    INTERFACE_NOT_FOUND = 3
    BIND_FAILED = 4
    JOIN_FAILED = 5
    # The loops absorb these three; they tag the errors and never become an exit status.
    SEND_FAILED = 6
    RECV_FAILED = 7
    TIMEOUT = 8
    CONFIG_ERROR = 9

class ProbeError(Exception):
    """Base class for every error the engine raises."""
    code = ErrorCode.OK

class ConfigError(ProbeError, ValueError):
    code = ErrorCode.CONFIG_ERROR

    def __init__(self, errors: List[str], source: Optional[str] = None):
        self.errors = list(errors)
        self.source = source
        where = f" in {source}" if source else ""
        super().__init__(f"Invalid configuration{where}: " + "; ".join(self.errors))

class InvalidAddress(ProbeError, ValueError):
    code = ErrorCode.INVALID_ADDRESS

    def __init__(self, text: str, attempted: str):
        self.text = text
        self.attempted = attempted
        super().__init__(f"failed to parse IPv6 address '{text}', tried '{attempted}'")

class InterfaceNotFound(ProbeError):
    code = ErrorCode.INTERFACE_NOT_FOUND

    def __init__(self, name: str, known: Optional[List[str]] = None):
        self.name = name
        self.known = list(known or [])
        msg = f"interface name '{name}' not found or cannot be converted to index"
        if self.known:
            msg += f" (available: {', '.join(self.known)})"
        super().__init__(msg)

class EndpointError(ProbeError):
    """Socket level failure wrapping the underlying OSError."""
    def __init__(self, msg: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(f"{msg}: {cause}" if cause else msg)

class BindFailed(EndpointError):
    code = ErrorCode.BIND_FAILED

class JoinFailed(EndpointError):
    code = ErrorCode.JOIN_FAILED

class SendFailed(EndpointError):
    code = ErrorCode.SEND_FAILED

class RecvFailed(EndpointError):
    code = ErrorCode.RECV_FAILED

class ReceiveTimeout(EndpointError):
    # Expected outcome of a bounded receive, not a fault.
    code = ErrorCode.TIMEOUT

from .address import (InterfaceRef, InterfaceResolver, UnixInterfaceResolver, WindowsInterfaceResolver,
                      parse_multicast_address, resolve_interface)
from .client import ProbeClient
from .config import ProbeConfig
from .endpoint import Endpoint
from .errors import (BindFailed, ConfigError, InterfaceNotFound, InvalidAddress, JoinFailed, ProbeError,
                     ReceiveTimeout, RecvFailed, SendFailed)
from .logger import ConsoleLogger, ILogger, LogLevel
from .server import ProbeServer, ReplyFormat
from .stats import StatsAggregator, StatsSnapshot

__version__ = "0.1.0"

import os
import datetime
from enum import Enum
from typing import Optional

class LogLevel(Enum):
    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3

    @classmethod
    def from_name(cls, name: str) -> "LogLevel":
        key = name.strip().upper()
        if key == "WARNING": key = "WARN"
        try:
            return cls[key]
        except KeyError:
            raise ValueError(f"unknown log level '{name}'")

class ILogger:
    def log(self, level: LogLevel, component: str, msg: str):
        pass

class ConsoleLogger(ILogger):
    def __init__(self, min_level: LogLevel = LogLevel.INFO):
        self.min_level = min_level

    def enabled(self, level: LogLevel) -> bool:
        return level.value >= self.min_level.value

    def log(self, level: LogLevel, component: str, msg: str):
        if not self.enabled(level): return
        ts = datetime.datetime.now().strftime("%H:%M:%S.%f")[:-3]
        print(f"[{ts}] [{level.name:5}] [{component}] {msg}", flush=True)

def logger_from_env(default: LogLevel = LogLevel.INFO, override: Optional[LogLevel] = None) -> ConsoleLogger:
    """Build a ConsoleLogger whose threshold comes from MCAST_PING_LOG unless overridden."""
    if override is not None:
        return ConsoleLogger(override)
    raw = os.environ.get("MCAST_PING_LOG")
    if not raw:
        return ConsoleLogger(default)
    try:
        return ConsoleLogger(LogLevel.from_name(raw))
    except ValueError:
        logger = ConsoleLogger(default)
        logger.log(LogLevel.WARN, "Logger", f"Ignoring MCAST_PING_LOG={raw!r}; using {default.name}")
        return logger

import json
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, List, Optional

from .errors import ConfigError

DEFAULT_GROUP = "ff12c909:3199:e8ba:6f6f:7d23:e6ae:d85d"
DEFAULT_PORT = 3000

# --- JSON Schema Definition ---
SCHEMA = {
    "type": "object",
    "properties": {
        "address": {"type": "string"},
        "port": {"type": "integer", "min": 0, "max": 65535},
        "interval_ms": {"type": "integer", "min": 1},
        "timeout_ms": {"type": "integer", "min": 1},
        "interface": {"type": ["string", "integer", "null"]},
        "report_interval_s": {"type": "number", "min": 0.001},
        "reply_format": {"type": "string", "enum": ["echo", "ack", "response"]},
        "loopback": {"type": "boolean"},
        "hops": {"type": ["integer", "null"], "min": 0, "max": 255},
        "count": {"type": ["integer", "null"], "min": 1},
        "per_peer": {"type": "boolean"},
        "reply_workers": {"type": "integer", "min": 1},
        "reply_queue": {"type": "integer", "min": 1},
    },
    "additionalProperties": False,
}

_TYPES = {
    "object": dict,
    "string": str,
    "integer": int,
    "number": (int, float),
    "boolean": bool,
    "null": type(None),
}

def _matches(value: Any, type_name: str) -> bool:
    # bool is an int subclass; keep it out of integer/number fields
    if type_name in ("integer", "number") and isinstance(value, bool):
        return False
    return isinstance(value, _TYPES[type_name])

def validate_json_structure(data: Any, schema: Dict[str, Any], path: str = "") -> List[str]:
    """
    Recursively validates data against a simple JSON schema.
    """
    expected = schema.get("type")
    if expected:
        names = expected if isinstance(expected, list) else [expected]
        if not any(_matches(data, n) for n in names):
            return [f"{path or '<root>'}: Expected {' or '.join(names)}, got {type(data).__name__}"]

    if "enum" in schema and data not in schema["enum"]:
        return [f"{path}: Value '{data}' is not in enum {schema['enum']}"]

    errors = []
    if isinstance(data, (int, float)) and not isinstance(data, bool):
        if "min" in schema and data < schema["min"]:
            errors.append(f"{path}: Value {data} is below minimum {schema['min']}")
        if "max" in schema and data > schema["max"]:
            errors.append(f"{path}: Value {data} is above maximum {schema['max']}")

    if isinstance(data, dict):
        props = schema.get("properties", {})
        for key, value in data.items():
            sub_path = f"{path}.{key}" if path else key
            if key in props:
                errors.extend(validate_json_structure(value, props[key], sub_path))
            elif schema.get("additionalProperties") is False:
                errors.append(f"{sub_path}: Unknown field")
    return errors

def validate_config(data: Dict[str, Any]) -> List[str]:
    """
    Validates a configuration dictionary.
    Returns a list of error messages. Empty list implies valid config.
    """
    # Address syntax is checked when the group is parsed so it keeps its own exit code.
    return validate_json_structure(data, SCHEMA)


@dataclass
class ProbeConfig:
    address: str = DEFAULT_GROUP
    port: int = DEFAULT_PORT
    interval_ms: int = 1000
    timeout_ms: int = 500
    interface: Optional[str] = None
    report_interval_s: float = 5.0
    reply_format: str = "echo"
    loopback: bool = True
    hops: Optional[int] = None
    count: Optional[int] = None
    per_peer: bool = True
    reply_workers: int = 4
    reply_queue: int = 256

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: Optional[str] = None) -> "ProbeConfig":
        errors = validate_config(data)
        if errors:
            raise ConfigError(errors, source)
        values = dict(data)
        if isinstance(values.get("interface"), int):
            values["interface"] = str(values["interface"])
        return cls(**values)

    @classmethod
    def load(cls, path: str) -> "ProbeConfig":
        try:
            with open(path, 'r') as f: data = json.load(f)
        except OSError as e:
            raise ConfigError([f"cannot read file: {e}"], path)
        except json.JSONDecodeError as e:
            raise ConfigError([f"invalid JSON: {e}"], path)
        return cls.from_dict(data, path)

    def merged(self, overrides: Dict[str, Any]) -> "ProbeConfig":
        """Return a copy with every non-None override applied."""
        known = {f.name for f in fields(self)}
        changes = {k: v for k, v in overrides.items() if k in known and v is not None}
        merged = replace(self, **changes)
        errors = validate_config(merged.to_dict())
        if errors:
            raise ConfigError(errors)
        return merged

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

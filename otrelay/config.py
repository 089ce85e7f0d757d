from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict

import json

import yaml

DEFAULT_LISTEN_PORT = 7689
DEFAULT_GATEWAY_PORT = 7686


@dataclass(slots=True)
class RelayConfig:
    """Static relay configuration, read once at startup."""

    listen_host: str = "0.0.0.0"
    listen_port: int = DEFAULT_LISTEN_PORT
    gateway_host: str = "localhost"
    gateway_port: int = DEFAULT_GATEWAY_PORT
    # client command rewrite, e.g. TT= (temporary) -> TC= (constant) override
    rewrite_prefix: bool = True
    prefix_from: str = "TT="
    prefix_to: str = "TC="
    # send PS=0 once a client's PS=1 summary has been delivered
    reset_ps_state: bool = True
    # replace one PS=1 field with the value of a watched data-id
    replace_field: bool = False
    watched_id: int = 29
    field_index: int = 11
    trace_frames: bool = False
    reconnect_delay: float = 1.0
    retry_delay: float = 10.0
    max_client_buffer: int = 65536

    def validate(self) -> None:
        if not 0 <= self.listen_port <= 65535:
            raise ValueError(f"listen_port out of range: {self.listen_port}")
        if not 1 <= self.gateway_port <= 65535:
            raise ValueError(f"gateway_port out of range: {self.gateway_port}")
        if not 0 <= self.watched_id <= 255:
            raise ValueError(f"watched_id must be 0-255, got {self.watched_id}")
        if not 1 <= self.field_index <= 25:
            raise ValueError(f"field_index must be 1-25, got {self.field_index}")
        if len(self.prefix_from) != len(self.prefix_to):
            raise ValueError("prefix_from and prefix_to must have the same length")
        if self.reconnect_delay < 0 or self.retry_delay < 0:
            raise ValueError("Reconnect delays must not be negative")
        if self.max_client_buffer <= 0:
            raise ValueError("max_client_buffer must be positive")


_FIELD_TYPES = {f.name: f.type for f in fields(RelayConfig)}

_TRUE_WORDS = {"true", "yes", "on", "1"}
_FALSE_WORDS = {"false", "no", "off", "0"}


def _to_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str) and value.strip().lower() in _TRUE_WORDS | _FALSE_WORDS:
        return value.strip().lower() in _TRUE_WORDS
    raise ValueError(f"{name} must be a boolean, got {value!r}")


def _to_int(name: str, value: Any) -> int:
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValueError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def _to_float(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number, got {value!r}") from None


def _to_str(name: str, value: Any) -> str:
    if isinstance(value, (dict, list)) or value is None:
        raise ValueError(f"{name} must be a string, got {value!r}")
    return str(value)


_CONVERTERS = {"bool": _to_bool, "int": _to_int, "float": _to_float, "str": _to_str}


def config_from_dict(raw: Dict[str, Any]) -> RelayConfig:
    unknown = set(raw) - set(_FIELD_TYPES)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
    values = {name: _CONVERTERS[_FIELD_TYPES[name]](name, value) for name, value in raw.items()}
    config = RelayConfig(**values)
    config.validate()
    return config


def load_config(path: str | Path) -> RelayConfig:
    """Parse a YAML/JSON config file into a structured config object."""

    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(file_path)

    text = file_path.read_text(encoding="utf-8")
    if file_path.suffix.lower() in {".yaml", ".yml"}:
        try:
            raw = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {file_path}: {e}") from e
    else:
        try:
            raw = json.loads(text or "{}")
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {file_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ValueError("Configuration must be an object/dict")

    return config_from_dict(raw)

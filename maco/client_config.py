"""Connection settings used by clients of the master, and config file handling."""

from __future__ import annotations

import contextlib
import json
import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomli_w
import yaml

DEFAULT_TIMEOUT = 10.0

_NS_PER_SECOND = 1_000_000_000
_FILE_MODE = 0o755

_DURATION_UNITS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": _NS_PER_SECOND,
    "m": 60 * _NS_PER_SECOND,
    "h": 3600 * _NS_PER_SECOND,
}
_DURATION_PART = r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)"
_DURATION_RE = re.compile(rf"(?:{_DURATION_PART})+")
_DURATION_PART_RE = re.compile(_DURATION_PART)


def _config_format(filename: str | os.PathLike[str]) -> str:
    """Return "toml", "yaml" or "json" from a file's extension."""
    base = os.path.basename(os.fspath(filename))
    dot = base.rfind(".")
    ext = base[dot:] if dot >= 0 else ""
    if ext == ".toml":
        return "toml"
    if ext in (".yaml", ".yml"):
        return "yaml"
    if ext == ".json":
        return "json"
    raise ValueError(f"invalid config format: {ext}")


def _read_mapping(filename: str | os.PathLike[str]) -> dict[str, Any]:
    """Read a configuration file into a dictionary."""
    fmt = _config_format(filename)
    if fmt == "toml":
        with open(filename, "rb") as fh:
            return tomllib.load(fh)
    text = Path(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) if fmt == "yaml" else json.loads(text)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"config {os.fspath(filename)} does not hold a mapping")
    return data


def _strip_none(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _strip_none(item) for key, item in value.items() if item is not None}
    if isinstance(value, list):
        return [_strip_none(item) for item in value if item is not None]
    return value


def _encode_mapping(fmt: str, data: dict[str, Any]) -> bytes:
    if fmt == "toml":
        return tomli_w.dumps(_strip_none(data)).encode("utf-8")
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=True, allow_unicode=True).encode("utf-8")
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _write_mapping(filename: str | os.PathLike[str], fmt: str, data: dict[str, Any]) -> None:
    """Encode a dictionary in the given format and write it to a file."""
    payload = _encode_mapping(fmt, data)
    fd = os.open(filename, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, _FILE_MODE)
    with os.fdopen(fd, "wb") as fh:
        fh.write(payload)


def _get_str(data: dict[str, Any], key: str, default: str = "") -> str:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ValueError(f"{key}: expected a string, got {type(value).__name__}")
    return value


def _get_bool(data: dict[str, Any], key: str, default: bool = False) -> bool:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValueError(f"{key}: expected a boolean, got {type(value).__name__}")
    return value


def _get_mapping(data: dict[str, Any], key: str) -> dict[str, Any] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValueError(f"{key}: expected a table, got {type(value).__name__}")
    return dict(value)


def _parse_duration(text: str) -> float:
    """Parse a duration such as "10s", "1m30s" or "250ms" into seconds."""
    raw = text.strip()
    sign = 1
    if raw[:1] in ("+", "-"):
        sign = -1 if raw[0] == "-" else 1
        raw = raw[1:]
    if raw == "0":
        return 0.0
    if not raw or not _DURATION_RE.fullmatch(raw):
        raise ValueError(f"invalid duration: {text!r}")
    total = sum(float(number) * _DURATION_UNITS[unit] for number, unit in _DURATION_PART_RE.findall(raw))
    return sign * total / _NS_PER_SECOND


def _duration_seconds(data: dict[str, Any], key: str) -> float:
    value = data.get(key)
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise ValueError(f"{key}: expected a duration, got bool")
    if isinstance(value, (int, float)):
        return value / _NS_PER_SECOND
    if isinstance(value, str):
        return _parse_duration(value)
    raise ValueError(f"{key}: expected a duration, got {type(value).__name__}")


def _fraction(value: int, unit: int) -> str:
    whole, rest = divmod(value, unit)
    if not rest:
        return str(whole)
    width = len(str(unit)) - 1
    digits = str(rest).rjust(width, "0").rstrip("0")
    return f"{whole}.{digits}"


def _format_duration(nanoseconds: int) -> str:
    """Format nanoseconds the way durations are written in TOML files."""
    if nanoseconds == 0:
        return "0s"
    sign = "-" if nanoseconds < 0 else ""
    ns = abs(nanoseconds)
    if ns < 1_000:
        return f"{sign}{ns}ns"
    if ns < 1_000_000:
        return f"{sign}{_fraction(ns, 1_000)}µs"
    if ns < _NS_PER_SECOND:
        return f"{sign}{_fraction(ns, 1_000_000)}ms"
    hours, rest = divmod(ns, 3600 * _NS_PER_SECOND)
    minutes, rest = divmod(rest, 60 * _NS_PER_SECOND)
    text = sign
    if hours:
        text += f"{hours}h"
    if hours or minutes:
        text += f"{minutes}m"
    return f"{text}{_fraction(rest, _NS_PER_SECOND)}s"


@dataclass
class ClientConfig:
    """Where the master is and how to connect to it; timeouts are in seconds."""

    target: str = ""
    dial_timeout: float = DEFAULT_TIMEOUT
    request_timeout: float = DEFAULT_TIMEOUT
    cert_file: str = ""
    key_file: str = ""
    ca_file: str = ""
    _initialized: bool = field(default=False, init=False, repr=False, compare=False)

    def init(self) -> None:
        """Check the settings and fill in defaults; only the first call has any effect."""
        if self._initialized:
            return
        self._initialized = True
        if not self.target:
            raise ValueError("missing target")
        if self.dial_timeout <= 0:
            self.dial_timeout = DEFAULT_TIMEOUT
        if self.request_timeout <= 0:
            self.request_timeout = DEFAULT_TIMEOUT

    def save(self, filename: str | os.PathLike[str]) -> None:
        """Write the settings to a .toml, .yaml, .yml or .json file."""
        fmt = _config_format(filename)
        _write_mapping(filename, fmt, self._to_mapping(fmt))

    def _to_mapping(self, fmt: str) -> dict[str, Any]:
        def duration(seconds: float) -> Any:
            nanoseconds = round(seconds * _NS_PER_SECOND)
            return _format_duration(nanoseconds) if fmt == "toml" else nanoseconds

        return {
            "target": self.target,
            "dial-timeout": duration(self.dial_timeout),
            "request-timeout": duration(self.request_timeout),
            "cert-file": self.cert_file,
            "key-file": self.key_file,
            "ca-file": self.ca_file,
        }

    @classmethod
    def _from_mapping(cls, data: dict[str, Any]) -> ClientConfig:
        return cls(
            target=_get_str(data, "target"),
            dial_timeout=_duration_seconds(data, "dial-timeout"),
            request_timeout=_duration_seconds(data, "request-timeout"),
            cert_file=_get_str(data, "cert-file"),
            key_file=_get_str(data, "key-file"),
            ca_file=_get_str(data, "ca-file"),
        )


def from_path(filename: str | os.PathLike[str]) -> ClientConfig:
    """Load client settings from a .toml, .yaml, .yml or .json file."""
    return ClientConfig._from_mapping(_read_mapping(filename))


def _home_directory() -> str:
    with contextlib.suppress(RuntimeError, KeyError):
        return str(Path.home())
    return ""
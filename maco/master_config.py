"""Settings of the master process."""

from __future__ import annotations

import contextlib
import os
from dataclasses import dataclass, field
from typing import Any

from maco.client_config import (
    _config_format,
    _get_bool,
    _get_mapping,
    _get_str,
    _home_directory,
    _read_mapping,
    _write_mapping,
)

DEFAULT_LISTEN_ADDRESS = ":4500"


def _resolve_data_root(data_root: str) -> str:
    """Make sure the data directory exists and return the path to use."""
    if not data_root:
        root = os.path.join(_home_directory(), ".maco")
        with contextlib.suppress(OSError):
            os.makedirs(root, 0o755, exist_ok=True)
        return root
    try:
        os.stat(data_root)
    except FileNotFoundError:
        with contextlib.suppress(OSError):
            os.makedirs(data_root, 0o755, exist_ok=True)
    except OSError as exc:
        raise OSError(f"read data root directory: {exc}") from exc
    if data_root.startswith("~") or data_root.startswith("./"):
        return os.path.abspath(data_root)
    return data_root


@dataclass
class MasterConfig:
    """Listening address, TLS files, data directory and logging of the master."""

    listen: str = DEFAULT_LISTEN_ADDRESS
    cert_file: str = ""
    key_file: str = ""
    ca_file: str = ""
    enable_openapi: bool = False
    data_root: str = ""
    auto_accept: bool = False
    log: dict[str, Any] | None = field(default_factory=dict)
    _initialized: bool = field(default=False, init=False, repr=False, compare=False)

    def init(self) -> None:
        """Fill in defaults and prepare the data directory; only the first call has any effect."""
        if self._initialized:
            return
        self._initialized = True
        if self.log is None:
            self.log = {}
        self.data_root = _resolve_data_root(self.data_root)

    def save(self, filename: str | os.PathLike[str]) -> None:
        """Write the settings to a .toml, .yaml, .yml or .json file."""
        fmt = _config_format(filename)
        data = {
            "listen": self.listen,
            "cert-file": self.cert_file,
            "key-file": self.key_file,
            "ca-file": self.ca_file,
            "enable_openapi": self.enable_openapi,
            "data_root": self.data_root,
            "auto_accept": self.auto_accept,
            "log": dict(self.log) if self.log is not None else None,
        }
        _write_mapping(filename, fmt, data)


def from_path(filename: str | os.PathLike[str]) -> MasterConfig:
    """Load master settings from a .toml, .yaml, .yml or .json file."""
    data = _read_mapping(filename)
    return MasterConfig(
        listen=_get_str(data, "listen"),
        cert_file=_get_str(data, "cert-file"),
        key_file=_get_str(data, "key-file"),
        ca_file=_get_str(data, "ca-file"),
        enable_openapi=_get_bool(data, "enable_openapi"),
        data_root=_get_str(data, "data_root"),
        auto_accept=_get_bool(data, "auto_accept"),
        log=_get_mapping(data, "log"),
    )
"""Settings of the minion agent."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from typing import Any

from maco.client_config import _config_format, _get_mapping, _get_str, _read_mapping, _write_mapping
from maco.master_config import _resolve_data_root

DEFAULT_MASTER_ADDRESS = "127.0.0.1:4500"


def _hostname() -> str:
    try:
        return socket.gethostname()
    except OSError:
        return ""


@dataclass
class MinionConfig:
    """Identity of the minion, the master it talks to, and its data directory."""

    name: str = field(default_factory=_hostname)
    master: str = DEFAULT_MASTER_ADDRESS
    cert_file: str = ""
    key_file: str = ""
    ca_file: str = ""
    data_root: str = ""
    log: dict[str, Any] | None = field(default_factory=dict)
    _initialized: bool = field(default=False, init=False, repr=False, compare=False)

    def init(self) -> None:
        """Fill in defaults and prepare the data directory; only the first call has any effect."""
        if self._initialized:
            return
        self._initialized = True
        if self.log is None:
            self.log = {}
        if not self.name:
            self.name = _hostname()
        self.data_root = _resolve_data_root(self.data_root)

    def save(self, filename: str | os.PathLike[str]) -> None:
        """Write the settings to a .toml, .yaml, .yml or .json file."""
        fmt = _config_format(filename)
        data = {
            "name": self.name,
            "master": self.master,
            "cert-file": self.cert_file,
            "key-file": self.key_file,
            "ca-file": self.ca_file,
            "data_root": self.data_root,
            "log": dict(self.log) if self.log is not None else None,
        }
        _write_mapping(filename, fmt, data)


def from_path(filename: str | os.PathLike[str]) -> MinionConfig:
    """Load minion settings from a .toml, .yaml, .yml or .json file."""
    data = _read_mapping(filename)
    return MinionConfig(
        name=_get_str(data, "name"),
        master=_get_str(data, "master"),
        cert_file=_get_str(data, "cert-file"),
        key_file=_get_str(data, "key-file"),
        ca_file=_get_str(data, "ca-file"),
        data_root=_get_str(data, "data_root"),
        log=_get_mapping(data, "log"),
    )
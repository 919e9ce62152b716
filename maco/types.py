"""Data types exchanged between the master, minions and clients."""

from __future__ import annotations

import base64
from dataclasses import asdict, dataclass, field
from enum import IntEnum, StrEnum
from typing import Any


class MinionState(StrEnum):
    """Registration state of a minion key."""

    UNACCEPTED = "unaccepted"
    ACCEPTED = "accepted"
    AUTO_SIGN = "auto_sign"
    DENIED = "denied"
    REJECTED = "rejected"


class ResultType(IntEnum):
    """Outcome of a call on one minion."""

    SKIP = 0
    OK = 1
    ERROR = 2


class EventType(IntEnum):
    """Kind of message on the dispatch stream."""

    UNKNOWN = 0
    CONNECT = 1
    CALL = 2


@dataclass
class Minion:
    """Identity and status of a minion."""

    name: str = ""
    uid: str = ""
    hostname: str = ""
    ip: str = ""
    os: str = ""
    arch: str = ""
    version: str = ""
    tags: dict[str, str] = field(default_factory=dict)
    registry_timestamp: int = 0
    online_timestamp: int = 0
    offline_timestamp: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready dictionary."""
        data = asdict(self)
        data["tags"] = dict(self.tags)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Minion:
        """Build a minion from a dictionary, ignoring unknown keys."""
        known = {name: data[name] for name in cls.__dataclass_fields__ if name in data and data[name] is not None}
        if "tags" in known:
            known["tags"] = dict(known["tags"])
        return cls(**known)


@dataclass
class MinionKey:
    """A minion together with its public key and registration state."""

    minion: Minion | None = None
    pub_key: bytes = b""
    state: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready dictionary; the key is base64 encoded."""
        return {
            "minion": self.minion.to_dict() if self.minion is not None else None,
            "pub_key": base64.b64encode(self.pub_key).decode("ascii"),
            "state": self.state,
        }


@dataclass
class Selector:
    """Which minions a call targets."""

    minions: list[str] = field(default_factory=list)


@dataclass
class CallRequest:
    """A command to run on selected minions."""

    id: int = 0
    selector: Selector | None = None
    function: str = ""
    args: list[str] = field(default_factory=list)
    timeout: int = 0


@dataclass
class CallResponse:
    """The result of a call on one minion."""

    id: int = 0
    type: ResultType = ResultType.SKIP
    result: bytes = b""
    error: str = ""
    ret_code: int = 0


@dataclass
class ReportItem:
    """One minion's entry in a call report."""

    minion: str = ""
    result: bool = False
    error: str = ""
    data: bytes = b""


@dataclass
class ReportSummary:
    """Summary section of a call report."""


@dataclass
class Report:
    """The collected results of a call."""

    items: list[ReportItem] = field(default_factory=list)
    summary: ReportSummary = field(default_factory=ReportSummary)
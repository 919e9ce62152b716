"""Request handlers of the master's public RPC service."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from maco.errors import MacoError, StatusError, new_bad_request, new_not_found, parse
from maco.scheduler import Scheduler
from maco.storage import Storage
from maco.types import CallRequest, MinionKey, MinionState, Report

DEFAULT_CALL_TIMEOUT = 10

_log = logging.getLogger(__name__)


def _status(exc: BaseException) -> StatusError:
    parsed = parse(exc)
    assert parsed is not None
    return parsed.to_status()


def _require(minions: list[str]) -> None:
    if not minions:
        raise new_bad_request("minions is required").to_status()


class MacoService:
    """Answers client requests about minion keys and runs calls on minions."""

    def __init__(self, storage: Storage, scheduler: Scheduler):
        self.storage = storage
        self.scheduler = scheduler

    def ping(self) -> None:
        """Answer a liveness check."""
        return None

    def list_minions(self, states: Iterable[MinionState | str]) -> dict[MinionState, list[str]]:
        """Return the minions in each requested state; other states map to empty lists."""
        result: dict[MinionState, list[str]] = {state: [] for state in MinionState}
        for value in states:
            names = self.storage.get_minions(value)
            result[MinionState(value)] = names
        return result

    def get_minion(self, name: str) -> MinionKey:
        """Return one minion's key entry."""
        return self.storage.get_minion(name)

    def accept_minion(
        self, minions: list[str], accept_all: bool, include_rejected: bool, include_denied: bool
    ) -> list[str]:
        """Accept the named minions, or every unaccepted one; return the names handled."""
        targets: list[str] = []
        if accept_all:
            pending = self.storage.get_minions(MinionState.UNACCEPTED)
            if include_rejected:
                targets.extend(self.storage.get_minions(MinionState.REJECTED))
            if include_denied:
                targets.extend(self.storage.get_minions(MinionState.DENIED))
            for name in pending:
                try:
                    self.storage.accept_minion(name, include_rejected, include_denied)
                except (MacoError, OSError) as exc:
                    _log.error("accept minion id=%s: %s", name, exc)
                else:
                    targets.append(name)
            return targets

        _require(minions)
        for name in minions:
            try:
                self.storage.accept_minion(name, include_rejected, include_denied)
            except (MacoError, OSError) as exc:
                raise _status(exc) from exc
            targets.append(name)
        return targets

    def reject_minion(
        self, minions: list[str], reject_all: bool, include_accepted: bool, include_denied: bool
    ) -> list[str]:
        """Reject the named minions, or every unaccepted one; return the names handled."""
        targets: list[str] = []
        if reject_all:
            pending = self.storage.get_minions(MinionState.UNACCEPTED)
            if include_accepted:
                targets.extend(self.storage.get_minions(MinionState.ACCEPTED))
            if include_denied:
                targets.extend(self.storage.get_minions(MinionState.DENIED))
            for name in pending:
                try:
                    self.storage.reject_minion(name, include_accepted, include_denied)
                except (MacoError, OSError) as exc:
                    _log.error("reject minion id=%s: %s", name, exc)
                else:
                    targets.append(name)
            return targets

        _require(minions)
        for name in minions:
            try:
                self.storage.reject_minion(name, include_accepted, include_denied)
            except (MacoError, OSError) as exc:
                raise _status(exc) from exc
            targets.append(name)
        return targets

    def delete_minion(self, minions: list[str], delete_all: bool) -> list[str]:
        """Delete the named minions, or all of them; return the names deleted."""
        targets: list[str] = []
        if delete_all:
            for name in self.storage.list_minions():
                try:
                    self.storage.delete_minion(name)
                except (MacoError, OSError) as exc:
                    _log.error("delete minion id=%s: %s", name, exc)
                else:
                    targets.append(name)
            return targets

        _require(minions)
        for name in minions:
            try:
                self.storage.delete_minion(name)
            except (MacoError, OSError) as exc:
                raise _status(exc) from exc
            targets.append(name)
        return targets

    def print_minion(self, minions: list[str], print_all: bool) -> list[MinionKey]:
        """Return the key entries of the named minions, or of all of them."""
        targets: list[MinionKey] = []
        if print_all:
            for name in self.storage.list_minions():
                try:
                    targets.append(self.storage.get_minion(name))
                except (MacoError, OSError, ValueError):
                    continue
            return targets

        _require(minions)
        for name in minions:
            try:
                targets.append(self.storage.get_minion(name))
            except (MacoError, OSError, ValueError) as exc:
                raise new_not_found("minion not found").to_status() from exc
        return targets

    def call(self, request: CallRequest) -> Report:
        """Run a call on its selected minions; a zero timeout means ten seconds."""
        if request.timeout == 0:
            request.timeout = DEFAULT_CALL_TIMEOUT
        try:
            return self.scheduler.handle(request)
        except Exception as exc:
            raise _status(exc) from exc
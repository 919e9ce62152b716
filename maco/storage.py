"""On-disk registry of minion keys and their acceptance states, kept by the master."""

from __future__ import annotations

import json
import logging
import os
import queue
import shutil
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from maco.errors import Code, MacoError, new_bad_request, new_not_found
from maco.types import Minion, MinionKey, MinionState

MINION_PATH = "minions"
MINION_ACCEPT_PATH = "minions_accept"
MINION_AUTO_PATH = "minions_autosign"
MINION_PRE_PATH = "minions_pre"
MINION_DENIED_PATH = "minions_denied"
MINION_REJECT_PATH = "minions_rejected"

MASTER_PRIVATE_FILE = "master.pem"
MASTER_PUBLIC_FILE = "master.pub"

_RSA_BITS = 2048
_FILE_MODE = 0o600
_DIR_MODE = 0o700

_STATE_DIRS = {
    MinionState.UNACCEPTED: MINION_PRE_PATH,
    MinionState.ACCEPTED: MINION_ACCEPT_PATH,
    MinionState.AUTO_SIGN: MINION_AUTO_PATH,
    MinionState.DENIED: MINION_DENIED_PATH,
    MinionState.REJECTED: MINION_REJECT_PATH,
}

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RsaPair:
    """A PEM encoded RSA private key and its public key."""

    private: bytes
    public: bytes


@dataclass(frozen=True)
class StorageEvent:
    """A change of a minion's state, published to subscribers."""

    minion: str
    state: MinionState | str
    deleted: bool = False


def parse_state(state: MinionState | str) -> str:
    """Return the directory name that holds minions in the given state."""
    try:
        return _STATE_DIRS[MinionState(state)]
    except ValueError:
        raise new_bad_request("unknown minion state") from None


def walk_minions(root: str | os.PathLike[str], state: MinionState | str) -> list[str]:
    """List the names of the minions filed under the given state."""
    directory = os.path.join(os.fspath(root), parse_state(state))
    return sorted(os.listdir(directory))


def _generate_rsa(bits: int = _RSA_BITS) -> RsaPair:
    key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    private = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    )
    public = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return RsaPair(private=private, public=public)


def _write_file(path: str, data: bytes, mode: int = _FILE_MODE) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "wb") as fh:
        fh.write(data)


def _read_optional(path: str) -> bytes | None:
    try:
        return Path(path).read_bytes()
    except FileNotFoundError:
        return None


def _as_state(text: str) -> MinionState | str:
    try:
        return MinionState(text)
    except ValueError:
        return text


class Storage:
    """Minion keys, states and the master's RSA pair under one data directory."""

    def __init__(self, root: str | os.PathLike[str]):
        self.root = os.fspath(root)
        os.makedirs(self.root, exist_ok=True)

        _log.info("read master pki pairs")
        private_path = os.path.join(self.root, MASTER_PRIVATE_FILE)
        public_path = os.path.join(self.root, MASTER_PUBLIC_FILE)
        private = _read_optional(private_path)
        public = _read_optional(public_path)
        if private is None or public is None:
            pair = _generate_rsa()
            _log.info("generate master rsa pair private=%s public=%s", private_path, public_path)
            try:
                _write_file(private_path, pair.private)
            except OSError as exc:
                raise OSError(f"save master private key: {exc}") from exc
            try:
                _write_file(public_path, pair.public)
            except OSError as exc:
                raise OSError(f"save master public key: {exc}") from exc
        else:
            pair = RsaPair(private=private, public=public)
        self._pair = pair

        for name in (MINION_PATH, *_STATE_DIRS.values()):
            os.makedirs(os.path.join(self.root, name), exist_ok=True)

        self._lock = threading.RLock()
        self._cache: dict[MinionState, set[str]] = {
            state: set(walk_minions(self.root, state)) for state in _STATE_DIRS
        }

        self._sub_lock = threading.Lock()
        self._next_id = 0
        self._subscribers: dict[int, queue.Queue[StorageEvent | None]] = {}

    def server_rsa(self) -> RsaPair:
        """Return the master's RSA pair."""
        return self._pair

    def subscribe(self) -> tuple[queue.Queue[StorageEvent | None], Callable[[], None]]:
        """Return a queue of state changes and a function that ends the subscription.

        Ending the subscription puts None on the queue.
        """
        events: queue.Queue[StorageEvent | None] = queue.Queue()
        with self._sub_lock:
            self._next_id += 1
            sub_id = self._next_id
            self._subscribers[sub_id] = events

        def stop() -> None:
            with self._sub_lock:
                removed = self._subscribers.pop(sub_id, None)
            if removed is not None:
                removed.put(None)

        return events, stop

    def _publish(self, event: StorageEvent) -> None:
        with self._sub_lock:
            subscribers = list(self._subscribers.values())
        for events in subscribers:
            events.put(event)

    def get_minions(self, state: MinionState | str) -> list[str]:
        """Return the names of the minions in the given state."""
        with self._lock:
            names = self._cache.get(state)  # type: ignore[call-overload]
            if names is None:
                raise new_bad_request("minion not found")
            return sorted(names)

    def list_minions(self) -> list[str]:
        """Return the names of all known minions."""
        with self._lock:
            return [name for names in self._cache.values() for name in sorted(names)]

    def _minion_dir(self, name: str) -> str:
        return os.path.join(self.root, MINION_PATH, name)

    def _read_state(self, name: str) -> MinionState | str:
        try:
            text = Path(self._minion_dir(name), "state").read_text(encoding="utf-8")
        except FileNotFoundError:
            raise new_not_found("minion not found") from None
        return _as_state(text)

    def _write_state(self, name: str, state: MinionState | str) -> None:
        _write_file(os.path.join(self._minion_dir(name), "state"), str(state).encode("utf-8"))

    def add_minion(self, minion: Minion, pub_key: bytes, auto_sign: bool, auto_denied: bool) -> MinionKey:
        """Register a minion if it is new, record its details and return its key entry."""
        info = MinionKey(minion=minion, pub_key=self._pair.public)
        try:
            state = self._read_state(minion.name)
        except MacoError as exc:
            if exc.code != Code.NOT_FOUND:
                raise
            minion.registry_timestamp = int(time.time())
            state = MinionState.UNACCEPTED
            if auto_sign:
                state = MinionState.AUTO_SIGN
            if auto_denied:
                state = MinionState.DENIED
            info.state = str(state)

            name = minion.name
            minion_root = self._minion_dir(name)
            try:
                os.makedirs(minion_root, _DIR_MODE, exist_ok=True)
            except OSError:
                pass
            self._link_new(name, state)
            _write_file(os.path.join(minion_root, "minion.pub"), pub_key)
            self._write_state(name, state)
            with self._lock:
                self._cache[state].add(name)

        info.state = str(state)
        self.update_minion(minion)
        return info

    def _link_new(self, name: str, state: MinionState) -> None:
        source = self._minion_dir(name)
        link = os.path.join(self.root, _STATE_DIRS[state], name)
        try:
            _write_file(os.path.join(link, "state"), str(state).encode("utf-8"))
        except OSError:
            pass
        if os.path.lexists(link):
            try:
                if os.readlink(link) == source:
                    return
            except OSError:
                pass
        os.symlink(source, link)

    def update_minion(self, minion: Minion) -> None:
        """Write a minion's details to its directory."""
        minion_root = self._minion_dir(minion.name)
        try:
            os.makedirs(minion_root, _DIR_MODE, exist_ok=True)
        except OSError:
            pass
        data = json.dumps(minion.to_dict(), indent=" ").encode("utf-8")
        _write_file(os.path.join(minion_root, "minion"), data)

    def read_minion(self, name: str) -> Minion:
        """Read a minion's details from its directory."""
        try:
            data = Path(self._minion_dir(name), "minion").read_bytes()
        except FileNotFoundError:
            raise new_not_found("minion not found") from None
        return Minion.from_dict(json.loads(data))

    def get_minion(self, name: str) -> MinionKey:
        """Return a minion's details, public key and state."""
        minion = self.read_minion(name)
        root = self._minion_dir(name)
        try:
            pub_key = Path(root, "minion.pub").read_bytes()
        except FileNotFoundError:
            raise new_not_found("minion not found") from None
        state = Path(root, "state").read_text(encoding="utf-8")
        return MinionKey(minion=minion, pub_key=pub_key, state=state)

    def _take(self, name: str, states: Iterable[MinionState]) -> bool:
        for state in states:
            names = self._cache[state]
            if name in names:
                names.discard(name)
                return True
        return False

    def accept_minion(self, name: str, include_rejected: bool, include_denied: bool) -> None:
        """Move a minion to the accepted state."""
        candidates = [MinionState.UNACCEPTED]
        if include_rejected:
            candidates.append(MinionState.REJECTED)
        if include_denied:
            candidates.append(MinionState.DENIED)
        self._transition(name, candidates, MinionState.ACCEPTED)

    def reject_minion(self, name: str, include_accepted: bool, include_denied: bool) -> None:
        """Move a minion to the rejected state."""
        candidates = [MinionState.UNACCEPTED]
        if include_accepted:
            candidates += [MinionState.ACCEPTED, MinionState.AUTO_SIGN]
        if include_denied:
            candidates.append(MinionState.DENIED)
        self._transition(name, candidates, MinionState.REJECTED)

    def _transition(self, name: str, candidates: list[MinionState], target: MinionState) -> None:
        with self._lock:
            found = self._take(name, candidates)
        if not found:
            raise new_not_found("minion not found")
        with self._lock:
            self._cache[target].add(name)

        self._move_link(name, target)
        try:
            self._write_state(name, target)
        except OSError:
            pass
        self._publish(StorageEvent(minion=name, state=target))

    def _move_link(self, name: str, target: MinionState) -> None:
        state = self._read_state(name)
        source = self._minion_dir(name)
        os.symlink(source, os.path.join(self.root, _STATE_DIRS[target], name))
        self._unlink_state(name, state)

    def _unlink_state(self, name: str, state: MinionState | str) -> None:
        try:
            kind = parse_state(state)
        except MacoError:
            return
        link = os.path.join(self.root, kind, name)
        try:
            os.remove(link)
        except OSError as exc:
            _log.error("remove %s: %s", link, exc)

    def delete_minion(self, name: str) -> None:
        """Forget a minion and remove its files."""
        state = self._read_state(name)
        with self._lock:
            names = self._cache.get(state)  # type: ignore[call-overload]
            if names is not None:
                names.discard(name)

        self._unlink_state(name, state)
        self._publish(StorageEvent(minion=name, state=state, deleted=True))

        try:
            shutil.rmtree(self._minion_dir(name))
        except OSError as exc:
            _log.error("remove minion %s failed: %s", name, exc)
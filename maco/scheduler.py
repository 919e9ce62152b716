"""Routing of calls from the master to connected minions and collection of their results."""

from __future__ import annotations

import asyncio
import base64
import concurrent.futures
import json
import logging
import os
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Protocol

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from maco.errors import MacoError, new_bad_request
from maco.storage import RsaPair, Storage, StorageEvent
from maco.types import (
    CallRequest,
    CallResponse,
    EventType,
    Minion,
    MinionKey,
    MinionState,
    Report,
    ReportItem,
    ResultType,
    Selector,
)

_ID_MASK = 0x7FFFFFFF
_U64_MASK = 0xFFFFFFFFFFFFFFFF
_PKCS1_OVERHEAD = 11
_POLL_INTERVAL = 0.05

_DISCONNECTS = (EOFError, asyncio.CancelledError, concurrent.futures.CancelledError)

_log = logging.getLogger(__name__)


class _DispatchStream(Protocol):
    def send(self, message: dict[str, Any]) -> None: ...

    def recv(self) -> dict[str, Any]: ...


@dataclass
class _Message:
    """What a pipe reports to the scheduler."""

    id: int = 0
    name: str = ""
    done: bool = False
    err: BaseException | None = None
    call: CallResponse | None = None


def _public_key(pem: bytes) -> rsa.RSAPublicKey:
    key = serialization.load_pem_public_key(pem)
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("not an RSA public key")
    return key


def _private_key(pem: bytes) -> rsa.RSAPrivateKey:
    key = serialization.load_pem_private_key(pem, password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError("not an RSA private key")
    return key


def _encrypt(data: bytes, public_pem: bytes) -> bytes:
    """Encrypt data of any length with an RSA public key, block by block."""
    key = _public_key(public_pem)
    size = key.key_size // 8 - _PKCS1_OVERHEAD
    return b"".join(key.encrypt(data[start : start + size], padding.PKCS1v15()) for start in range(0, len(data), size))


def _decrypt(data: bytes, private_pem: bytes) -> bytes:
    """Decrypt data produced by _encrypt with the matching private key."""
    key = _private_key(private_pem)
    size = key.key_size // 8
    if len(data) % size:
        raise ValueError("ciphertext length is not a multiple of the key size")
    return b"".join(key.decrypt(data[start : start + size], padding.PKCS1v15()) for start in range(0, len(data), size))


def _dump_call_request(request: CallRequest) -> bytes:
    selector = None if request.selector is None else {"minions": list(request.selector.minions)}
    payload = {
        "id": request.id,
        "selector": selector,
        "function": request.function,
        "args": list(request.args),
        "timeout": request.timeout,
    }
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def _load_call_request(data: bytes) -> CallRequest:
    payload = json.loads(data)
    selector = payload.get("selector")
    return CallRequest(
        id=int(payload.get("id", 0)),
        selector=None if selector is None else Selector(minions=list(selector.get("minions") or [])),
        function=str(payload.get("function", "")),
        args=[str(arg) for arg in payload.get("args") or []],
        timeout=int(payload.get("timeout", 0)),
    )


def _dump_call_response(response: CallResponse) -> bytes:
    payload = {
        "id": response.id,
        "type": int(response.type),
        "result": base64.b64encode(response.result).decode("ascii"),
        "error": response.error,
        "ret_code": response.ret_code,
    }
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def _load_call_response(data: bytes) -> CallResponse:
    payload = json.loads(data)
    return CallResponse(
        id=int(payload.get("id", 0)),
        type=ResultType(int(payload.get("type", 0))),
        result=base64.b64decode(payload.get("result") or ""),
        error=str(payload.get("error", "")),
        ret_code=int(payload.get("ret_code", 0)),
    )


class IdAllocator:
    """Hands out unique, non-zero 31-bit identifiers."""

    def __init__(self, start: int | None = None):
        self._used: set[int] = set()
        self._next = int.from_bytes(os.urandom(8), "big") if start is None else start & _U64_MASK
        self._lock = threading.Lock()

    def get(self) -> int:
        """Return an identifier that is not in use."""
        with self._lock:
            while True:
                id_ = self._next & _ID_MASK
                self._next = (self._next + 1) & _U64_MASK
                if id_ == 0 or id_ in self._used:
                    continue
                self._used.add(id_)
                return id_

    def free(self, id_: int) -> None:
        """Release an identifier; releasing one that is not in use is an error."""
        with self._lock:
            if id_ not in self._used:
                raise RuntimeError("free of unused pipe ID")
            self._used.remove(id_)


class Pipe:
    """The master's end of one minion's dispatch stream."""

    def __init__(
        self,
        name: str,
        rsa_pair: RsaPair,
        public_key: bytes,
        stream: _DispatchStream,
        messages: queue.Queue[_Message],
    ):
        self.name = name
        self.rsa_pair = rsa_pair
        self.public_key = public_key
        self.stream = stream
        self._messages = messages
        self._stopped = threading.Event()

    def send(self, request: CallRequest | None) -> None:
        """Encrypt a call for the minion and send it down the stream."""
        response: dict[str, Any] = {"type": EventType.UNKNOWN, "call": None}
        if request is not None:
            try:
                payload = _dump_call_request(request)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"serialize dispatch message: {exc}") from exc
            try:
                data = _encrypt(payload, self.public_key)
            except ValueError as exc:
                raise ValueError(f"encode dispatch message: {exc}") from exc
            response = {"type": EventType.CALL, "call": {"id": request.id, "data": data}}
        self.stream.send(response)

    def run(self) -> None:
        """Read the minion's replies until the stream ends or the pipe is stopped."""
        while not self._stopped.is_set():
            try:
                message = self.stream.recv()
            except _DISCONNECTS:
                self._messages.put(_Message(name=self.name, done=True))
                return
            except Exception as exc:
                self._messages.put(_Message(name=self.name, err=exc, done=True))
                raise
            self._handle(message)

    def _handle(self, message: dict[str, Any]) -> None:
        if message.get("type") != EventType.CALL:
            return
        call = message.get("call")
        if call is None:
            return
        id_ = int(call.get("id", 0))
        if call.get("error"):
            self._messages.put(_Message(id=id_, name=self.name, done=True))
            return
        try:
            data = _decrypt(call.get("data") or b"", self.rsa_pair.private)
        except (ValueError, TypeError) as exc:
            self._messages.put(_Message(id=id_, name=self.name, err=exc))
            return
        try:
            response = _load_call_response(data)
        except (ValueError, TypeError) as exc:
            self._messages.put(_Message(id=id_, name=self.name, err=exc))
            return
        self._messages.put(_Message(id=id_, name=self.name, call=response))

    def stop(self) -> None:
        """Ask the pipe to stop reading."""
        self._stopped.set()


class Task:
    """A call waiting for the answers of a number of minions."""

    def __init__(self, id_: int, total: int, report: Report):
        self.id = id_
        self.total = total
        self.gets = 0
        self.report = report
        self._packs: queue.Queue[tuple[str, CallResponse | None]] = queue.Queue()

    def notify(self, name: str, payload: CallResponse | None) -> None:
        """Hand one minion's answer to the task."""
        self._packs.put((name, payload))

    def execute(self, timeout: float) -> None:
        """Collect answers into the report until all arrived; raise TimeoutError if time runs out."""
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError("context deadline exceeded")
            try:
                name, call = self._packs.get(timeout=remaining)
            except queue.Empty:
                raise TimeoutError("context deadline exceeded") from None
            self.gets += 1
            if call is None:
                continue
            item = ReportItem(
                minion=name,
                error=call.error,
                data=call.result,
                result=call.type == ResultType.OK,
            )
            self.report.items.append(item)
            if self.gets >= self.total:
                return


class Scheduler:
    """Keeps the connected minions and sends calls to them."""

    def __init__(self, storage: Storage):
        self._storage = storage
        self._plock = threading.RLock()
        self._pipes: dict[str, Pipe] = {}
        self._mlock = threading.Lock()
        self._minions: set[str] = set()
        self._down: set[str] = set()
        for state in (MinionState.ACCEPTED, MinionState.AUTO_SIGN):
            for name in storage.get_minions(state):
                self._minions.add(name)
                self._down.add(name)
        self._id_alloc = IdAllocator()
        self._tlock = threading.Lock()
        self._tasks: dict[int, Task] = {}
        self._messages: queue.Queue[_Message] = queue.Queue()
        self._events, self._event_cancel = storage.subscribe()
        self._events_open = True

    def _is_accepted(self, name: str) -> bool:
        with self._mlock:
            return name in self._minions

    def _pipe(self, name: str) -> Pipe | None:
        with self._plock:
            return self._pipes.get(name)

    def add_stream(self, minion: Minion, public_key: bytes, stream: _DispatchStream) -> tuple[Pipe, MinionKey]:
        """Register a connected minion and return its pipe and key entry."""
        name = minion.name
        if self._pipe(name) is not None:
            raise ValueError(f"minion {name} already exists")

        info = self._storage.add_minion(minion, public_key, False, True)
        pipe = Pipe(name, self._storage.server_rsa(), public_key, stream, self._messages)
        with self._plock:
            self._pipes[name] = pipe
        with self._mlock:
            if info.state in (MinionState.ACCEPTED, MinionState.AUTO_SIGN):
                self._minions.add(name)
            self._down.discard(name)
        return pipe, info

    def send_to(self, name: str, request: CallRequest) -> None:
        """Send a call to one accepted, connected minion."""
        if not self._is_accepted(name):
            raise ValueError("target is not be accepted")
        pipe = self._pipe(name)
        if pipe is None:
            raise ValueError("name is not online")
        pipe.send(request)

    def handle(self, request: CallRequest) -> Report:
        """Run a call on its selected minions and return the collected report."""
        report = Report()
        next_id = self._id_alloc.get()
        try:
            request.id = next_id
            targets = list(request.selector.minions) if request.selector is not None else []
            if not targets:
                raise new_bad_request("no targets")

            pipes: list[Pipe] = []
            for name in targets:
                if not self._is_accepted(name):
                    report.items.append(ReportItem(minion=name, error=f"minion {name} is not accepted"))
                    continue
                pipe = self._pipe(name)
                if pipe is None:
                    report.items.append(ReportItem(minion=name, error=f"minion {name} is not online"))
                else:
                    pipes.append(pipe)

            if not pipes:
                raise new_bad_request("no available minions")

            task = Task(next_id, len(pipes), report)
            with self._tlock:
                self._tasks[next_id] = task
            try:
                for pipe in pipes:
                    try:
                        pipe.send(request)
                    except Exception as exc:
                        _log.error("send msg to %s: %s", pipe.name, exc)
                task.execute(request.timeout)
            finally:
                with self._tlock:
                    self._tasks.pop(next_id, None)
        finally:
            self._id_alloc.free(next_id)
        return report

    def run(self, stop_event: threading.Event) -> None:
        """Route pipe messages and storage events until stop_event is set."""
        try:
            while not stop_event.is_set():
                self._drain_events()
                try:
                    message = self._messages.get(timeout=_POLL_INTERVAL)
                except queue.Empty:
                    continue
                self._route(message)
        finally:
            self._event_cancel()

    def _drain_events(self) -> None:
        while self._events_open:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                return
            if event is None:
                self._events_open = False
                return
            self._apply_event(event)

    def _apply_event(self, event: StorageEvent) -> None:
        with self._mlock:
            if event.deleted or event.state in (MinionState.REJECTED, MinionState.DENIED):
                self._minions.discard(event.minion)
            elif event.state in (MinionState.ACCEPTED, MinionState.AUTO_SIGN):
                self._minions.add(event.minion)

    def _route(self, message: _Message) -> None:
        if message.done:
            self._remove_pipe(message.name)
            return
        call = message.call if message.call is not None else CallResponse(id=message.id)
        if message.err is not None:
            call.type = ResultType.ERROR
            call.error = str(message.err)
        with self._tlock:
            task = self._tasks.get(message.id)
        if task is not None:
            task.notify(message.name, call)

    def _remove_pipe(self, name: str) -> None:
        if not name:
            raise ValueError("pipe name is empty")
        with self._plock:
            self._pipes.pop(name, None)
        with self._mlock:
            self._down.add(name)
        try:
            minion = self._storage.read_minion(name)
        except (MacoError, OSError, ValueError):
            return
        minion.offline_timestamp = int(time.time())
        try:
            self._storage.update_minion(minion)
        except OSError as exc:
            _log.error("update minion %s: %s", name, exc)
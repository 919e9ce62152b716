"""Reconnection timing and classification of connection failures."""

from __future__ import annotations

import asyncio
import concurrent.futures

from maco.errors import GrpcCode, StatusError

_FIRST_RETRY = 0.1
_MAX_RETRY = 60.0
_STEP = 10.0
_MAX_STEPPED_ATTEMPTS = 5


def retry_interval(attempts: int) -> float:
    """Return the delay in seconds before the given reconnection attempt."""
    if attempts <= 0:
        return _FIRST_RETRY
    if attempts > _MAX_STEPPED_ATTEMPTS:
        return _MAX_RETRY
    return attempts * _STEP


def is_unavailable(err: BaseException | None) -> bool:
    """Tell whether an error means the peer went away rather than failed."""
    if isinstance(err, (EOFError, asyncio.CancelledError, concurrent.futures.CancelledError)):
        return True
    return isinstance(err, StatusError) and err.code == GrpcCode.UNAVAILABLE
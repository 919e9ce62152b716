"""Rendering of minion key listings and key actions for the key management tool."""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Iterable, Mapping
from typing import Any

import yaml

from maco.types import MinionKey, MinionState

_RESET = "\x1b[0m"
_GREEN = "\x1b[32m"
_RED = "\x1b[31m"
_YELLOW = "\x1b[33m"
_MAGENTA = "\x1b[35m"

_OUTPUT_MODE = 0o755

# Field name in serialised output, and the states whose minions it holds.
_SECTIONS: tuple[tuple[str, MinionState], ...] = (
    ("accepted", MinionState.ACCEPTED),
    ("auto_signed", MinionState.AUTO_SIGN),
    ("denied", MinionState.DENIED),
    ("unaccepted", MinionState.UNACCEPTED),
    ("rejected", MinionState.REJECTED),
)

# Text headings: title, colour, and the output fields listed under it.
_HEADINGS: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    ("Accepted Keys:", _GREEN, ("accepted", "auto_signed")),
    ("Denied Keys:", _MAGENTA, ("denied",)),
    ("Unaccepted Keys:", _YELLOW, ("unaccepted",)),
    ("Rejected Keys:", _RED, ("rejected",)),
)

# Action name: (output field, heading, colour).
_ACTIONS: dict[str, tuple[str, str, str]] = {
    "accept": ("accepted", "Accepted Keys:", _GREEN),
    "reject": ("rejected", "Rejected Keys:", _RED),
    "delete": ("deleted", "Deleted Keys:", _RED),
}


def _paint(text: str, colour: str, enabled: bool) -> str:
    return f"{colour}{text}{_RESET}" if enabled else text


def _to_json(data: Any) -> str:
    """Indent with three spaces and prefix every line after the first with one space."""
    body = json.dumps(data, indent="   ", ensure_ascii=False)
    return body.replace("\n", "\n ") + "\n"


def _to_yaml(data: Any) -> str:
    return yaml.safe_dump(data, sort_keys=True, allow_unicode=True, default_flow_style=False)


def split_minions(arg: str | None) -> list[str]:
    """Split a comma separated list of minion names; no argument gives an empty list."""
    if arg is None:
        return []
    return arg.split(",")


def group_keys_by_state(keys: Iterable[MinionKey]) -> dict[str, list[MinionKey]]:
    """Sort key entries into lists by their state; unknown states are dropped."""
    by_state = {state: field for field, state in _SECTIONS}
    grouped: dict[str, list[MinionKey]] = {field: [] for field, _ in _SECTIONS}
    for key in keys:
        try:
            field = by_state[MinionState(key.state)]
        except ValueError:
            continue
        grouped[field].append(key)
    return grouped


def render_key_list(mapping: Mapping[MinionState | str, list[str] | None], fmt: str, color: bool) -> str:
    """Render minion names grouped by state as json, yaml or text."""
    data: dict[str, list[str] | None] = {}
    for field, state in _SECTIONS:
        names = mapping.get(state)
        if names is None:
            names = mapping.get(str(state))
        data[field] = list(names) if names is not None else None

    if fmt == "json":
        return _to_json(data)
    if fmt == "yaml":
        return _to_yaml(data)

    parts: list[str] = []
    for title, colour, fields in _HEADINGS:
        parts.append(_paint(f"{title}\n", colour, color))
        for field in fields:
            for name in data[field] or []:
                parts.append(_paint(f"{name}\n", colour, color))
    return "".join(parts)


def render_key_details(keys: Iterable[MinionKey], fmt: str, color: bool) -> str:
    """Render key entries with their public keys, grouped by state, as json, yaml or text."""
    grouped = group_keys_by_state(keys)

    if fmt in ("json", "yaml"):
        data = {field: [key.to_dict() for key in entries] for field, entries in grouped.items()}
        return _to_json(data) if fmt == "json" else _to_yaml(data)

    parts: list[str] = []
    for title, colour, fields in _HEADINGS:
        parts.append(_paint(f"{title}\n", colour, color))
        for field in fields:
            for key in grouped[field]:
                name = key.minion.name if key.minion is not None else ""
                pub_key = key.pub_key.decode("utf-8", errors="replace")
                parts.append(_paint(f"  {name}: {pub_key}", colour, color))
    return "".join(parts)


def render_action(action: str, minions: Iterable[str], fmt: str, color: bool) -> str:
    """Render the minions handled by an accept, reject or delete action."""
    try:
        field, title, colour = _ACTIONS[action]
    except KeyError:
        raise ValueError(f"unknown key action: {action}") from None
    names = list(minions)
    data = {field: names}

    if fmt == "json":
        return _to_json(data)
    if fmt == "yaml":
        return _to_yaml(data)

    parts = [_paint(f"{title}\n", colour, color)]
    parts.extend(_paint(f"{name}\n", colour, color) for name in names)
    return "".join(parts)


def write_output(text: str, path: str | os.PathLike[str] | None, append: bool) -> None:
    """Write text to the given file, or to standard output when no file is given."""
    if not path:
        sys.stdout.write(text)
        return
    flags = os.O_WRONLY | os.O_CREAT | (os.O_APPEND if append else os.O_TRUNC)
    try:
        fd = os.open(path, flags, _OUTPUT_MODE)
    except OSError as exc:
        raise OSError(f"open output file: {exc}") from exc
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(text)
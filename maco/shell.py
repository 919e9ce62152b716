"""Helpers for command-line tools."""

from __future__ import annotations

import os

_COLOR_SHELLS = frozenset({"bash", "zsh"})


def allow_color() -> bool:
    """Tell whether the user's login shell is one known to show colours."""
    value = os.environ.get("SHELL")
    if value is None:
        return False
    shell = value.split("/")[-1].lower()
    return shell in _COLOR_SHELLS
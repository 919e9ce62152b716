"""Building call requests from command-line arguments and printing call reports."""

from __future__ import annotations

from collections.abc import Sequence

from maco.types import CallRequest, Report, Selector

USAGE = "usage: maco '<target>' <function> [arguments]"


def parse_targets(arg: str) -> list[str]:
    """Split a comma separated target list, dropping surrounding quotes."""
    return arg.strip("'").strip('"').split(",")


def build_call_request(args: Sequence[str]) -> CallRequest:
    """Turn '<target>' <function> [arguments] into a call request."""
    if len(args) <= 1:
        raise ValueError(USAGE)
    return CallRequest(
        selector=Selector(minions=parse_targets(args[0])),
        function=args[1],
        args=list(args[2:]),
    )


def format_report(report: Report) -> str:
    """Render each minion's result or error as indented text."""
    lines: list[str] = []
    for item in report.items:
        lines.append(f"{item.minion}:\n")
        if item.result:
            lines.append(f"    {item.data.decode('utf-8', errors='replace')}\n")
        else:
            lines.append(f"    Error: {item.error}\n")
    return "".join(lines)
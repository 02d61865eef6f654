"""Shared notification formatting helpers.

Keeping formatting here prevents drift between adapters and keeps alerts
consistent regardless of delivery channel.
"""

from __future__ import annotations

import html
from typing import Optional

from core.models import AlertDetails

DIVIDER = "──────────────"


def _breakdown_lines(details: AlertDetails) -> list[tuple[str, int]]:
    """Return (label, count) pairs for every detail that is set and non-zero."""

    lines: list[tuple[str, int]] = []
    for label, value in (
        ("Channels", details.channels),
        ("Direct messages", details.im),
        ("Private groups", details.groups),
    ):
        if value:
            lines.append((label, value))
    lines.extend((f"Chat {chat}", count) for chat, count in details.per_chat if count > 0)
    return lines


def _format_markdown(title: str, unread_count: int, details: Optional[AlertDetails]) -> str:
    """Create the Markdown body used by the Telethon adapter."""

    def escape_md(value: str) -> str:
        for ch in r"*[`_":
            value = value.replace(ch, f"\\{ch}")
        return value

    lines = [
        f"**{escape_md(title)} notifications**",
        "",
        f"**Unread:** {unread_count}",
    ]
    if details is not None:
        breakdown = _breakdown_lines(details)
        if breakdown:
            lines.append(DIVIDER)
            lines.extend(f"{escape_md(label)}: {count}" for label, count in breakdown)
        if details.mentions:
            lines.extend(["", f"**Mentions:** {details.mentions}"])
    return "\n".join(lines)


def _format_html(title: str, unread_count: int, details: Optional[AlertDetails]) -> str:
    """Create the HTML body used by the Bot API adapter."""

    parts = [
        f"<b>{html.escape(title)} notifications</b>",
        "",
        f"<b>Unread:</b> {unread_count}",
    ]
    if details is not None:
        breakdown = _breakdown_lines(details)
        if breakdown:
            parts.append(DIVIDER)
            parts.extend(f"{html.escape(label)}: {count}" for label, count in breakdown)
        if details.mentions:
            parts.extend(["", f"<b>Mentions:</b> {details.mentions}"])
    return "\n".join(parts)


def format_unread_alert(
    title: str,
    unread_count: int,
    details: Optional[AlertDetails],
    mode: str,
) -> str:
    """Return the unread alert formatted for the requested mode."""

    if mode == "markdown":
        return _format_markdown(title, unread_count, details)
    if mode == "html":
        return _format_html(title, unread_count, details)
    raise ValueError(f"Unsupported notification format: {mode}")

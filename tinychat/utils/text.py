"""Helpers for turning message data into plain text."""

import re
from datetime import datetime

from tinychat.models.message import DataPart, TextPart, ThoughtPart

_SCRUB_RULES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"::>::\s?(.*)"), r"\1"),  # quote markers
    (re.compile(r"!\[.*?]\(.*?\)"), ""),  # images
    (re.compile(r"\[([^\]]+)]\((.*?)\)"), r"\1"),  # links, keep text
    (re.compile(r"(`{1,3})(.*?)\1"), r"\2"),  # inline code
    (re.compile(r"(\*\*|__)(.*?)\1"), r"\2"),  # bold
    (re.compile(r"([*_])(.*?)\1"), r"\2"),  # italics
    (re.compile(r"~~(.*?)~~"), r"\1"),  # strikethrough
    (re.compile(r"#+\s?(.*)"), r"\1"),  # headings
    (re.compile(r">\s?(.*)"), r"\1"),  # blockquotes
    (re.compile(r"-\s?(.*)"), r"\1"),  # unordered list markers
    (re.compile(r"\d+\.\s?(.*)"), r"\1"),  # ordered list markers
]


def extract_text(data: list[DataPart], include_hidden: bool = False) -> str:
    """Join the text parts of a message, one per line."""
    return "\n".join(
        part.value
        for part in data
        if isinstance(part, TextPart) and (include_hidden or not part.hidden)
    )


def extract_thoughts(data: list[DataPart]) -> str:
    """Join the thought parts of a message."""
    return "\n".join(part.value for part in data if isinstance(part, ThoughtPart))


def scrub_text(text: str, max_length: int = -1) -> str:
    """
    Strip markdown decoration so text can be embedded or used as a title.

    Args:
        text: Markdown-ish text
        max_length: Truncate (with an ellipsis) past this many characters; -1 disables

    Returns:
        Single-line plain text
    """
    for pattern, replacement in _SCRUB_RULES:
        text = pattern.sub(replacement, text)
    text = text.replace("\n", " ").strip()

    if max_length > 0 and len(text) > max_length:
        return text[:max_length] + "..."
    return text


def describe_delay(earlier: datetime, later: datetime) -> str:
    """
    Describe the time between two messages the way a person would.

    Returns "just now" for gaps under 10 seconds, otherwise e.g. "5 minutes"
    or "1 day".
    """
    seconds = int((later - earlier).total_seconds())
    if seconds < 10:
        return "just now"

    for unit, size in (
        ("year", 365 * 24 * 3600),
        ("month", 30 * 24 * 3600),
        ("week", 7 * 24 * 3600),
        ("day", 24 * 3600),
        ("hour", 3600),
        ("minute", 60),
        ("second", 1),
    ):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'' if count == 1 else 's'}"

    return "just now"

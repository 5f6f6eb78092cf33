"""
Tests for text helpers.
"""

from datetime import datetime, timedelta

import pytest

from tinychat.models.message import FilePart, TextPart, ThoughtPart
from tinychat.utils.text import describe_delay, extract_text, extract_thoughts, scrub_text


@pytest.mark.unit
class TestExtractText:
    """Test joining message parts."""

    def test_text_parts_only(self):
        data = [
            TextPart(value="one"),
            ThoughtPart(value="hmm"),
            FilePart(name="a.png", mime="image/png", url="https://x"),
            TextPart(value="two"),
        ]

        assert extract_text(data) == "one\ntwo"
        assert extract_thoughts(data) == "hmm"

    def test_hidden_parts(self):
        data = [TextPart(value="shown"), TextPart(value="secret", hidden=True)]

        assert extract_text(data) == "shown"
        assert extract_text(data, include_hidden=True) == "shown\nsecret"


@pytest.mark.unit
class TestScrubText:
    """Test markdown scrubbing."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("# Title", "Title"),
            ("**bold** and _italic_", "bold and italic"),
            ("see [the docs](https://x.dev)", "see the docs"),
            ("![chart](https://x/c.png) done", "done"),
            ("run `pip install`", "run pip install"),
            ("~~old~~ new", "old new"),
            ("::>:: quoted line", "quoted line"),
            ("- first\n- second", "first second"),
            ("1. first\n2. second", "first second"),
        ],
    )
    def test_markdown(self, text, expected):
        assert scrub_text(text) == expected

    def test_truncation(self):
        assert scrub_text("abcdef", 3) == "abc..."
        assert scrub_text("abc", 3) == "abc"


@pytest.mark.unit
class TestDescribeDelay:
    """Test human-readable delays."""

    @pytest.mark.parametrize(
        "delta,expected",
        [
            (timedelta(seconds=3), "just now"),
            (timedelta(seconds=45), "45 seconds"),
            (timedelta(minutes=1), "1 minute"),
            (timedelta(hours=5, minutes=59), "5 hours"),
            (timedelta(days=1), "1 day"),
            (timedelta(days=15), "2 weeks"),
            (timedelta(days=400), "1 year"),
        ],
    )
    def test_delay(self, delta, expected):
        start = datetime(2024, 1, 1)

        assert describe_delay(start, start + delta) == expected

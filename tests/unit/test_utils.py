"""Unit tests for utility functions."""

import time
from datetime import datetime, timedelta, timezone

import pytest

from outlook_email.exceptions import ValidationError
from outlook_email.graph.parsing import hash_remote_id, message_to_record
from outlook_email.utils import format_relative_date, parse_date, parse_since, strip_html, truncate

NOW = datetime(2024, 3, 15, 14, 30, tzinfo=timezone.utc)


class TestParseSince:
    """Test suite for parse_since."""

    def test_iso_date(self) -> None:
        """Test that YYYY-MM-DD is midnight UTC."""
        assert parse_since("2024-01-05", now=NOW) == datetime(2024, 1, 5, tzinfo=timezone.utc)

    def test_yesterday(self) -> None:
        """Test that yesterday is the start of the previous day."""
        assert parse_since("Yesterday", now=NOW) == datetime(2024, 3, 14, tzinfo=timezone.utc)

    @pytest.mark.parametrize(("text", "day"), [("1 day ago", 14), ("7 days ago", 8), ("0 days ago", 15)])
    def test_days_ago(self, text: str, day: int) -> None:
        """Test that N days ago counts back from today."""
        assert parse_since(text, now=NOW) == datetime(2024, 3, day, tzinfo=timezone.utc)

    @pytest.mark.parametrize("text", ["last week", "a few days ago", "2024/01/05", "2024-13-40"])
    def test_invalid(self, text: str) -> None:
        """Test that unrecognized expressions raise ValidationError."""
        with pytest.raises(ValidationError):
            parse_since(text, now=NOW)


def test_parse_date_rejects_relative_expressions() -> None:
    """Test that parse_date accepts only YYYY-MM-DD."""
    assert parse_date("2024-02-29") == datetime(2024, 2, 29, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        parse_date("yesterday")


def test_format_relative_date() -> None:
    """Test the short date labels used in listings."""
    assert format_relative_date(datetime(2024, 3, 15, 9, 5, tzinfo=timezone.utc), now=NOW) == "Today 9:05"
    assert format_relative_date(datetime(2024, 3, 14, 9, 0, tzinfo=timezone.utc), now=NOW) == "Yesterday"
    assert format_relative_date(datetime(2024, 3, 12, 9, 0, tzinfo=timezone.utc), now=NOW) == "Tue"
    assert format_relative_date(datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc), now=NOW) == "01/02"
    assert format_relative_date(None, now=NOW) == ""


def test_format_relative_date_uses_viewer_timezone() -> None:
    """Test that labels follow the timezone of the reference time, not UTC."""
    tokyo = timezone(timedelta(hours=9))
    now = datetime(2024, 3, 15, 8, 0, tzinfo=tokyo)

    # 23:30 UTC on the 14th is 8:30 on the 15th in Tokyo.
    received = datetime(2024, 3, 14, 23, 30, tzinfo=timezone.utc)

    assert format_relative_date(received, now=now) == "Today 8:30"
    assert format_relative_date(datetime(2024, 3, 14, 14, 0, tzinfo=timezone.utc), now=now) == "Yesterday"


@pytest.fixture
def tokyo_local_time(monkeypatch: pytest.MonkeyPatch):
    """Run with the process local timezone set to Asia/Tokyo."""
    monkeypatch.setenv("TZ", "Asia/Tokyo")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


@pytest.mark.skipif(not hasattr(time, "tzset"), reason="time.tzset is not available on this platform")
def test_format_relative_date_defaults_to_local_time(tokyo_local_time) -> None:
    """Test that without a reference time the label uses the local clock."""
    received = datetime.now(timezone.utc) - timedelta(minutes=1)
    local = received.astimezone(timezone(timedelta(hours=9)))

    label = format_relative_date(received)

    assert label in (f"Today {local.hour}:{local.minute:02d}", "Yesterday")


def test_truncate() -> None:
    """Test that long text is shortened with an ellipsis."""
    assert truncate("short", 10) == "short"
    assert truncate("a long sender name", 6) == "a lon…"
    assert truncate("abc", 0) == ""


def test_strip_html() -> None:
    """Test that HTML bodies become readable text."""
    html = "<div><p>Hello <b>Bob</b>!</p><p>See&amp;you</p><br/>Bye</div>"

    text = strip_html(html)

    assert "Hello Bob" in text
    assert "See&you" in text.splitlines()
    assert "<" not in text
    assert text.endswith("Bye")


def test_strip_html_drops_style_and_script() -> None:
    """Test that stylesheet and script text never reaches the plain-text body."""
    html = (
        "<html><head><style>p { color: red; }</style><title>Mail</title></head>"
        "<body><script>track();</script><p>Hello</p><table><tr><td>Total</td><td>42</td></tr></table></body></html>"
    )

    text = strip_html(html)

    assert "color" not in text
    assert "track" not in text
    assert text.splitlines()[0] == "Hello"
    assert "Total" in text and "42" in text


def test_strip_html_empty() -> None:
    """Test that an empty body stays empty."""
    assert strip_html("") == ""


class TestMessageToRecord:
    """Test suite for message_to_record."""

    def test_id_is_hash_of_remote_id(self) -> None:
        """Test that the stored id is the SHA-1 of the remote id."""
        record = message_to_record({"id": "AAMk-1", "subject": "Hi"}, source_folder="Inbox", stored_at=NOW)

        assert record.stored_id == hash_remote_id("AAMk-1")
        assert len(record.stored_id) == 40
        assert record.source_folder == "Inbox"
        assert record.stored_at == NOW

    def test_remote_offline_state_is_ignored(self) -> None:
        """Test that an offline key in API data never reaches the record."""
        record = message_to_record({"id": "x", "offline": {"pending": {"delete": True}}})

        assert record.offline is None

    def test_malformed_message_raises_validation_error(self) -> None:
        """Test that a message that does not fit the model raises the package ValidationError."""
        with pytest.raises(ValidationError):
            message_to_record({"id": "x", "isRead": "maybe"})

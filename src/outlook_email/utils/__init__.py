"""Utility functions for outlook-email."""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

from bs4 import BeautifulSoup

from outlook_email.exceptions import ValidationError

_DAYS_AGO_RE = re.compile(r"^(\d+)\s+days?\s+ago$", re.IGNORECASE)
_YMD_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_BLOCK_TAGS = (
    "p", "div", "li", "ul", "ol", "tr", "td", "th", "h1", "h2", "h3", "h4", "h5", "h6",
    "blockquote", "pre", "section", "article", "header", "footer", "nav", "main",
    "figure", "figcaption", "table", "thead", "tbody", "tfoot",
)
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def parse_date(value: str) -> datetime:
    """Parse a ``YYYY-MM-DD`` date as midnight UTC.

    Raises:
        ValidationError: If the value is not in that format.
    """

    value = value.strip()
    if not _YMD_RE.match(value):
        raise ValidationError(f'Invalid date format: "{value}". Use YYYY-MM-DD.')
    try:
        return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError as exc:
        raise ValidationError(f'Invalid date: "{value}"') from exc


def parse_since(value: str, now: datetime | None = None) -> datetime:
    """Parse ``YYYY-MM-DD``, ``yesterday`` or ``N days ago`` into midnight UTC.

    Args:
        value: User supplied date expression.
        now: Reference time. Defaults to the current UTC time.

    Raises:
        ValidationError: If the expression is not recognized.
    """

    now = now or datetime.now(timezone.utc)
    text = value.strip()

    if text.lower() == "yesterday":
        date = now - timedelta(days=1)
    elif text.lower().endswith("ago"):
        match = _DAYS_AGO_RE.match(text)
        if match is None:
            raise ValidationError(
                f'Invalid date format: "{value}". Use "N days ago" format (e.g., "7 days ago").'
            )
        date = now - timedelta(days=int(match.group(1)))
    elif _YMD_RE.match(text):
        return parse_date(text)
    else:
        raise ValidationError(
            f'Invalid date format: "{value}". Accepted formats: YYYY-MM-DD, yesterday, or "N days ago".'
        )

    return date.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


def format_relative_date(value: datetime | None, now: datetime | None = None) -> str:
    """Short human date: time for today, weekday within a week, else MM/DD.

    Dates are shown in the timezone of `now`, which defaults to the local time.
    """

    if value is None:
        return ""
    now = now or datetime.now().astimezone()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    local = value.astimezone(now.tzinfo)

    diff_days = (now.date() - local.date()).days
    if diff_days <= 0:
        return f"Today {local.hour}:{local.minute:02d}"
    if diff_days == 1:
        return "Yesterday"
    if diff_days < 7:
        return local.strftime("%a")
    return local.strftime("%m/%d")


def truncate(text: str, width: int) -> str:
    if width <= 0:
        return ""
    if len(text) <= width:
        return text
    if width == 1:
        return text[:1]
    return text[: width - 1] + "…"


def strip_html(content: str) -> str:
    """Turn an HTML body into readable plain text.

    Script and style elements are dropped; block elements and line breaks
    become line breaks, inline markup is flattened into the surrounding text.
    """

    if not content:
        return ""

    soup = BeautifulSoup(content, "html.parser")
    for element in soup(["script", "style", "head", "title"]):
        element.decompose()
    for br in soup.find_all(["br", "hr"]):
        br.replace_with("\n")
    for block in soup.find_all(list(_BLOCK_TAGS)):
        block.insert_before("\n")
        block.insert_after("\n")

    text = soup.get_text().replace("\xa0", " ")
    lines = [line.strip() for line in text.splitlines()]
    return _BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()

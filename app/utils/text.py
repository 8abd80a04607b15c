"""
Text helpers shared by the public read API and the insights loader
"""

import re
from datetime import date, datetime
from typing import Optional, Union

from bs4 import BeautifulSoup


def truncate_text(text: Optional[str], limit: int, suffix: str = "...") -> str:
    """Cut ``text`` to ``limit`` characters and append ``suffix`` when cut"""
    text = text or ""
    if len(text) > limit:
        return text[:limit] + suffix
    return text


def html_to_text(raw_html: Optional[str]) -> str:
    """Strip markup from rich-text bodies, collapsing whitespace"""
    if not raw_html:
        return ""
    soup = BeautifulSoup(raw_html, "html.parser")
    text = soup.get_text(separator=" ", strip=True)
    return re.sub(r"\s+", " ", text).strip()


def parse_date(value: Union[str, date, None]) -> Optional[datetime]:
    """Parse an ISO date or timestamp, returning None when unusable"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def format_display_date(value: Union[str, date, None]) -> str:
    """Format as ``January 5, 2024``; unparseable input is returned as-is"""
    parsed = parse_date(value)
    if parsed is None:
        return "" if value is None else str(value)
    return f"{parsed:%B} {parsed.day}, {parsed.year}"

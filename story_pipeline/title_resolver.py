import re
from datetime import datetime
from typing import Optional

MAX_TITLE_CHARS = 48
MAX_TITLE_WORDS = 8

_QUOTES = "\"'“”"
_TRAILING_PUNCTUATION = ".!?:;,"


def format_timestamp(timestamp: int) -> str:
    """Epoch milliseconds as a short local date/time label."""
    return datetime.fromtimestamp(timestamp / 1000).strftime("%Y-%m-%d %H:%M")


def sanitize_title(raw: Optional[str]) -> Optional[str]:
    """Clean up a model-suggested title, or None if it is unusable.

    Newlines and runs of whitespace collapse to single spaces, surrounding quotes and
    trailing punctuation are stripped. Titles over 48 characters or 8 words are rejected.
    """
    if not raw:
        return None
    title = re.sub(r"\s+", " ", raw.replace("\n", " ")).strip()
    title = title.strip(_QUOTES).strip()
    title = title.rstrip(_TRAILING_PUNCTUATION).strip()
    title = title.strip(_QUOTES).strip()
    if not title:
        return None
    if len(title) > MAX_TITLE_CHARS or len(title.split(" ")) > MAX_TITLE_WORDS:
        return None
    return title


def resolve_title(
    user_title: Optional[str],
    extracted_title_english: Optional[str],
    extracted_title_localized: Optional[str],
    timestamp: int,
) -> str:
    """Pick the story title.

    1. A valid extracted title, shown in its localized form when one was given,
       with the run's date appended.
    2. The localized title alone.
    3. The title the user typed.
    4. "Story — <date>".

    Only the English title is sanitized; the localized title is used as returned,
    trimmed, whatever its length or punctuation.
    """
    date_label = format_timestamp(timestamp)
    english = sanitize_title(extracted_title_english)
    localized = extracted_title_localized.strip() if extracted_title_localized else ""

    if english:
        return f"{localized or english} — {date_label}"
    if localized:
        return localized
    if user_title and user_title.strip():
        return user_title.strip()
    return f"Story — {date_label}"

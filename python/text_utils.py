"""
Shared text utilities for the Training Tracker

Normalization helpers for the values used as natural keys (emails,
course and category names) and sanitization for anything that ends
up in a log line or a stored file name.
"""

import re
from pathlib import Path
from typing import Optional

_CONTROL_CHARS = re.compile(r'[\r\n\x00-\x1f\x7f-\x9f]')
_UNSAFE_FILENAME_CHARS = re.compile(r'[^A-Za-z0-9._-]')


def sanitize_for_logging(text: str) -> str:
    """Sanitize user input for safe logging, preventing log injection

    Removes newlines, carriage returns, and other control characters
    that could be used to inject fake log entries.

    Args:
        text: User input text

    Returns:
        Sanitized text safe for logging
    """
    if not text:
        return ''
    sanitized = _CONTROL_CHARS.sub(' ', str(text))
    sanitized = re.sub(r'\s+', ' ', sanitized).strip()
    return sanitized[:500] if len(sanitized) > 500 else sanitized


def normalize_email(email: Optional[str]) -> str:
    """Normalize an email address for storage and comparison

    Emails are the natural key joining accounts, people and record
    ownership, so every lookup goes through this function.

    Args:
        email: Raw email address

    Returns:
        Trimmed, case-folded email, or '' for empty input
    """
    if not email:
        return ''
    return str(email).strip().casefold()


def clean_text(value: Optional[str]) -> Optional[str]:
    """Trim a free-text form value, mapping blank input to None"""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def safe_filename(filename: Optional[str], default: str = "upload") -> str:
    """Reduce an uploaded file name to a safe basename

    Directory components are discarded and anything outside
    [A-Za-z0-9._-] becomes an underscore.
    """
    if not filename:
        return default
    base = Path(str(filename).replace('\\', '/')).name
    base = _UNSAFE_FILENAME_CHARS.sub('_', base).lstrip('.')
    return base[:150] or default

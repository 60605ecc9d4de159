"""
Input sanitization utilities for user-provided data and model prompts.
"""
import json
import re
from typing import Any

PROMPT_INJECTION_PATTERNS = ['SYSTEM:', 'USER:', 'ASSISTANT:', 'IGNORE', 'FORGET', 'NEW INSTRUCTION']


def sanitize_filename(filename: str, max_length: int = 255) -> str:
    """
    Sanitize filename to prevent path traversal and log injection.

    Args:
        filename: Original filename
        max_length: Maximum length of sanitized filename

    Returns:
        Sanitized filename safe for logging and storage
    """
    if not filename:
        return "unknown"

    filename = filename.split('/')[-1].split('\\')[-1]
    filename = re.sub(r'[\x00-\x1f\x7f-\x9f]', '', filename)
    filename = filename.strip('. ')

    if len(filename) > max_length:
        filename = filename[:max_length]

    return filename or "unknown"


def sanitize_for_logging(value: Any, max_length: int = 500) -> str:
    """
    Sanitize a value for safe logging (prevents log injection).

    Model output is logged through here so that multi-kilobyte responses
    collapse into a single truncated line.
    """
    if value is None:
        return ""
    value = str(value)

    value = re.sub(r'[\r\n]', ' ', value)
    value = re.sub(r'[\x00-\x1f\x7f-\x9f]', '', value)

    if len(value) > max_length:
        value = value[:max_length] + "..."

    return value


def sanitize_for_prompt(text: Any, max_length: int = 100) -> str:
    """
    Sanitize user-provided text (column names, cell values, chat messages)
    before including it in an AI prompt.

    Removes control characters and newlines, limits length and brackets
    patterns that look like role or instruction markers.
    """
    if text is None:
        return ""
    text = str(text)

    sanitized = ''.join(char for char in text if char.isprintable() and char not in '\n\r\t')

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + "..."

    for pattern in PROMPT_INJECTION_PATTERNS:
        sanitized = sanitized.replace(pattern, f'[{pattern}]')

    return sanitized


def quote_column_name(name: Any) -> str:
    """
    Render a column name for a prompt as a JSON string literal.

    Names are quoted rather than sanitized: the model has to echo them back
    verbatim for plans to resolve. Control characters come out escaped.
    """
    return json.dumps(str(name), ensure_ascii=False)


def sanitize_cell_value(value: Any) -> Any:
    """Neutralise spreadsheet formulas so exported cells are never evaluated."""
    if isinstance(value, str) and value.startswith('='):
        return f"'{value}"
    return value


def validate_column_name(name: str) -> bool:
    """
    Validate that a column name is safe.

    Args:
        name: Column name to validate

    Returns:
        True if safe, False otherwise
    """
    if not name or len(name) > 1000:
        return False

    dangerous_patterns = [
        r'\.\.',
        # newlines and tabs are common in exported headers and stay allowed
        r'[\x00-\x08\x0b\x0c\x0e-\x1f]',
        r'^(CON|PRN|AUX|NUL|COM[1-9]|LPT[1-9])$',
    ]

    for pattern in dangerous_patterns:
        if re.search(pattern, name, re.IGNORECASE):
            return False

    return True

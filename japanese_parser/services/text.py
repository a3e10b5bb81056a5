"""Sanitization and validation of Japanese input text."""

import re

from japanese_parser.errors import InvalidInputError


# Control characters except tab, newline and carriage return
_CONTROL_CHARS = re.compile(r"[\u0000-\u0008\u000B\u000C\u000E-\u001F\u007F]")
_JAPANESE_CHARS = re.compile(r"[\u3040-\u309F\u30A0-\u30FF\u4E00-\u9FAF]")
_KANJI_CHARS = re.compile(r"[\u4E00-\u9FAF]")


def sanitize_japanese_text(text: str, max_length: int = 10_000) -> str:
    """
    Strip control characters and byte order marks, then trim.

    Raises:
        InvalidInputError: If the text is not a string, ends up empty, or is
            longer than ``max_length``
    """
    if not isinstance(text, str):
        raise InvalidInputError("Text must be a string")

    sanitized = _CONTROL_CHARS.sub("", text).replace("\ufeff", "").strip()

    if not sanitized:
        raise InvalidInputError("Text cannot be empty after sanitization")

    if len(sanitized) > max_length:
        raise InvalidInputError(f"Text too long. Maximum length: {max_length} characters")

    return sanitized


def validate_japanese_text(text: str, max_length: int = 10_000) -> bool:
    """Require non-empty text that contains hiragana, katakana or kanji."""
    if not text or not isinstance(text, str):
        raise InvalidInputError("Text must be a non-empty string")

    if len(text) > max_length:
        raise InvalidInputError(f"Text too long. Maximum length: {max_length}")

    if not _JAPANESE_CHARS.search(text):
        raise InvalidInputError("Text must contain Japanese characters")

    return True


def contains_kanji(text: str) -> bool:
    return bool(_KANJI_CHARS.search(text))

"""Text sanitization utilities for the matching core."""

import html
import re

LINE_BREAK = "<br>"

_BR_TAG = re.compile(r"<br\s*/?>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")


def escape_html(text: str | None) -> str:
    """
    Escape markup characters in user supplied text.

    Escapes ``& < > " '`` (via :func:`html.escape`) and ``/``.

    Args:
        text (str | None): The input string to escape. If None, returns an empty string.

    Returns:
        str: The escaped string, safe to render as HTML.
    """
    if text is None:
        return ""
    return html.escape(str(text), quote=True).replace("/", "&#x2F;")


def sanitize_message_text(text: str | None) -> str:
    """
    Prepare a plain text message for storage.

    Escapes markup, normalizes ``\\r\\n``, trims surrounding whitespace and
    turns every remaining newline into an explicit ``<br>`` marker. Text
    made only of whitespace comes back empty.
    """
    escaped = escape_html(text).replace("\r\n", "\n").replace("\r", "\n").strip()
    return escaped.replace("\n", LINE_BREAK)


def simple_markdown_to_html(text: str) -> str:
    """Render system-authored text: escape markup, blank-line every newline."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;").replace("\n", LINE_BREAK * 2)


def clean_message_for_notification(content: str, max_length: int = 100) -> str:
    """
    Turn stored message HTML into a short plain text preview.

    Line breaks become spaces, tags are stripped, entities unescaped and
    whitespace collapsed. Text longer than ``max_length`` is cut, at a word
    boundary when one lies in the last fifth, and suffixed with ``...``.
    """
    cleaned = _BR_TAG.sub(" ", content)
    cleaned = _ANY_TAG.sub("", cleaned)
    cleaned = html.unescape(cleaned)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()

    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length]
        last_space = cleaned.rfind(" ")
        if last_space > max_length * 0.8:
            cleaned = cleaned[:last_space]
        cleaned += "..."

    return cleaned

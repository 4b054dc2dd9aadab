"""Tests for text sanitization."""

from src.utils.security import (
    clean_message_for_notification,
    escape_html,
    sanitize_message_text,
    simple_markdown_to_html,
)


def test_escape_html_basic():
    """Markup characters and slashes are escaped."""
    assert escape_html("<b>Bold</b>") == "&lt;b&gt;Bold&lt;&#x2F;b&gt;"
    assert escape_html("Me & You") == "Me &amp; You"
    assert escape_html('"Quotes"') == "&quot;Quotes&quot;"
    assert escape_html("'Single'") == "&#x27;Single&#x27;"


def test_escape_html_none():
    assert escape_html(None) == ""


def test_sanitize_turns_newlines_into_markers():
    assert sanitize_message_text("line one\nline two\r\nline three") == "line one<br>line two<br>line three"


def test_sanitize_trims_before_marking_newlines():
    assert sanitize_message_text("\n  hello  \n") == "hello"
    assert sanitize_message_text(" \n\t ") == ""
    assert sanitize_message_text(None) == ""


def test_simple_markdown_to_html():
    assert simple_markdown_to_html("Hi <you>\nWelcome") == "Hi &lt;you&gt;<br><br>Welcome"


def test_clean_message_for_notification():
    """Stored message HTML becomes a plain one-line preview."""
    assert clean_message_for_notification("Hey&amp;hi<br>there <b>you</b>") == "Hey&hi there you"


def test_clean_message_truncates_at_word_boundary():
    preview = clean_message_for_notification("word " * 30, max_length=50)

    assert preview.endswith("...")
    assert len(preview) <= 53
    assert not preview[:-3].endswith(" ")

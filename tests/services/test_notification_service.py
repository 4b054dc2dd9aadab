"""Tests for best-effort notification dispatch."""

from unittest.mock import MagicMock, patch

from src.services.notification_service import EVENT_NEW_MATCH, LoggingNotifier, dispatch_best_effort


def test_dispatch_forwards_event():
    notifier = MagicMock()

    assert dispatch_best_effort(notifier, "bob", EVENT_NEW_MATCH, {"profile_id": "alice"}) is True
    notifier.notify_profile.assert_called_once_with("bob", EVENT_NEW_MATCH, {"profile_id": "alice"})


@patch("src.services.notification_service.sentry_sdk.capture_exception")
def test_dispatch_swallows_notifier_failure(mock_capture):
    """A failing collaborator is reported, never raised."""
    notifier = MagicMock()
    error = ConnectionError("push gateway down")
    notifier.notify_profile.side_effect = error

    assert dispatch_best_effort(notifier, "bob", EVENT_NEW_MATCH, {}) is False
    mock_capture.assert_called_once_with(error)


def test_logging_notifier_accepts_events():
    assert dispatch_best_effort(LoggingNotifier(), "bob", EVENT_NEW_MATCH, {"a": 1}) is True

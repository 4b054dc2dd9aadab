"""Notification collaborator used after a transaction commits."""

from typing import Any, Dict, Protocol

import sentry_sdk

from src.utils.logging import get_logger, log_error

logger = get_logger(__name__)

# Event names pushed to recipients
EVENT_NEW_LIKE = "new_like"
EVENT_NEW_MATCH = "new_match"
EVENT_NEW_MESSAGE = "new_message"
EVENT_INCOMING_CALL = "incoming_call"
EVENT_CALL_ACCEPTED = "call_accepted"
EVENT_CALL_MISSED = "call_missed"
EVENT_CALL_ENDED = "call_ended"


class Notifier(Protocol):
    """Pushes a real-time event to a profile (websocket, web push, e-mail...)."""

    def notify_profile(self, profile_id: str, event: str, payload: Dict[str, Any]) -> None: ...


class LoggingNotifier:
    """Default notifier: records the event in the log and nothing else."""

    def notify_profile(self, profile_id: str, event: str, payload: Dict[str, Any]) -> None:
        logger.info("Notification dispatched", profile_id=profile_id, event_name=event, payload_keys=sorted(payload))


def dispatch_best_effort(notifier: Notifier, profile_id: str, event: str, payload: Dict[str, Any]) -> bool:
    """
    Send a notification without letting its failure escape.

    Called only after the state change is committed, so a failing
    collaborator never undoes a like, message or call transition.

    Returns:
        bool: True if the notifier accepted the event.
    """
    with sentry_sdk.start_span(op="notify.dispatch", name=event) as span:
        try:
            notifier.notify_profile(profile_id, event, payload)
        except Exception as e:
            span.set_status("internal_error")
            log_error(logger, e, "Notification dispatch failed", {"profile_id": profile_id, "event_name": event})
            sentry_sdk.capture_exception(e)
            return False
    return True

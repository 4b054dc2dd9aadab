"""Call signaling models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from src.models.conversation import Message


class CallState(str, Enum):
    """
    Call state of a conversation.

    Only IDLE, CALLING and ACTIVE are stored; RINGING is how the callee
    sees a CALLING conversation.
    """

    IDLE = "idle"
    CALLING = "calling"
    RINGING = "ringing"
    ACTIVE = "active"


class CallSession(BaseModel):
    """Call overlay of a conversation as seen by ``viewer_id``."""

    conversation_id: str
    viewer_id: str
    state: CallState
    room_name: Optional[str] = None
    caller_id: Optional[str] = None
    callee_id: Optional[str] = None
    started_at: Optional[datetime] = None


class CallTermination(BaseModel):
    """Result of a decline/cancel/timeout: the missed-call message inserted for it."""

    conversation_id: str
    reason: str
    missed_call: Message
    caller_id: str
    callee_id: str

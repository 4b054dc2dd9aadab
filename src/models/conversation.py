"""Conversation and Message models for the matching core."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

TEXT_PLAIN = "text/plain"
CALL_MISSED = "call/missed"
TEXT_HTML = "text/html"



class ConversationStatus(str, Enum):
    """
    Conversation status enumeration.

    INITIATED: first message sent, waiting for the other party's reply.
    ACCEPTED: both sides may write.
    BLOCKED: no one may write.
    """

    INITIATED = "INITIATED"
    ACCEPTED = "ACCEPTED"
    BLOCKED = "BLOCKED"


class Attachment(BaseModel):
    """File reference attached to a message."""

    file_path: str
    mime_type: str
    file_size: Optional[int] = None
    duration: Optional[float] = None

    model_config = ConfigDict(from_attributes=True)


class Message(BaseModel):
    """Message model. Immutable once stored."""

    id: str
    conversation_id: str
    sender_id: str
    content: str
    message_type: str = TEXT_PLAIN
    created_at: datetime
    attachment: Optional[Attachment] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)


class Participant(BaseModel):
    """Participant-local conversation state."""

    profile_id: str
    last_read_at: Optional[datetime] = None
    is_muted: bool = False
    is_archived: bool = False
    is_callable: bool = True

    model_config = ConfigDict(from_attributes=True)


class Conversation(BaseModel):
    """Conversation model, keyed by its canonical profile pair."""

    id: str
    profile_a_id: str
    profile_b_id: str
    status: ConversationStatus
    initiator_profile_id: str
    created_at: datetime
    updated_at: datetime
    participants: List[Participant] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    def other_profile_id(self, profile_id: str) -> str:
        """Return the counterpart of ``profile_id`` in this conversation."""
        return self.profile_b_id if profile_id == self.profile_a_id else self.profile_a_id

    def has_participant(self, profile_id: str) -> bool:
        return profile_id in (self.profile_a_id, self.profile_b_id)


class ConversationSummary(BaseModel):
    """
    Conversation as listed for one viewing participant.

    ``can_reply`` tells the client whether the viewer may send now.
    """

    conversation: Conversation
    participant: Participant
    partner_id: str
    last_message: Optional[Message] = None
    unread_count: int = 0
    can_reply: bool = True


class MessagePage(BaseModel):
    """Chronological slice of a conversation."""

    messages: List[Message] = Field(default_factory=list)
    has_more: bool = False


class SendResult(BaseModel):
    """Outcome of sending a message: the conversation after the send and the stored message."""

    conversation: Conversation
    message: Message
    recipient_id: str
    created_conversation: bool = False

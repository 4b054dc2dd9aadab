"""Request bodies accepted by the API."""

from typing import Literal, Optional

from pydantic import BaseModel, Field

from src.models.conversation import TEXT_PLAIN, Attachment


class SendMessageRequest(BaseModel):
    recipient_id: str
    content: str = Field(default="", max_length=5000)
    # text/html and call/missed are only ever written by the server
    message_type: Literal["text/plain", "audio/voice"] = TEXT_PLAIN
    attachment: Optional[Attachment] = None


class MuteRequest(BaseModel):
    muted: bool


class ArchiveRequest(BaseModel):
    archived: bool


class CallableRequest(BaseModel):
    is_callable: bool


class ActivityScopesRequest(BaseModel):
    """Either scope may be omitted to leave it unchanged."""

    is_social_active: Optional[bool] = None
    is_dating_active: Optional[bool] = None

"""Models package for the matching core."""

from src.models.call import CallSession, CallState, CallTermination
from src.models.conversation import (
    Attachment,
    Conversation,
    ConversationStatus,
    ConversationSummary,
    Message,
    MessagePage,
    Participant,
    SendResult,
)
from src.models.discovery import BoundingBox, NearbyProfile, Post
from src.models.interaction import InteractionEdge, InteractionEdgeView, InteractionKind, InteractionStats, LikeResult
from src.models.profile import DatingPreferences, Gender, HasKids, Profile, SocialMatchFilter

__all__ = [
    "Attachment",
    "BoundingBox",
    "CallSession",
    "CallState",
    "CallTermination",
    "Conversation",
    "ConversationStatus",
    "ConversationSummary",
    "DatingPreferences",
    "Gender",
    "HasKids",
    "InteractionEdge",
    "InteractionEdgeView",
    "InteractionKind",
    "InteractionStats",
    "LikeResult",
    "Message",
    "MessagePage",
    "NearbyProfile",
    "Participant",
    "Post",
    "Profile",
    "SendResult",
    "SocialMatchFilter",
]

"""Models for like/pass interactions between profiles."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, model_validator


class InteractionKind(str, Enum):
    """Kind of a directed interaction edge."""

    LIKE = "LIKE"
    PASS = "PASS"


class InteractionEdge(BaseModel):
    """A stored directed edge ``from_profile_id -> to_profile_id``."""

    from_profile_id: str
    to_profile_id: str
    kind: InteractionKind
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="before")
    @classmethod
    def check_self_edge(cls, values: Any) -> Any:
        if isinstance(values, dict):
            from_id = values.get("from_profile_id")
            to_id = values.get("to_profile_id")
            if from_id and to_id and from_id == to_id:
                raise ValueError("An interaction edge cannot point at its own profile.")
        return values

    model_config = ConfigDict(from_attributes=True, frozen=True)


class InteractionEdgeView(BaseModel):
    """
    An edge as seen by one participant.

    ``profile_id`` is the viewer, ``counterpart_id`` the other side. The
    notification collaborator uses ``profile_id`` as the recipient.
    """

    profile_id: str
    counterpart_id: str
    counterpart_name: str | None = None
    created_at: datetime
    is_match: bool = False
    is_new: bool = False


class LikeResult(BaseModel):
    """Outcome of a like: the actor's view, the recipient's view and the match flag."""

    is_match: bool
    from_edge: InteractionEdgeView
    to_edge: InteractionEdgeView


class InteractionStats(BaseModel):
    """Aggregated interaction projections for one profile."""

    sent: list[InteractionEdgeView] = Field(default_factory=list)
    matches: list[InteractionEdgeView] = Field(default_factory=list)
    received_likes_count: int = 0
    new_matches_count: int = 0

    def as_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

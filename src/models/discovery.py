"""Discovery result models."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from src.models.profile import Profile, ProfileSummary


class BoundingBox(BaseModel):
    """Rectangular lat/lon window approximating a radius search."""

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    model_config = ConfigDict(frozen=True)

    def contains(self, lat: float, lon: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lon <= lon <= self.max_lon


class NearbyProfile(BaseModel):
    """A discovered profile with its geodesic distance from the search center."""

    profile: Profile
    distance_km: Optional[float] = None


class Post(BaseModel):
    """Post model as returned by geo discovery."""

    id: str
    posted_by: ProfileSummary
    content: str
    lat: Optional[float] = None
    lon: Optional[float] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

"""Profile models for the matching core."""

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, computed_field, field_validator

from src.utils.errors import ValidationError

DEFAULT_PREF_AGE_MIN = 18
DEFAULT_PREF_AGE_MAX = 99


class Gender(str, Enum):
    """
    Gender enumeration.

    Represents the gender of a profile and the accepted partner genders.
    """

    MALE = "male"
    FEMALE = "female"
    NON_BINARY = "non_binary"
    OTHER = "other"


class HasKids(str, Enum):
    """Children status of a profile."""

    YES = "yes"
    NO = "no"


class DatingPreferences(BaseModel):
    """
    Desired-partner preferences of a profile.

    An unset age bound means the open default range (18-99). An empty
    ``kids`` list means "no preference"; an empty ``genders`` list accepts
    nobody.
    """

    age_min: Optional[int] = None
    age_max: Optional[int] = None
    genders: List[Gender] = Field(default_factory=list)
    kids: List[HasKids] = Field(default_factory=list)

    @field_validator("age_min", "age_max")
    @classmethod
    def validate_age_range(cls, v: Optional[int], info: ValidationInfo) -> Optional[int]:
        """
        Validate age bounds.

        Ensures each bound lies in 18-99 and that ``age_min`` does not exceed
        ``age_max``.

        Raises:
            ValidationError: If a bound is invalid or min > max.
        """
        if v is not None and (v < DEFAULT_PREF_AGE_MIN or v > DEFAULT_PREF_AGE_MAX):
            raise ValidationError(f"Age must be between {DEFAULT_PREF_AGE_MIN} and {DEFAULT_PREF_AGE_MAX}")

        if info.field_name == "age_max" and v is not None:
            age_min = info.data.get("age_min")
            if age_min is not None and age_min > v:
                raise ValidationError("age_min must be less than or equal to age_max")

        return v

    @property
    def effective_age_min(self) -> int:
        return self.age_min if self.age_min is not None else DEFAULT_PREF_AGE_MIN

    @property
    def effective_age_max(self) -> int:
        return self.age_max if self.age_max is not None else DEFAULT_PREF_AGE_MAX


class Tag(BaseModel):
    """Interest tag."""

    id: str
    name: str

    model_config = ConfigDict(from_attributes=True)


class Profile(BaseModel):
    """
    Profile model.

    An actor capable of interacting, distinct from the authentication
    account. The two activity scopes toggle independently; ``is_active``
    is derived from them.
    """

    id: str
    public_name: str
    is_social_active: bool = False
    is_dating_active: bool = False
    is_onboarded: bool = True
    is_callable: bool = True
    birthday: Optional[date] = None
    gender: Optional[Gender] = None
    has_kids: Optional[HasKids] = None
    preferences: Optional[DatingPreferences] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    country: Optional[str] = None
    city_name: Optional[str] = None
    tags: List[Tag] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_active(self) -> bool:
        """True while the social or the dating scope is active."""
        return self.is_social_active or self.is_dating_active

    @classmethod
    def from_db(cls, row: object) -> "Profile":
        """Build a profile from a ``ProfileDB`` row, folding preference rows into ``preferences``."""
        genders = [Gender(p.gender) for p in getattr(row, "preferred_genders", [])]
        kids = [HasKids(p.has_kids) for p in getattr(row, "preferred_kids", [])]
        age_min = getattr(row, "pref_age_min", None)
        age_max = getattr(row, "pref_age_max", None)
        has_prefs = bool(genders or kids or age_min is not None or age_max is not None)
        preferences = (
            DatingPreferences.model_construct(age_min=age_min, age_max=age_max, genders=genders, kids=kids)
            if has_prefs
            else None
        )
        return cls(
            id=row.id,  # type: ignore[attr-defined]
            public_name=row.public_name,  # type: ignore[attr-defined]
            is_social_active=row.is_social_active,  # type: ignore[attr-defined]
            is_dating_active=row.is_dating_active,  # type: ignore[attr-defined]
            is_onboarded=row.is_onboarded,  # type: ignore[attr-defined]
            is_callable=row.is_callable,  # type: ignore[attr-defined]
            birthday=row.birthday,  # type: ignore[attr-defined]
            gender=row.gender,  # type: ignore[attr-defined]
            has_kids=row.has_kids,  # type: ignore[attr-defined]
            preferences=preferences,
            lat=row.lat,  # type: ignore[attr-defined]
            lon=row.lon,  # type: ignore[attr-defined]
            country=row.country,  # type: ignore[attr-defined]
            city_name=row.city_name,  # type: ignore[attr-defined]
            tags=[Tag.model_validate(t) for t in getattr(row, "tags", [])],
            created_at=row.created_at,  # type: ignore[attr-defined]
            updated_at=row.updated_at,  # type: ignore[attr-defined]
        )


class ProfileSummary(BaseModel):
    """Minimal public view of a profile used in listings."""

    id: str
    public_name: str

    model_config = ConfigDict(from_attributes=True)


class SocialMatchFilter(BaseModel):
    """Stored social discovery filter."""

    profile_id: str
    country: Optional[str] = None
    city_name: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    radius: int = 0
    tags: List[Tag] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class SocialFilterUpdate(BaseModel):
    """Payload to replace a profile's social filter."""

    country: Optional[str] = None
    city_name: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    radius: int = Field(default=0, ge=0, le=500)
    tag_ids: List[str] = Field(default_factory=list)

"""Profile service: profiles, activity scopes, dating preferences and social filters."""

from datetime import date
from typing import Iterable, List, Optional

import sentry_sdk
from sqlalchemy import select
from sqlalchemy.orm import Session

from src.models.profile import (
    DatingPreferences,
    Gender,
    HasKids,
    Profile,
    SocialFilterUpdate,
    SocialMatchFilter,
    Tag,
)
from src.services.compatibility_service import default_dating_preferences
from src.utils.database import (
    ProfileDB,
    ProfilePreferredGenderDB,
    ProfilePreferredKidsDB,
    SocialMatchFilterDB,
    TagDB,
    new_id,
    utcnow,
)
from src.utils.errors import NotFoundError, ValidationError
from src.utils.logging import get_logger

logger = get_logger(__name__)


def _has_preferences(row: ProfileDB) -> bool:
    return bool(
        row.preferred_genders or row.preferred_kids or row.pref_age_min is not None or row.pref_age_max is not None
    )


class ProfileService:
    """Owner-driven profile mutations. Every method runs in the caller's transaction."""

    def _get_row(self, session: Session, profile_id: str) -> ProfileDB:
        row = session.get(ProfileDB, profile_id)
        if row is None:
            logger.warning("Profile not found", profile_id=profile_id)
            raise NotFoundError(f"Profile not found: {profile_id}", details={"profile_id": profile_id})
        return row

    def get_or_create_tags(self, session: Session, names: Iterable[str]) -> List[Tag]:
        """Resolve tag names to tags, creating the missing ones."""
        return [Tag.model_validate(t) for t in self._tag_rows(session, names)]

    def _tag_rows(self, session: Session, names: Iterable[str]) -> List[TagDB]:
        return [self._tag_row(session, name) for name in dict.fromkeys(n.strip() for n in names if n.strip())]

    def _tag_row(self, session: Session, name: str) -> TagDB:
        row = session.scalars(select(TagDB).where(TagDB.name == name)).one_or_none()
        if row is None:
            row = TagDB(id=new_id(), name=name)
            session.add(row)
            session.flush()
        return row

    def create_profile(
        self,
        session: Session,
        public_name: str,
        *,
        profile_id: Optional[str] = None,
        birthday: Optional[date] = None,
        gender: Optional[Gender] = None,
        has_kids: Optional[HasKids] = None,
        is_social_active: bool = True,
        is_dating_active: bool = False,
        is_callable: bool = True,
        preferences: Optional[DatingPreferences] = None,
        lat: Optional[float] = None,
        lon: Optional[float] = None,
        country: Optional[str] = None,
        city_name: Optional[str] = None,
        tags: Iterable[str] = (),
    ) -> Profile:
        """Create a profile.

        A dating-active profile created without preferences gets the
        defaults derived from its birthday and gender.

        Raises:
            ValidationError: If the public name is blank or the id is taken.
        """
        if not public_name or not public_name.strip():
            raise ValidationError("Public name is required")

        with sentry_sdk.start_span(op="profile.create", name=public_name):
            profile_id = profile_id or new_id()
            if session.get(ProfileDB, profile_id) is not None:
                raise ValidationError(f"Profile already exists: {profile_id}", details={"profile_id": profile_id})

            now = utcnow()
            row = ProfileDB(
                id=profile_id,
                public_name=public_name.strip(),
                is_social_active=is_social_active,
                is_dating_active=is_dating_active,
                is_onboarded=True,
                is_callable=is_callable,
                birthday=birthday,
                gender=gender.value if gender else None,
                has_kids=has_kids.value if has_kids else None,
                lat=lat,
                lon=lon,
                country=country,
                city_name=city_name,
                created_at=now,
                updated_at=now,
            )
            row.tags = self._tag_rows(session, tags)
            session.add(row)

            if preferences is None and is_dating_active:
                preferences = default_dating_preferences(birthday, gender)
            if preferences is not None:
                self._apply_preferences(row, preferences)
            session.flush()

        logger.info("Profile created", profile_id=profile_id)
        return Profile.from_db(row)

    def get_profile(self, session: Session, profile_id: str) -> Profile:
        """Get a profile by id.

        Raises:
            NotFoundError: If the profile does not exist.
        """
        return Profile.from_db(self._get_row(session, profile_id))

    def update_activity_scopes(
        self,
        session: Session,
        profile_id: str,
        is_social_active: Optional[bool] = None,
        is_dating_active: Optional[bool] = None,
    ) -> Profile:
        """Toggle the social and dating scopes independently; None leaves a scope as is."""
        row = self._get_row(session, profile_id)
        if is_social_active is not None:
            row.is_social_active = is_social_active
        if is_dating_active is not None:
            row.is_dating_active = is_dating_active
            if is_dating_active and not _has_preferences(row):
                defaults = default_dating_preferences(
                    row.birthday, Gender(row.gender) if row.gender else None
                )
                if defaults is not None:
                    self._apply_preferences(row, defaults)
        row.updated_at = utcnow()
        session.flush()
        logger.info(
            "Activity scopes updated",
            profile_id=profile_id,
            is_social_active=row.is_social_active,
            is_dating_active=row.is_dating_active,
        )
        return Profile.from_db(row)

    def _apply_preferences(self, row: ProfileDB, preferences: DatingPreferences) -> None:
        row.pref_age_min = preferences.age_min
        row.pref_age_max = preferences.age_max
        row.preferred_genders = [
            ProfilePreferredGenderDB(gender=Gender(g).value) for g in dict.fromkeys(preferences.genders)
        ]
        row.preferred_kids = [ProfilePreferredKidsDB(has_kids=HasKids(k).value) for k in dict.fromkeys(preferences.kids)]

    def update_dating_preferences(self, session: Session, profile_id: str, preferences: DatingPreferences) -> Profile:
        """Replace the profile's dating preferences.

        Raises:
            NotFoundError: If the profile does not exist.
            ValidationError: If the age bounds are outside 18-99 or reversed.
        """
        # Re-validate: callers may pass a model built with model_construct
        preferences = DatingPreferences.model_validate(preferences.model_dump())
        row = self._get_row(session, profile_id)
        self._apply_preferences(row, preferences)
        row.updated_at = utcnow()
        session.flush()
        logger.info("Dating preferences updated", profile_id=profile_id)
        return Profile.from_db(row)

    def get_social_filter(self, session: Session, profile_id: str) -> Optional[SocialMatchFilter]:
        """The stored social filter, or None when the profile never set one."""
        row = session.get(SocialMatchFilterDB, profile_id)
        return SocialMatchFilter.model_validate(row) if row is not None else None

    def update_social_filter(self, session: Session, profile_id: str, update: SocialFilterUpdate) -> SocialMatchFilter:
        """Create or replace the social filter, including its tag set.

        Raises:
            NotFoundError: If the profile or one of the tags does not exist.
        """
        self._get_row(session, profile_id)
        tags = list(session.scalars(select(TagDB).where(TagDB.id.in_(update.tag_ids)))) if update.tag_ids else []
        missing = set(update.tag_ids) - {t.id for t in tags}
        if missing:
            raise NotFoundError("Tag not found", details={"tag_ids": sorted(missing)})

        row = session.get(SocialMatchFilterDB, profile_id)
        if row is None:
            row = SocialMatchFilterDB(profile_id=profile_id)
            session.add(row)
        row.country = update.country
        row.city_name = update.city_name
        row.lat = update.lat
        row.lon = update.lon
        row.radius = update.radius
        row.tags = tags
        row.updated_at = utcnow()
        session.flush()

        logger.info("Social filter updated", profile_id=profile_id, tag_count=len(tags))
        return SocialMatchFilter.model_validate(row)

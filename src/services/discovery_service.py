"""Read-only candidate queries for social, dating and geo discovery."""

from datetime import date
from typing import List, Optional

import sentry_sdk
from sqlalchemy import Select, and_, exists, func, or_, select
from sqlalchemy.orm import Session

from src.config import Settings
from src.models.discovery import NearbyProfile, Post
from src.models.profile import DEFAULT_PREF_AGE_MAX, DEFAULT_PREF_AGE_MIN, Profile
from src.services.blocklist_service import BlocklistGate, exclusion_clause
from src.services.compatibility_service import calculate_age, subtract_years
from src.utils.database import (
    PostDB,
    ProfileDB,
    ProfilePreferredGenderDB,
    ProfilePreferredKidsDB,
    SocialMatchFilterDB,
    TagDB,
)
from src.utils.geo import bounding_box, distance_km
from src.utils.logging import get_logger

logger = get_logger(__name__)


class DiscoveryService:
    """
    Candidate lists for a viewer.

    Every query keeps only active, onboarded profiles other than the viewer
    and drops blocked pairs in both directions.
    """

    def __init__(self, gate: BlocklistGate, settings: Settings) -> None:
        self.gate = gate
        self.settings = settings

    def _visible_profiles(self, viewer_id: str) -> Select:
        return select(ProfileDB).where(
            ProfileDB.is_active,
            ProfileDB.is_onboarded.is_(True),
            ProfileDB.id != viewer_id,
            exclusion_clause(viewer_id),
        )

    def _page(self, session: Session, stmt: Select, limit: Optional[int], offset: int) -> List[Profile]:
        stmt = stmt.order_by(ProfileDB.updated_at.desc(), ProfileDB.id)
        stmt = stmt.limit(limit or self.settings.DISCOVERY_PAGE_SIZE).offset(offset)
        return [Profile.from_db(row) for row in session.scalars(stmt)]

    def find_social_profiles(
        self, session: Session, viewer_id: str, limit: Optional[int] = None, offset: int = 0
    ) -> List[Profile]:
        """
        Social candidates narrowed by the viewer's stored filter.

        A country restricts to that country; a tag set requires at least one
        shared tag. Without a stored filter there is nothing to search for and
        the result is empty.
        """
        social_filter = session.get(SocialMatchFilterDB, viewer_id)
        if social_filter is None:
            logger.info("No social filter stored, skipping search", viewer_id=viewer_id)
            return []

        stmt = self._visible_profiles(viewer_id).where(ProfileDB.is_social_active.is_(True))
        if social_filter.country:
            stmt = stmt.where(ProfileDB.country == social_filter.country)
        tag_ids = [tag.id for tag in social_filter.tags]
        if tag_ids:
            stmt = stmt.where(ProfileDB.tags.any(TagDB.id.in_(tag_ids)))

        with sentry_sdk.start_span(op="discovery.social", name=viewer_id) as span:
            profiles = self._page(session, stmt, limit, offset)
            span.set_data("count", len(profiles))
        return profiles

    def find_new_profiles_anywhere(
        self, session: Session, viewer_id: str, limit: Optional[int] = None, offset: int = 0
    ) -> List[Profile]:
        """Social candidates regardless of any stored filter, most recently updated first."""
        stmt = self._visible_profiles(viewer_id).where(ProfileDB.is_social_active.is_(True))
        return self._page(session, stmt, limit, offset)

    def find_dating_profiles(
        self,
        session: Session,
        viewer_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
        today: Optional[date] = None,
    ) -> List[Profile]:
        """
        Dating candidates that accept the viewer and are accepted by the viewer.

        The viewer's own age window is widened by ``DATING_AGE_PADDING_YEARS``
        on each side, so a candidate whose birthday falls between two
        searches is not dropped. The candidate's preferences are matched
        against the viewer exactly. Results are a coarse list; the pairwise
        check in ``compatibility_service`` is the definitive answer.
        """
        viewer = session.get(ProfileDB, viewer_id)
        if viewer is None or viewer.birthday is None or viewer.gender is None or not viewer.is_dating_active:
            logger.info("Profile not suitable for dating discovery", viewer_id=viewer_id)
            return []

        today = today or date.today()
        viewer_age = calculate_age(viewer.birthday, today)
        padding = self.settings.DATING_AGE_PADDING_YEARS
        age_min = (viewer.pref_age_min if viewer.pref_age_min is not None else DEFAULT_PREF_AGE_MIN) - padding
        age_max = (viewer.pref_age_max if viewer.pref_age_max is not None else DEFAULT_PREF_AGE_MAX) + padding
        accepted_genders = [p.gender for p in viewer.preferred_genders]
        accepted_kids = [p.has_kids for p in viewer.preferred_kids]

        stmt = self._visible_profiles(viewer_id).where(
            ProfileDB.is_dating_active.is_(True),
            # age in [age_min, age_max]
            ProfileDB.birthday > subtract_years(today, age_max + 1),
            ProfileDB.birthday <= subtract_years(today, age_min),
            ProfileDB.gender.in_(accepted_genders),
        )
        if accepted_kids:
            stmt = stmt.where(or_(ProfileDB.has_kids.is_(None), ProfileDB.has_kids.in_(accepted_kids)))

        # The candidate's own preferences have to accept the viewer
        stmt = stmt.where(
            func.coalesce(ProfileDB.pref_age_min, DEFAULT_PREF_AGE_MIN) <= viewer_age,
            func.coalesce(ProfileDB.pref_age_max, DEFAULT_PREF_AGE_MAX) >= viewer_age,
            exists().where(
                and_(
                    ProfilePreferredGenderDB.profile_id == ProfileDB.id,
                    ProfilePreferredGenderDB.gender == viewer.gender,
                )
            ),
        )
        if viewer.has_kids is not None:
            stmt = stmt.where(
                or_(
                    ~exists().where(ProfilePreferredKidsDB.profile_id == ProfileDB.id),
                    exists().where(
                        and_(
                            ProfilePreferredKidsDB.profile_id == ProfileDB.id,
                            ProfilePreferredKidsDB.has_kids == viewer.has_kids,
                        )
                    ),
                )
            )

        with sentry_sdk.start_span(op="discovery.dating", name=viewer_id) as span:
            profiles = self._page(session, stmt, limit, offset)
            span.set_data("count", len(profiles))
        logger.debug("Dating candidates found", viewer_id=viewer_id, count=len(profiles))
        return profiles

    def find_nearby_profiles(
        self,
        session: Session,
        viewer_id: str,
        lat: float,
        lon: float,
        radius_km: float,
        limit: Optional[int] = None,
    ) -> List[NearbyProfile]:
        """Social candidates inside the bounding box of the radius, nearest first."""
        box = bounding_box(lat, lon, radius_km)
        stmt = self._visible_profiles(viewer_id).where(
            ProfileDB.is_social_active.is_(True),
            ProfileDB.lat.between(box.min_lat, box.max_lat),
            ProfileDB.lon.between(box.min_lon, box.max_lon),
        )
        results = [
            NearbyProfile(profile=Profile.from_db(row), distance_km=distance_km(lat, lon, row.lat, row.lon))
            for row in session.scalars(stmt)
        ]
        results.sort(key=lambda item: item.distance_km if item.distance_km is not None else float("inf"))
        return results[: limit or self.settings.DISCOVERY_PAGE_SIZE]

    def find_nearby_posts(
        self,
        session: Session,
        lat: float,
        lon: float,
        radius_km: float,
        viewer_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Post]:
        """
        Visible posts inside the bounding box of the radius, newest first.

        A post without its own coordinates is placed at its author's
        location. Posts by blocked authors are left out when a viewer is given.
        """
        box = bounding_box(lat, lon, radius_km)
        own_location = and_(
            PostDB.lat.is_not(None),
            PostDB.lon.is_not(None),
            PostDB.lat.between(box.min_lat, box.max_lat),
            PostDB.lon.between(box.min_lon, box.max_lon),
        )
        author_location = and_(
            or_(PostDB.lat.is_(None), PostDB.lon.is_(None)),
            ProfileDB.lat.between(box.min_lat, box.max_lat),
            ProfileDB.lon.between(box.min_lon, box.max_lon),
        )
        stmt = (
            select(PostDB)
            .join(ProfileDB, ProfileDB.id == PostDB.posted_by_id)
            .where(
                PostDB.is_deleted.is_(False),
                PostDB.is_visible.is_(True),
                or_(own_location, author_location),
            )
        )
        if viewer_id is not None:
            stmt = stmt.where(exclusion_clause(viewer_id, PostDB.posted_by_id))

        stmt = stmt.order_by(PostDB.created_at.desc()).limit(limit or self.settings.DISCOVERY_PAGE_SIZE).offset(offset)
        return [Post.model_validate(row) for row in session.scalars(stmt)]

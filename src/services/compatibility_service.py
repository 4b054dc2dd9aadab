"""Dating compatibility: age, gender and children-status preferences in both directions."""

from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.models.profile import DatingPreferences, Gender, HasKids, Profile
from src.utils.database import ProfileDB
from src.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_AGE_SPREAD = 5


def subtract_years(day: date, years: int) -> date:
    """Move ``day`` back by ``years``; Feb 29 lands on Feb 28 in non-leap years."""
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        return day.replace(year=day.year - years, day=28)


def calculate_age(birthday: date, today: Optional[date] = None) -> int:
    """
    Whole years between ``birthday`` and ``today``.

    One year less while this year's birthday has not been reached yet.
    """
    today = today or date.today()
    age = today.year - birthday.year
    if (today.month, today.day) < (birthday.month, birthday.day):
        age -= 1
    return age


def _is_dating_eligible(profile: Profile) -> bool:
    return (
        profile.birthday is not None
        and profile.gender is not None
        and profile.is_dating_active
        and profile.preferences is not None
    )


def accepts(seeker: Profile, candidate: Profile, today: Optional[date] = None) -> bool:
    """
    One direction of the check: does ``seeker`` accept ``candidate``?

    The candidate's age must lie in the seeker's age bounds (18-99 when
    unset), the seeker's accepted genders must contain the candidate's
    gender, and the candidate's children status must be unset, accepted,
    or the seeker must have no kids preference at all.
    """
    if not (_is_dating_eligible(seeker) and candidate.birthday is not None and candidate.gender is not None):
        return False

    prefs: DatingPreferences = seeker.preferences  # type: ignore[assignment]
    candidate_age = calculate_age(candidate.birthday, today)
    if not prefs.effective_age_min <= candidate_age <= prefs.effective_age_max:
        return False
    if candidate.gender not in prefs.genders:
        return False
    if candidate.has_kids is not None and prefs.kids and candidate.has_kids not in prefs.kids:
        return False
    return True


def is_mutually_compatible(a: Profile, b: Profile, today: Optional[date] = None) -> bool:
    """
    True when both profiles accept each other.

    Both must be dating active with a birthday, a gender and stored
    preferences, otherwise the answer is False. Never raises.
    """
    if not (_is_dating_eligible(a) and _is_dating_eligible(b)):
        return False
    return accepts(a, b, today) and accepts(b, a, today)


def default_dating_preferences(birthday: Optional[date], gender: Optional[Gender]) -> Optional[DatingPreferences]:
    """
    Starting preferences for a profile that just enabled dating.

    Ages within five years either side (clamped to 18-99), the opposite
    gender and any children status. Returns None without a birthday.
    """
    if birthday is None:
        return None
    age = calculate_age(birthday)
    preferred_gender = Gender.FEMALE if gender == Gender.MALE else Gender.MALE
    return DatingPreferences(
        age_min=min(99, max(18, age - DEFAULT_AGE_SPREAD)),
        age_max=max(18, min(99, age + DEFAULT_AGE_SPREAD)),
        genders=[preferred_gender],
        kids=[HasKids.NO, HasKids.YES],
    )


class CompatibilityEvaluator:
    """Session-aware wrapper answering the pairwise question for stored profiles."""

    def are_profiles_mutually_compatible(
        self, session: Session, a_id: str, b_id: str, today: Optional[date] = None
    ) -> bool:
        """Load both profiles and run the mutual check. A missing profile yields False."""
        rows: List[ProfileDB] = list(session.scalars(select(ProfileDB).where(ProfileDB.id.in_([a_id, b_id]))))
        by_id: Dict[str, Profile] = {row.id: Profile.from_db(row) for row in rows}
        a, b = by_id.get(a_id), by_id.get(b_id)
        if a is None or b is None or a_id == b_id:
            logger.debug("Compatibility check with missing profile", a_id=a_id, b_id=b_id)
            return False
        return is_mutually_compatible(a, b, today)

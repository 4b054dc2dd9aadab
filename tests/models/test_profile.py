"""Tests for profile and conversation models."""

from datetime import datetime
from types import SimpleNamespace

import pytest
from pydantic import ValidationError as PydanticValidationError

from src.models.conversation import Conversation, ConversationStatus
from src.models.interaction import InteractionEdge
from src.models.profile import DatingPreferences, Gender, HasKids, Profile, SocialFilterUpdate
from src.utils.errors import ValidationError


class TestDatingPreferences:
    """Tests for DatingPreferences validation."""

    def test_open_defaults(self):
        prefs = DatingPreferences()
        assert prefs.effective_age_min == 18
        assert prefs.effective_age_max == 99
        assert prefs.genders == []
        assert prefs.kids == []

    @pytest.mark.parametrize("field", ["age_min", "age_max"])
    def test_bounds_must_be_adult_range(self, field):
        with pytest.raises(ValidationError):
            DatingPreferences(**{field: 17})
        with pytest.raises(ValidationError):
            DatingPreferences(**{field: 100})

    def test_reversed_bounds(self):
        with pytest.raises(ValidationError):
            DatingPreferences(age_min=40, age_max=30)

    def test_equal_bounds_allowed(self):
        assert DatingPreferences(age_min=30, age_max=30).age_max == 30


class TestProfile:
    """Tests for the Profile model."""

    def test_is_active_derived_from_scopes(self):
        assert Profile(id="a", public_name="A", is_social_active=True).is_active is True
        assert Profile(id="a", public_name="A", is_dating_active=True).is_active is True
        assert Profile(id="a", public_name="A").is_active is False

    def test_from_db_folds_preference_rows(self):
        now = datetime(2024, 1, 1)
        row = SimpleNamespace(
            id="ann",
            public_name="Ann",
            is_social_active=False,
            is_dating_active=True,
            is_onboarded=True,
            is_callable=True,
            birthday=None,
            gender="female",
            has_kids=None,
            pref_age_min=25,
            pref_age_max=None,
            preferred_genders=[SimpleNamespace(gender="male")],
            preferred_kids=[SimpleNamespace(has_kids="no")],
            lat=None,
            lon=None,
            country="DE",
            city_name=None,
            tags=[],
            created_at=now,
            updated_at=now,
        )

        profile = Profile.from_db(row)

        assert profile.gender == Gender.FEMALE
        assert profile.preferences.age_min == 25
        assert profile.preferences.effective_age_max == 99
        assert profile.preferences.genders == [Gender.MALE]
        assert profile.preferences.kids == [HasKids.NO]

    def test_social_filter_radius_bounds(self):
        with pytest.raises(PydanticValidationError):
            SocialFilterUpdate(radius=501)


class TestEdgesAndConversations:
    def test_edge_cannot_point_at_itself(self):
        now = datetime(2024, 1, 1)
        with pytest.raises(PydanticValidationError):
            InteractionEdge(from_profile_id="a", to_profile_id="a", kind="LIKE", created_at=now, updated_at=now)

    def test_conversation_other_profile(self):
        now = datetime(2024, 1, 1)
        conversation = Conversation(
            id="c1",
            profile_a_id="alice",
            profile_b_id="bob",
            status=ConversationStatus.INITIATED,
            initiator_profile_id="bob",
            created_at=now,
            updated_at=now,
        )

        assert conversation.other_profile_id("alice") == "bob"
        assert conversation.other_profile_id("bob") == "alice"
        assert conversation.has_participant("carol") is False

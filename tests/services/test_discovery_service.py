"""Tests for discovery queries."""

from datetime import timedelta

import pytest

from src.models.profile import DatingPreferences, Gender, HasKids, SocialFilterUpdate
from src.services.discovery_service import DiscoveryService
from src.utils.database import PostDB, new_id, utcnow
from tests.helpers import years_ago

BERLIN = (52.52, 13.405)


def ids(profiles):
    return {p.id for p in profiles}


class TestSocialDiscovery:
    def test_no_filter_returns_nothing(self, services, session, make_profile):
        make_profile("alice")
        make_profile("bob")

        assert services.discovery.find_social_profiles(session, "alice") == []

    def test_country_filter(self, services, session, make_profile):
        make_profile("alice", country="DE")
        make_profile("bob", country="DE")
        make_profile("carol", country="FR")
        services.profiles.update_social_filter(session, "alice", SocialFilterUpdate(country="DE"))

        assert ids(services.discovery.find_social_profiles(session, "alice")) == {"bob"}

    def test_tag_filter_requires_a_shared_tag(self, services, session, make_profile):
        make_profile("alice")
        make_profile("bob", tags=["hiking", "chess"])
        make_profile("carol", tags=["cooking"])
        make_profile("dave")
        hiking, music = services.profiles.get_or_create_tags(session, ["hiking", "music"])
        services.profiles.update_social_filter(
            session, "alice", SocialFilterUpdate(tag_ids=[hiking.id, music.id])
        )

        assert ids(services.discovery.find_social_profiles(session, "alice")) == {"bob"}

    def test_blocked_profiles_hidden_in_both_directions(self, services, session, make_profile):
        for profile_id in ("alice", "bob", "carol", "dave"):
            make_profile(profile_id, country="DE")
        services.profiles.update_social_filter(session, "alice", SocialFilterUpdate(country="DE"))
        services.gate.block(session, "alice", "bob")
        services.gate.block(session, "carol", "alice")

        assert ids(services.discovery.find_social_profiles(session, "alice")) == {"dave"}

    def test_new_profiles_skip_inactive_and_self(self, services, session, make_profile):
        make_profile("alice")
        make_profile("bob")
        make_profile("carol", is_social_active=False)
        make_profile("dave", is_social_active=False, is_dating_active=True, birthday=years_ago(30))

        assert ids(services.discovery.find_new_profiles_anywhere(session, "alice")) == {"bob"}

    def test_pagination(self, services, session, make_profile):
        make_profile("alice")
        for i in range(5):
            make_profile(f"user-{i}")

        first = services.discovery.find_new_profiles_anywhere(session, "alice", limit=3)
        rest = services.discovery.find_new_profiles_anywhere(session, "alice", limit=3, offset=3)

        assert len(first) == 3
        assert len(rest) == 2
        assert ids(first) | ids(rest) == {f"user-{i}" for i in range(5)}


class TestDatingDiscovery:
    @pytest.fixture
    def daters(self, make_dater):
        make_dater("ann", 30, Gender.FEMALE, [Gender.MALE], 25, 35)
        make_dater("ben", 32, Gender.MALE, [Gender.FEMALE], 25, 35)
        make_dater("carl", 36, Gender.MALE, [Gender.FEMALE])
        make_dater("dan", 30, Gender.MALE, [Gender.MALE])
        make_dater("ed", 33, Gender.MALE, [Gender.FEMALE], 18, 25)
        make_dater("fay", 30, Gender.FEMALE, [Gender.MALE])

    def test_mutual_preferences(self, services, session, daters):
        found = services.discovery.find_dating_profiles(session, "ann")

        # carl is one year past ann's range and kept by the padding
        assert ids(found) == {"ben", "carl"}

    def test_without_padding(self, services, session, settings, daters):
        discovery = DiscoveryService(services.gate, settings.model_copy(update={"DATING_AGE_PADDING_YEARS": 0}))

        assert ids(discovery.find_dating_profiles(session, "ann")) == {"ben"}

    def test_pairwise_check_is_exact(self, services, session, daters):
        assert services.compatibility.are_profiles_mutually_compatible(session, "ann", "ben") is True
        assert services.compatibility.are_profiles_mutually_compatible(session, "ann", "carl") is False

    def test_viewer_not_dating(self, services, session, daters, make_profile):
        make_profile("gus", birthday=years_ago(30), gender=Gender.MALE)

        assert services.discovery.find_dating_profiles(session, "gus") == []

    def test_kids_preferences(self, services, session, make_profile):
        make_profile(
            "ann",
            birthday=years_ago(30),
            gender=Gender.FEMALE,
            has_kids=HasKids.YES,
            is_dating_active=True,
            preferences=DatingPreferences(genders=[Gender.MALE], kids=[HasKids.NO]),
        )
        # Wants no partner with kids
        make_profile(
            "ben",
            birthday=years_ago(30),
            gender=Gender.MALE,
            has_kids=HasKids.NO,
            is_dating_active=True,
            preferences=DatingPreferences(genders=[Gender.FEMALE], kids=[HasKids.NO]),
        )
        # Has kids himself
        make_profile(
            "carl",
            birthday=years_ago(30),
            gender=Gender.MALE,
            has_kids=HasKids.YES,
            is_dating_active=True,
            preferences=DatingPreferences(genders=[Gender.FEMALE]),
        )
        # Kids status unset, no kids preference
        make_profile(
            "dan",
            birthday=years_ago(30),
            gender=Gender.MALE,
            is_dating_active=True,
            preferences=DatingPreferences(genders=[Gender.FEMALE]),
        )

        assert ids(services.discovery.find_dating_profiles(session, "ann")) == {"dan"}

    def test_blocked_dater_hidden(self, services, session, daters):
        services.gate.block(session, "ben", "ann")

        assert ids(services.discovery.find_dating_profiles(session, "ann")) == {"carl"}


class TestNearbyProfiles:
    def test_radius_and_order(self, services, session, make_profile):
        make_profile("alice", lat=BERLIN[0], lon=BERLIN[1])
        make_profile("near", lat=52.90, lon=13.40)
        make_profile("nearer", lat=52.60, lon=13.40)
        make_profile("far", lat=53.5, lon=13.40)
        make_profile("nowhere")

        found = services.discovery.find_nearby_profiles(session, "alice", *BERLIN, radius_km=50)

        assert [item.profile.id for item in found] == ["nearer", "near"]
        assert found[1].distance_km == pytest.approx(42.3, abs=1.0)

    def test_blocked_and_limit(self, services, session, make_profile):
        make_profile("alice")
        make_profile("bob", lat=52.52, lon=13.41)
        make_profile("carol", lat=52.53, lon=13.41)
        make_profile("dave", lat=52.54, lon=13.41)
        services.gate.block(session, "bob", "alice")

        found = services.discovery.find_nearby_profiles(session, "alice", *BERLIN, radius_km=10, limit=1)

        assert [item.profile.id for item in found] == ["carol"]


class TestNearbyPosts:
    @pytest.fixture
    def add_post(self, session):
        def _add(author_id, content, lat=None, lon=None, age_minutes=0, **kwargs):
            post = PostDB(
                id=new_id(),
                posted_by_id=author_id,
                content=content,
                lat=lat,
                lon=lon,
                created_at=utcnow() - timedelta(minutes=age_minutes),
                **kwargs,
            )
            session.add(post)
            session.flush()
            return post

        return _add

    def test_own_coordinates_and_author_fallback(self, services, session, make_profile, add_post):
        make_profile("alice", lat=BERLIN[0], lon=BERLIN[1])
        make_profile("bob", lat=48.14, lon=11.58)
        add_post("alice", "at home", age_minutes=10)
        add_post("bob", "visiting berlin", lat=52.51, lon=13.39, age_minutes=5)
        add_post("bob", "munich")

        posts = services.discovery.find_nearby_posts(session, *BERLIN, radius_km=20)

        assert [p.content for p in posts] == ["visiting berlin", "at home"]
        assert posts[0].posted_by.public_name == "Bob"

    def test_hidden_deleted_and_blocked(self, services, session, make_profile, add_post):
        make_profile("alice")
        make_profile("bob")
        make_profile("carol")
        add_post("bob", "deleted", lat=52.52, lon=13.40, is_deleted=True)
        add_post("bob", "invisible", lat=52.52, lon=13.40, is_visible=False)
        add_post("carol", "from carol", lat=52.52, lon=13.40)
        add_post("bob", "from bob", lat=52.52, lon=13.40)
        services.gate.block(session, "alice", "bob")

        anonymous = services.discovery.find_nearby_posts(session, *BERLIN, radius_km=5)
        as_alice = services.discovery.find_nearby_posts(session, *BERLIN, radius_km=5, viewer_id="alice")

        assert {p.content for p in anonymous} == {"from carol", "from bob"}
        assert [p.content for p in as_alice] == ["from carol"]

"""Tests for the blocklist gate."""

import pytest

from src.utils.errors import BLOCKED_PAIR, SELF_INTERACTION, NotFoundError, PolicyViolationError


class TestCanInteract:
    def test_no_block_allows_both_directions(self, services, session, make_profile):
        make_profile("alice")
        make_profile("bob")

        assert services.gate.can_interact(session, "alice", "bob") is True
        assert services.gate.can_interact(session, "bob", "alice") is True

    def test_one_sided_block_forbids_both_directions(self, services, session, make_profile):
        """A block recorded by one side only still forbids interaction either way."""
        make_profile("alice")
        make_profile("bob")
        services.gate.block(session, "alice", "bob")

        assert services.gate.can_interact(session, "alice", "bob") is False
        assert services.gate.can_interact(session, "bob", "alice") is False

    def test_unblock_restores_interaction(self, services, session, make_profile):
        make_profile("alice")
        make_profile("bob")
        services.gate.block(session, "alice", "bob")

        assert services.gate.unblock(session, "alice", "bob") is True
        assert services.gate.unblock(session, "alice", "bob") is False
        assert services.gate.can_interact(session, "bob", "alice") is True


class TestEnsureCanInteract:
    def test_self_interaction(self, services, session, make_profile):
        make_profile("alice")
        with pytest.raises(PolicyViolationError) as exc_info:
            services.gate.ensure_can_interact(session, "alice", "alice")
        assert exc_info.value.code == SELF_INTERACTION
        assert exc_info.value.status_code == 403

    def test_blocked_pair(self, services, session, make_profile):
        make_profile("alice")
        make_profile("bob")
        services.gate.block(session, "bob", "alice")

        with pytest.raises(PolicyViolationError) as exc_info:
            services.gate.ensure_can_interact(session, "alice", "bob")
        assert exc_info.value.code == BLOCKED_PAIR


class TestBlock:
    def test_block_is_idempotent(self, services, session, make_profile):
        make_profile("alice")
        make_profile("bob")

        services.gate.block(session, "alice", "bob")
        services.gate.block(session, "alice", "bob")

        assert services.gate.list_blocked(session, "alice") == ["bob"]
        assert services.gate.list_blocked(session, "bob") == []

    def test_cannot_block_self(self, services, session, make_profile):
        make_profile("alice")
        with pytest.raises(PolicyViolationError) as exc_info:
            services.gate.block(session, "alice", "alice")
        assert exc_info.value.code == SELF_INTERACTION

    def test_block_unknown_profile(self, services, session, make_profile):
        make_profile("alice")
        with pytest.raises(NotFoundError):
            services.gate.block(session, "alice", "ghost")

    def test_excluded_profile_ids_covers_both_directions(self, services, session, make_profile):
        for profile_id in ("alice", "bob", "carol", "dave"):
            make_profile(profile_id)
        services.gate.block(session, "alice", "bob")
        services.gate.block(session, "carol", "alice")

        assert services.gate.excluded_profile_ids(session, "alice") == {"bob", "carol"}
        assert services.gate.excluded_profile_ids(session, "dave") == set()

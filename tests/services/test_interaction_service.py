"""Tests for the interaction ledger."""

import pytest
from sqlalchemy import func, select

from src.models.conversation import ConversationStatus
from src.models.interaction import InteractionKind
from src.utils.database import InteractionEdgeDB
from src.utils.errors import SELF_INTERACTION, NotFoundError, PolicyViolationError
from tests.helpers import run_concurrently


def edge_count(session, from_id, to_id):
    return session.execute(
        select(func.count())
        .select_from(InteractionEdgeDB)
        .where(InteractionEdgeDB.from_profile_id == from_id, InteractionEdgeDB.to_profile_id == to_id)
    ).scalar_one()


@pytest.fixture
def pair(make_profile):
    make_profile("alice")
    make_profile("bob")
    return "alice", "bob"


class TestLike:
    def test_one_sided_like_is_not_a_match(self, services, session, pair):
        result = services.interactions.like(session, "alice", "bob")

        assert result.is_match is False
        assert result.from_edge.profile_id == "alice"
        assert result.from_edge.counterpart_id == "bob"
        assert result.from_edge.counterpart_name == "Bob"
        assert result.to_edge.profile_id == "bob"
        assert services.interactions.get_edge(session, "alice", "bob").kind == InteractionKind.LIKE

    def test_mutual_like_matches_on_second_call(self, services, session, pair):
        first = services.interactions.like(session, "alice", "bob")
        second = services.interactions.like(session, "bob", "alice")

        assert first.is_match is False
        assert second.is_match is True
        assert second.from_edge.is_match and second.to_edge.is_match
        assert services.interactions.is_match(session, "alice", "bob")
        assert services.interactions.is_match(session, "bob", "alice")

    def test_match_without_conversation_creates_none(self, services, session, pair):
        services.interactions.like(session, "alice", "bob")
        services.interactions.like(session, "bob", "alice")

        assert services.conversations.find_conversation_between(session, "alice", "bob") is None

    def test_match_accepts_initiated_conversation(self, services, session, pair):
        """A match overrides reply gating even though the recipient never answered."""
        services.conversations.send_or_start_conversation(session, "alice", "bob", "hi")
        services.interactions.like(session, "alice", "bob")
        services.interactions.like(session, "bob", "alice")

        conversation = services.conversations.find_conversation_between(session, "bob", "alice")
        assert conversation.status == ConversationStatus.ACCEPTED

    def test_repeated_like_keeps_one_edge(self, services, session, pair):
        services.interactions.like(session, "alice", "bob")
        services.interactions.like(session, "alice", "bob")

        assert edge_count(session, "alice", "bob") == 1

    def test_like_then_pass_leaves_single_pass_edge(self, services, session, pair):
        services.interactions.like(session, "alice", "bob")
        services.interactions.pass_profile(session, "alice", "bob")

        assert edge_count(session, "alice", "bob") == 1
        assert services.interactions.get_edge(session, "alice", "bob").kind == InteractionKind.PASS

    def test_pass_then_like_supersedes(self, services, session, pair):
        services.interactions.pass_profile(session, "alice", "bob")
        services.interactions.like(session, "bob", "alice")
        result = services.interactions.like(session, "alice", "bob")

        assert result.is_match is True
        assert edge_count(session, "alice", "bob") == 1

    def test_pass_never_touches_reverse_edge(self, services, session, pair):
        services.interactions.like(session, "bob", "alice")
        services.interactions.pass_profile(session, "alice", "bob")

        assert services.interactions.get_edge(session, "bob", "alice").kind == InteractionKind.LIKE
        assert not services.interactions.is_match(session, "alice", "bob")

    def test_self_like_rejected(self, services, session, pair):
        with pytest.raises(PolicyViolationError) as exc_info:
            services.interactions.like(session, "alice", "alice")
        assert exc_info.value.code == SELF_INTERACTION

    def test_self_pass_rejected(self, services, session, pair):
        with pytest.raises(PolicyViolationError):
            services.interactions.pass_profile(session, "bob", "bob")

    def test_like_unknown_profile(self, services, session, pair):
        with pytest.raises(NotFoundError):
            services.interactions.like(session, "alice", "ghost")
        assert services.interactions.get_edge(session, "alice", "ghost") is None


class TestProjections:
    def test_match_seen_flags_per_viewer(self, services, session, pair):
        """The profile completing the match has seen it; the other side has not."""
        services.interactions.like(session, "alice", "bob")
        services.interactions.like(session, "bob", "alice")

        assert services.interactions.get_new_matches_count(session, "bob") == 0
        assert services.interactions.get_new_matches_count(session, "alice") == 1
        matches = services.interactions.get_matches(session, "alice")
        assert [m.counterpart_id for m in matches] == ["bob"]
        assert matches[0].is_new is True

        assert services.interactions.mark_match_seen(session, "alice", "bob") is True
        assert services.interactions.get_new_matches_count(session, "alice") == 0
        assert services.interactions.get_matches(session, "alice")[0].is_new is False

    def test_sending_a_message_marks_match_seen(self, services, session, pair):
        services.interactions.like(session, "alice", "bob")
        services.interactions.like(session, "bob", "alice")

        services.conversations.send_or_start_conversation(session, "alice", "bob", "hey!")

        assert services.interactions.get_new_matches_count(session, "alice") == 0

    def test_likes_received_count_ignores_answered_likes(self, services, session, pair, make_profile):
        make_profile("carol")
        services.interactions.like(session, "bob", "alice")
        services.interactions.like(session, "carol", "alice")
        assert services.interactions.get_likes_received_count(session, "alice") == 2

        services.interactions.pass_profile(session, "alice", "carol")
        assert services.interactions.get_likes_received_count(session, "alice") == 1

    def test_likes_sent_excludes_matches_and_blocked(self, services, session, pair, make_profile):
        make_profile("carol")
        make_profile("dave")
        services.interactions.like(session, "alice", "bob")
        services.interactions.like(session, "alice", "carol")
        services.interactions.like(session, "alice", "dave")
        services.interactions.like(session, "carol", "alice")
        services.gate.block(session, "dave", "alice")

        sent = services.interactions.get_likes_sent(session, "alice")

        assert [edge.counterpart_id for edge in sent] == ["bob"]
        assert [m.counterpart_id for m in services.interactions.get_matches(session, "alice")] == ["carol"]

    def test_blocked_match_hidden_from_projections(self, services, session, pair):
        services.interactions.like(session, "alice", "bob")
        services.interactions.like(session, "bob", "alice")
        services.gate.block(session, "alice", "bob")

        assert services.interactions.get_matches(session, "bob") == []
        assert services.interactions.get_new_matches_count(session, "alice") == 0

    def test_stats_payload(self, services, session, pair):
        services.interactions.like(session, "bob", "alice")

        payload = services.interactions.get_stats(session, "alice").as_payload()

        assert payload["received_likes_count"] == 1
        assert payload["new_matches_count"] == 0
        assert payload["sent"] == []
        assert payload["matches"] == []


class TestSimultaneousLikes:
    def like(self, services, from_id, to_id):
        return services.database.run_in_transaction(lambda s: services.interactions.like(s, from_id, to_id))

    def test_mutual_likes_at_once_still_match(self, file_services):
        file_services.database.run_in_transaction(
            lambda s: file_services.conversations.send_or_start_conversation(s, "alice", "bob", "Hello")
        )

        results = run_concurrently(
            lambda: self.like(file_services, "alice", "bob"),
            lambda: self.like(file_services, "bob", "alice"),
        )

        assert any(result.is_match for result in results)
        with file_services.database.transaction() as s:
            assert file_services.interactions.is_match(s, "alice", "bob")
            unseen = [file_services.interactions.get_new_matches_count(s, p) for p in ("alice", "bob")]
            assert sum(unseen) >= 1
            conversation = file_services.conversations.find_conversation_between(s, "alice", "bob")
        assert conversation.status == ConversationStatus.ACCEPTED

"""Interaction ledger: directed like/pass edges and derived matches."""

from typing import TYPE_CHECKING, Dict, List, Optional

import sentry_sdk
from sqlalchemy import ColumnElement, and_, exists, func, select, update
from sqlalchemy.orm import Session, aliased

from src.models.interaction import InteractionEdge, InteractionEdgeView, InteractionKind, InteractionStats, LikeResult
from src.services.blocklist_service import exclusion_clause
from src.utils.database import InteractionEdgeDB, ProfileDB, dialect_insert, new_id, utcnow
from src.utils.errors import SELF_INTERACTION, NotFoundError, PolicyViolationError
from src.utils.logging import get_logger

if TYPE_CHECKING:
    from src.services.conversation_service import ConversationService

logger = get_logger(__name__)


def _reverse_edge_exists(kind: Optional[InteractionKind] = None) -> ColumnElement[bool]:
    """SQL predicate: the edge pointing back at the outer ``InteractionEdgeDB`` row exists."""
    reverse = aliased(InteractionEdgeDB)
    conditions = [
        reverse.from_profile_id == InteractionEdgeDB.to_profile_id,
        reverse.to_profile_id == InteractionEdgeDB.from_profile_id,
    ]
    if kind is not None:
        conditions.append(reverse.kind == kind.value)
    return exists().where(and_(*conditions))


def set_match_seen(session: Session, from_id: str, to_id: str, seen: bool) -> int:
    """Set the seen flag on the ``from -> to`` LIKE edge. Returns the number of rows updated."""
    result = session.execute(
        update(InteractionEdgeDB)
        .where(
            InteractionEdgeDB.from_profile_id == from_id,
            InteractionEdgeDB.to_profile_id == to_id,
            InteractionEdgeDB.kind == InteractionKind.LIKE.value,
        )
        .values(match_seen=seen)
    )
    return result.rowcount or 0


class InteractionLedger:
    """
    Records likes and passes and detects mutual likes.

    A match is never stored: it is the presence of LIKE edges in both
    directions. The ledger does not consult the blocklist; callers gate
    actions through ``BlocklistGate`` first.
    """

    def __init__(self, conversations: "ConversationService") -> None:
        self.conversations = conversations

    def _lock_pair(self, session: Session, a_id: str, b_id: str) -> Dict[str, str]:
        """
        Lock both profile rows in a fixed order and return their public names.

        Serializes concurrent like/pass calls on the same pair so two
        simultaneous mutual likes cannot both miss the match.

        Raises:
            NotFoundError: If either profile does not exist.
        """
        rows = session.execute(
            select(ProfileDB.id, ProfileDB.public_name)
            .where(ProfileDB.id.in_([a_id, b_id]))
            .order_by(ProfileDB.id)
            .with_for_update()
        ).all()
        names = {row.id: row.public_name for row in rows}
        missing = {a_id, b_id} - names.keys()
        if missing:
            logger.warning("Interaction with unknown profile", profile_ids=sorted(missing))
            raise NotFoundError("Profile not found", details={"profile_ids": sorted(missing)})
        return names

    def _edge_kind(self, session: Session, from_id: str, to_id: str) -> Optional[InteractionKind]:
        kind = session.execute(
            select(InteractionEdgeDB.kind).where(
                InteractionEdgeDB.from_profile_id == from_id, InteractionEdgeDB.to_profile_id == to_id
            )
        ).scalar_one_or_none()
        return InteractionKind(kind) if kind is not None else None

    def _upsert_edge(self, session: Session, from_id: str, to_id: str, kind: InteractionKind) -> None:
        """Insert the edge or overwrite the kind of the existing one for this ordered pair."""
        now = utcnow()
        stmt = dialect_insert(session, InteractionEdgeDB).values(
            id=new_id(),
            from_profile_id=from_id,
            to_profile_id=to_id,
            kind=kind.value,
            match_seen=False,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["from_profile_id", "to_profile_id"],
            set_={"kind": stmt.excluded.kind, "updated_at": now},
        )
        session.execute(stmt)

    def like(self, session: Session, from_id: str, to_id: str) -> LikeResult:
        """
        Like a profile.

        Upserts ``from -> to`` as LIKE (superseding a PASS; repeating a like
        is idempotent) and re-reads the reverse edge in the same
        transaction. When the reverse edge is a LIKE the pair is a match and
        an INITIATED conversation between them is force-accepted.

        Raises:
            PolicyViolationError: When liking oneself.
            NotFoundError: When either profile does not exist.
        """
        if from_id == to_id:
            raise PolicyViolationError("Cannot like yourself", code=SELF_INTERACTION)

        with sentry_sdk.start_span(op="interaction.like", name=f"{from_id} -> {to_id}") as span:
            names = self._lock_pair(session, from_id, to_id)
            previous_kind = self._edge_kind(session, from_id, to_id)

            self._upsert_edge(session, from_id, to_id, InteractionKind.LIKE)
            is_match = self._edge_kind(session, to_id, from_id) == InteractionKind.LIKE

            if is_match and previous_kind != InteractionKind.LIKE:
                # The actor sees the match right away, the counterpart has not yet
                set_match_seen(session, from_id, to_id, True)
                set_match_seen(session, to_id, from_id, False)
                logger.info("Match created", from_id=from_id, to_id=to_id)

            if is_match:
                self.conversations.accept_on_match(session, from_id, to_id)

            created_at = session.execute(
                select(InteractionEdgeDB.created_at).where(
                    InteractionEdgeDB.from_profile_id == from_id, InteractionEdgeDB.to_profile_id == to_id
                )
            ).scalar_one()

            span.set_data("is_match", is_match)

        logger.info("Like recorded", from_id=from_id, to_id=to_id, is_match=is_match)
        return LikeResult(
            is_match=is_match,
            from_edge=InteractionEdgeView(
                profile_id=from_id,
                counterpart_id=to_id,
                counterpart_name=names[to_id],
                created_at=created_at,
                is_match=is_match,
            ),
            to_edge=InteractionEdgeView(
                profile_id=to_id,
                counterpart_id=from_id,
                counterpart_name=names[from_id],
                created_at=created_at,
                is_match=is_match,
                is_new=True,
            ),
        )

    def pass_profile(self, session: Session, from_id: str, to_id: str) -> None:
        """
        Pass on a profile.

        Upserts ``from -> to`` as PASS, superseding a LIKE. The reverse
        direction is never touched.

        Raises:
            PolicyViolationError: When passing oneself.
            NotFoundError: When either profile does not exist.
        """
        if from_id == to_id:
            raise PolicyViolationError("Cannot pass yourself", code=SELF_INTERACTION)

        with sentry_sdk.start_span(op="interaction.pass", name=f"{from_id} -> {to_id}"):
            self._lock_pair(session, from_id, to_id)
            self._upsert_edge(session, from_id, to_id, InteractionKind.PASS)

        logger.info("Pass recorded", from_id=from_id, to_id=to_id)

    def get_edge(self, session: Session, from_id: str, to_id: str) -> Optional[InteractionEdge]:
        """Return the stored edge for an ordered pair, if any."""
        row = session.execute(
            select(
                InteractionEdgeDB.from_profile_id,
                InteractionEdgeDB.to_profile_id,
                InteractionEdgeDB.kind,
                InteractionEdgeDB.created_at,
                InteractionEdgeDB.updated_at,
            ).where(InteractionEdgeDB.from_profile_id == from_id, InteractionEdgeDB.to_profile_id == to_id)
        ).one_or_none()
        return InteractionEdge.model_validate(dict(row._mapping)) if row is not None else None

    def is_match(self, session: Session, a_id: str, b_id: str) -> bool:
        """True when both directions hold a LIKE."""
        return (
            self._edge_kind(session, a_id, b_id) == InteractionKind.LIKE
            and self._edge_kind(session, b_id, a_id) == InteractionKind.LIKE
        )

    def get_likes_sent(self, session: Session, profile_id: str) -> List[InteractionEdgeView]:
        """Likes sent by the profile that have not turned into matches yet."""
        rows = session.execute(
            select(InteractionEdgeDB.to_profile_id, ProfileDB.public_name, InteractionEdgeDB.updated_at)
            .join(ProfileDB, ProfileDB.id == InteractionEdgeDB.to_profile_id)
            .where(
                InteractionEdgeDB.from_profile_id == profile_id,
                InteractionEdgeDB.kind == InteractionKind.LIKE.value,
                ~_reverse_edge_exists(InteractionKind.LIKE),
                exclusion_clause(profile_id, InteractionEdgeDB.to_profile_id),
            )
            .order_by(InteractionEdgeDB.updated_at.desc())
        ).all()
        return [
            InteractionEdgeView(
                profile_id=profile_id,
                counterpart_id=row.to_profile_id,
                counterpart_name=row.public_name,
                created_at=row.updated_at,
                is_match=False,
            )
            for row in rows
        ]

    def get_matches(self, session: Session, profile_id: str) -> List[InteractionEdgeView]:
        """Mutual likes of the profile, newest first; ``is_new`` is the viewer's unseen flag."""
        reverse = aliased(InteractionEdgeDB)
        rows = session.execute(
            select(
                InteractionEdgeDB.to_profile_id,
                ProfileDB.public_name,
                InteractionEdgeDB.match_seen,
                InteractionEdgeDB.updated_at,
                reverse.updated_at.label("reverse_updated_at"),
            )
            .join(
                reverse,
                and_(
                    reverse.from_profile_id == InteractionEdgeDB.to_profile_id,
                    reverse.to_profile_id == InteractionEdgeDB.from_profile_id,
                ),
            )
            .join(ProfileDB, ProfileDB.id == InteractionEdgeDB.to_profile_id)
            .where(
                InteractionEdgeDB.from_profile_id == profile_id,
                InteractionEdgeDB.kind == InteractionKind.LIKE.value,
                reverse.kind == InteractionKind.LIKE.value,
                exclusion_clause(profile_id, InteractionEdgeDB.to_profile_id),
            )
        ).all()

        views = [
            InteractionEdgeView(
                profile_id=profile_id,
                counterpart_id=row.to_profile_id,
                counterpart_name=row.public_name,
                created_at=max(row.updated_at, row.reverse_updated_at),
                is_match=True,
                is_new=not row.match_seen,
            )
            for row in rows
        ]
        views.sort(key=lambda view: view.created_at, reverse=True)
        return views

    def get_likes_received_count(self, session: Session, profile_id: str) -> int:
        """Incoming likes the profile has not answered with a like or a pass."""
        count = session.execute(
            select(func.count())
            .select_from(InteractionEdgeDB)
            .where(
                InteractionEdgeDB.to_profile_id == profile_id,
                InteractionEdgeDB.kind == InteractionKind.LIKE.value,
                ~_reverse_edge_exists(),
                exclusion_clause(profile_id, InteractionEdgeDB.from_profile_id),
            )
        ).scalar_one()
        return int(count)

    def get_new_matches_count(self, session: Session, profile_id: str) -> int:
        """Matches the profile has not seen yet."""
        count = session.execute(
            select(func.count())
            .select_from(InteractionEdgeDB)
            .where(
                InteractionEdgeDB.from_profile_id == profile_id,
                InteractionEdgeDB.kind == InteractionKind.LIKE.value,
                InteractionEdgeDB.match_seen.is_(False),
                _reverse_edge_exists(InteractionKind.LIKE),
                exclusion_clause(profile_id, InteractionEdgeDB.to_profile_id),
            )
        ).scalar_one()
        return int(count)

    def mark_match_seen(self, session: Session, viewer_id: str, other_id: str) -> bool:
        """Mark the viewer's side of the pair as seen. Returns True if a like edge was updated."""
        updated = set_match_seen(session, viewer_id, other_id, True)
        if updated:
            logger.debug("Match marked as seen", viewer_id=viewer_id, other_id=other_id)
        return bool(updated)

    def get_stats(self, session: Session, profile_id: str) -> InteractionStats:
        """All interaction projections of a profile in one call."""
        return InteractionStats(
            sent=self.get_likes_sent(session, profile_id),
            matches=self.get_matches(session, profile_id),
            received_likes_count=self.get_likes_received_count(session, profile_id),
            new_matches_count=self.get_new_matches_count(session, profile_id),
        )

"""Identity & blocklist gate: decides whether two profiles may interact."""

from typing import List, Set

import sentry_sdk
from sqlalchemy import ColumnElement, and_, delete, exists, or_, select
from sqlalchemy.orm import Session

from src.utils.database import ProfileBlockDB, ProfileDB, dialect_insert, utcnow
from src.utils.errors import BLOCKED_PAIR, SELF_INTERACTION, NotFoundError, PolicyViolationError
from src.utils.logging import get_logger

logger = get_logger(__name__)


def blocked_between(a_id: str, b_id: str) -> ColumnElement[bool]:
    """SQL predicate: a block row exists in either direction between ``a_id`` and ``b_id``."""
    return exists().where(
        or_(
            and_(ProfileBlockDB.blocker_id == a_id, ProfileBlockDB.blocked_id == b_id),
            and_(ProfileBlockDB.blocker_id == b_id, ProfileBlockDB.blocked_id == a_id),
        )
    )


def exclusion_clause(viewer_id: str, profile_id_column: ColumnElement[str] | None = None) -> ColumnElement[bool]:
    """
    SQL predicate keeping only profiles visible to ``viewer_id``.

    Excludes profiles the viewer blocked and profiles that blocked the
    viewer. ``profile_id_column`` is the column holding the candidate id
    (defaults to ``ProfileDB.id``).
    """
    candidate = profile_id_column if profile_id_column is not None else ProfileDB.id
    i_blocked = exists().where(and_(ProfileBlockDB.blocker_id == viewer_id, ProfileBlockDB.blocked_id == candidate))
    blocked_me = exists().where(and_(ProfileBlockDB.blocker_id == candidate, ProfileBlockDB.blocked_id == viewer_id))
    return and_(~i_blocked, ~blocked_me)


class BlocklistGate:
    """Blocklist lookups and mutations. Reads have no side effects."""

    def can_interact(self, session: Session, a_id: str, b_id: str) -> bool:
        """
        Check whether two profiles may interact.

        Both directions are checked: a block by either side forbids it.
        Lookup failures propagate; they never count as "permitted".
        """
        blocked = session.execute(select(blocked_between(a_id, b_id))).scalar_one()
        return not blocked

    def ensure_can_interact(self, session: Session, actor_id: str, target_id: str) -> None:
        """
        Raise unless ``actor_id`` may act on ``target_id``.

        Raises:
            PolicyViolationError: ``SELF_INTERACTION`` when both ids are equal,
                ``BLOCKED_PAIR`` when a block exists in either direction.
        """
        if actor_id == target_id:
            raise PolicyViolationError("Cannot interact with your own profile", code=SELF_INTERACTION)
        if not self.can_interact(session, actor_id, target_id):
            logger.info("Interaction rejected by blocklist", actor_id=actor_id, target_id=target_id)
            raise PolicyViolationError(
                "Interaction between these profiles is blocked",
                code=BLOCKED_PAIR,
                details={"target_id": target_id},
            )

    def excluded_profile_ids(self, session: Session, viewer_id: str) -> Set[str]:
        """Profiles the viewer blocked plus profiles that blocked the viewer."""
        rows = session.execute(
            select(ProfileBlockDB.blocker_id, ProfileBlockDB.blocked_id).where(
                or_(ProfileBlockDB.blocker_id == viewer_id, ProfileBlockDB.blocked_id == viewer_id)
            )
        ).all()
        return {blocked if blocker == viewer_id else blocker for blocker, blocked in rows}

    def list_blocked(self, session: Session, blocker_id: str) -> List[str]:
        """Profiles blocked by ``blocker_id``, most recent first."""
        return list(
            session.scalars(
                select(ProfileBlockDB.blocked_id)
                .where(ProfileBlockDB.blocker_id == blocker_id)
                .order_by(ProfileBlockDB.created_at.desc())
            )
        )

    def block(self, session: Session, blocker_id: str, blocked_id: str) -> None:
        """
        Record that ``blocker_id`` blocks ``blocked_id``. Idempotent.

        Raises:
            PolicyViolationError: When blocking oneself.
            NotFoundError: When either profile does not exist.
        """
        if blocker_id == blocked_id:
            raise PolicyViolationError("Cannot block your own profile", code=SELF_INTERACTION)

        with sentry_sdk.start_span(op="blocklist.block", name=f"{blocker_id} -> {blocked_id}"):
            found = set(session.scalars(select(ProfileDB.id).where(ProfileDB.id.in_([blocker_id, blocked_id]))))
            missing = {blocker_id, blocked_id} - found
            if missing:
                raise NotFoundError("Profile not found", details={"profile_ids": sorted(missing)})

            stmt = (
                dialect_insert(session, ProfileBlockDB)
                .values(blocker_id=blocker_id, blocked_id=blocked_id, created_at=utcnow())
                .on_conflict_do_nothing(index_elements=["blocker_id", "blocked_id"])
            )
            session.execute(stmt)

        logger.info("Profile blocked", blocker_id=blocker_id, blocked_id=blocked_id)

    def unblock(self, session: Session, blocker_id: str, blocked_id: str) -> bool:
        """Remove a block. Returns True if one existed."""
        result = session.execute(
            delete(ProfileBlockDB).where(
                ProfileBlockDB.blocker_id == blocker_id, ProfileBlockDB.blocked_id == blocked_id
            )
        )
        removed = bool(result.rowcount)
        if removed:
            logger.info("Profile unblocked", blocker_id=blocker_id, blocked_id=blocked_id)
        return removed

"""Call signaling overlay stored on the conversation row."""

import uuid
from datetime import timedelta
from typing import Optional

import sentry_sdk
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from src.config import Settings
from src.models.call import CallSession, CallState, CallTermination
from src.models.conversation import CALL_MISSED, ConversationStatus, Message, Participant
from src.services.blocklist_service import BlocklistGate
from src.utils.database import ConversationDB, ConversationParticipantDB, MessageDB, ProfileDB, new_id, utcnow
from src.utils.errors import (
    CALL_IN_PROGRESS,
    CONVERSATION_NOT_ACCEPTED,
    NO_ACTIVE_CALL,
    NOT_CALLABLE,
    NOT_PARTICIPANT,
    NotFoundError,
    PolicyViolationError,
)
from src.utils.i18n import MISSED_CALL_MESSAGE, I18n
from src.utils.logging import get_logger

logger = get_logger(__name__)

DECLINED = "declined"
CANCELLED = "cancelled"
TIMED_OUT = "timeout"


class CallService:
    """
    Drives ``idle -> calling -> active -> idle`` on a conversation.

    Decline, cancel and timeout all end in the same guarded transition:
    only the request that actually moves the row out of ``calling``
    inserts the missed-call message, later duplicates return None.
    """

    def __init__(self, gate: BlocklistGate, i18n: I18n, settings: Settings) -> None:
        self.gate = gate
        self.i18n = i18n
        self.settings = settings

    def _lock(self, session: Session, conversation_id: str) -> ConversationDB:
        row = session.scalars(
            select(ConversationDB)
            .where(ConversationDB.id == conversation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).one_or_none()
        if row is None:
            raise NotFoundError("Conversation not found", details={"conversation_id": conversation_id})
        return row

    @staticmethod
    def _ensure_participant(row: ConversationDB, profile_id: str) -> None:
        if profile_id not in (row.profile_a_id, row.profile_b_id):
            raise PolicyViolationError(
                "Not a participant in this conversation",
                code=NOT_PARTICIPANT,
                details={"conversation_id": row.id},
            )

    @staticmethod
    def _other(row: ConversationDB, profile_id: str) -> str:
        return row.profile_b_id if profile_id == row.profile_a_id else row.profile_a_id

    def _view(self, row: ConversationDB, viewer_id: str) -> CallSession:
        state = CallState(row.call_state)
        caller_id = row.call_caller_id
        if state == CallState.CALLING and caller_id != viewer_id:
            state = CallState.RINGING
        return CallSession(
            conversation_id=row.id,
            viewer_id=viewer_id,
            state=state,
            room_name=row.call_room_id,
            caller_id=caller_id,
            callee_id=self._other(row, caller_id) if caller_id else None,
            started_at=row.call_started_at,
        )

    def _is_expired(self, row: ConversationDB) -> bool:
        if row.call_state != CallState.CALLING.value or row.call_started_at is None:
            return False
        return utcnow() - row.call_started_at > timedelta(seconds=self.settings.CALL_RING_TIMEOUT_SECONDS)

    def _finish_ringing(self, session: Session, row: ConversationDB, reason: str) -> Optional[CallTermination]:
        """Move a ringing call back to idle and record it as missed, at most once per attempt."""
        caller_id = row.call_caller_id
        if row.call_state != CallState.CALLING.value or caller_id is None:
            return None

        result = session.execute(
            update(ConversationDB)
            .where(ConversationDB.id == row.id, ConversationDB.call_state == CallState.CALLING.value)
            .values(call_state=CallState.IDLE.value, call_room_id=None, call_caller_id=None, call_started_at=None)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            return None

        message = MessageDB(
            id=new_id(),
            conversation_id=row.id,
            sender_id=caller_id,
            content=self.i18n.get_text(MISSED_CALL_MESSAGE, self.settings.DEFAULT_LOCALE),
            message_type=CALL_MISSED,
            created_at=utcnow(),
        )
        session.add(message)
        session.flush()

        callee_id = self._other(row, caller_id)
        logger.info("Call missed", conversation_id=row.id, caller_id=caller_id, callee_id=callee_id, reason=reason)
        return CallTermination(
            conversation_id=row.id,
            reason=reason,
            missed_call=Message.model_validate(message),
            caller_id=caller_id,
            callee_id=callee_id,
        )

    def initiate_call(self, session: Session, conversation_id: str, caller_id: str) -> CallSession:
        """
        Start ringing the other participant.

        A ``calling`` state older than the ring timeout is expired first,
        leaving its missed-call message behind.

        Raises:
            NotFoundError: If the conversation does not exist.
            PolicyViolationError: ``CONVERSATION_NOT_ACCEPTED``, ``NOT_PARTICIPANT``,
                ``BLOCKED_PAIR``, ``NOT_CALLABLE`` or ``CALL_IN_PROGRESS``.
        """
        with sentry_sdk.start_span(op="call.initiate", name=conversation_id):
            row = self._lock(session, conversation_id)
            if row.status != ConversationStatus.ACCEPTED.value:
                raise PolicyViolationError(
                    "Conversation is not accepted",
                    code=CONVERSATION_NOT_ACCEPTED,
                    details={"conversation_id": conversation_id},
                )
            self._ensure_participant(row, caller_id)
            callee_id = self._other(row, caller_id)
            self.gate.ensure_can_interact(session, caller_id, callee_id)

            callee = session.scalars(
                select(ConversationParticipantDB).where(
                    ConversationParticipantDB.conversation_id == conversation_id,
                    ConversationParticipantDB.profile_id == callee_id,
                )
            ).one_or_none()
            callee_profile_callable = session.execute(
                select(ProfileDB.is_callable).where(ProfileDB.id == callee_id)
            ).scalar_one_or_none()
            if callee is None or not callee.is_callable or not callee_profile_callable:
                raise PolicyViolationError(
                    "Partner is not callable", code=NOT_CALLABLE, details={"conversation_id": conversation_id}
                )

            if self._is_expired(row):
                self._finish_ringing(session, row, TIMED_OUT)

            if row.call_state != CallState.IDLE.value:
                raise PolicyViolationError(
                    "A call is already in progress",
                    code=CALL_IN_PROGRESS,
                    details={"conversation_id": conversation_id, "call_state": row.call_state},
                )

            room_name = str(uuid.uuid4())
            result = session.execute(
                update(ConversationDB)
                .where(ConversationDB.id == conversation_id, ConversationDB.call_state == CallState.IDLE.value)
                .values(
                    call_state=CallState.CALLING.value,
                    call_room_id=room_name,
                    call_caller_id=caller_id,
                    call_started_at=utcnow(),
                )
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount != 1:
                raise PolicyViolationError(
                    "A call is already in progress", code=CALL_IN_PROGRESS, details={"conversation_id": conversation_id}
                )

        logger.info("Call initiated", conversation_id=conversation_id, caller_id=caller_id, callee_id=callee_id)
        return self._view(row, caller_id)

    def accept_call(self, session: Session, conversation_id: str, callee_id: str) -> CallSession:
        """
        Answer a ringing call.

        Raises:
            PolicyViolationError: ``NOT_PARTICIPANT`` for anyone but the callee,
                ``NO_ACTIVE_CALL`` when nothing is ringing.
        """
        row = self._lock(session, conversation_id)
        self._ensure_participant(row, callee_id)
        if row.call_state != CallState.CALLING.value or self._is_expired(row):
            raise PolicyViolationError(
                "No call to accept", code=NO_ACTIVE_CALL, details={"conversation_id": conversation_id}
            )
        if row.call_caller_id == callee_id:
            raise PolicyViolationError(
                "Only the callee can accept the call",
                code=NOT_PARTICIPANT,
                details={"conversation_id": conversation_id},
            )

        row.call_state = CallState.ACTIVE.value
        session.flush()
        logger.info("Call accepted", conversation_id=conversation_id, callee_id=callee_id)
        return self._view(row, callee_id)

    def decline_call(self, session: Session, conversation_id: str, callee_id: str) -> Optional[CallTermination]:
        """Callee rejects a ringing call. A repeated decline returns None."""
        row = self._lock(session, conversation_id)
        self._ensure_participant(row, callee_id)
        if row.call_caller_id == callee_id:
            raise PolicyViolationError(
                "The caller cannot decline their own call",
                code=NOT_PARTICIPANT,
                details={"conversation_id": conversation_id},
            )
        return self._finish_ringing(session, row, DECLINED)

    def cancel_call(self, session: Session, conversation_id: str, caller_id: str) -> Optional[CallTermination]:
        """Caller hangs up before the callee answered. A repeated cancel returns None."""
        row = self._lock(session, conversation_id)
        self._ensure_participant(row, caller_id)
        if row.call_caller_id is not None and row.call_caller_id != caller_id:
            raise PolicyViolationError(
                "Only the caller can cancel the call",
                code=NOT_PARTICIPANT,
                details={"conversation_id": conversation_id},
            )
        return self._finish_ringing(session, row, CANCELLED)

    def timeout_call(self, session: Session, conversation_id: str, profile_id: str) -> Optional[CallTermination]:
        """Either participant reports that the ring deadline passed unanswered."""
        row = self._lock(session, conversation_id)
        self._ensure_participant(row, profile_id)
        return self._finish_ringing(session, row, TIMED_OUT)

    def end_call(self, session: Session, conversation_id: str, profile_id: str) -> bool:
        """Hang up an active call. Returns False when no call was active."""
        row = self._lock(session, conversation_id)
        self._ensure_participant(row, profile_id)
        result = session.execute(
            update(ConversationDB)
            .where(ConversationDB.id == conversation_id, ConversationDB.call_state == CallState.ACTIVE.value)
            .values(call_state=CallState.IDLE.value, call_room_id=None, call_caller_id=None, call_started_at=None)
            .execution_options(synchronize_session="fetch")
        )
        ended = result.rowcount == 1
        if ended:
            logger.info("Call ended", conversation_id=conversation_id, profile_id=profile_id)
        return ended

    def update_callable_status(
        self, session: Session, conversation_id: str, profile_id: str, is_callable: bool
    ) -> Participant:
        """Toggle whether this participant accepts calls in the conversation. The counterpart is unaffected."""
        participant = session.scalars(
            select(ConversationParticipantDB).where(
                ConversationParticipantDB.conversation_id == conversation_id,
                ConversationParticipantDB.profile_id == profile_id,
            )
        ).one_or_none()
        if participant is None:
            raise NotFoundError(
                "Conversation participant not found",
                details={"conversation_id": conversation_id, "profile_id": profile_id},
            )
        participant.is_callable = is_callable
        session.flush()
        return Participant.model_validate(participant)

    def get_call_session(self, session: Session, conversation_id: str, viewer_id: str) -> CallSession:
        """The call state as ``viewer_id`` sees it; the callee sees ``ringing`` while the caller waits."""
        row = session.get(ConversationDB, conversation_id, populate_existing=True)
        if row is None:
            raise NotFoundError("Conversation not found", details={"conversation_id": conversation_id})
        self._ensure_participant(row, viewer_id)
        return self._view(row, viewer_id)

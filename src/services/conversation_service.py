"""Conversation state machine: who may send the next message, and what a send does."""

from datetime import datetime
from typing import List, Optional, Tuple, Union

import sentry_sdk
from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.exc import MultipleResultsFound
from sqlalchemy.orm import Session

from src.config import Settings
from src.models.conversation import (
    TEXT_HTML,
    TEXT_PLAIN,
    Attachment,
    Conversation,
    ConversationStatus,
    ConversationSummary,
    Message,
    MessagePage,
    Participant,
    SendResult,
)
from src.services.blocklist_service import BlocklistGate, exclusion_clause
from src.services.interaction_service import set_match_seen
from src.utils.database import (
    AttachmentDB,
    ConversationDB,
    ConversationParticipantDB,
    MessageDB,
    ProfileDB,
    dialect_insert,
    new_id,
    utcnow,
)
from src.utils.errors import (
    CONVERSATION_BLOCKED,
    EMPTY_MESSAGE,
    NOT_PARTICIPANT,
    SELF_INTERACTION,
    IntegrityViolationError,
    NotFoundError,
    PolicyViolationError,
)
from src.utils.i18n import WELCOME_MESSAGE, I18n
from src.utils.logging import get_logger
from src.utils.security import sanitize_message_text, simple_markdown_to_html

logger = get_logger(__name__)


def canonical_pair(a_id: str, b_id: str) -> Tuple[str, str]:
    """
    Order two profile ids so every unordered pair maps to one stored row.

    The order is a byte-wise comparison of the UTF-8 encoded ids, which
    does not depend on database collation or insertion order.

    Raises:
        PolicyViolationError: When both ids are equal.
    """
    if a_id == b_id:
        raise PolicyViolationError("A conversation needs two different profiles", code=SELF_INTERACTION)
    return (a_id, b_id) if a_id.encode("utf-8") < b_id.encode("utf-8") else (b_id, a_id)


def can_send_message(conversation: Union[Conversation, ConversationDB, None], sender_id: str) -> bool:
    """
    Reply gating rule.

    | Conversation state                      | May send |
    |-----------------------------------------|----------|
    | none yet                                | yes      |
    | ACCEPTED                                | yes      |
    | INITIATED, sender is not the initiator  | yes      |
    | INITIATED, sender is the initiator      | no       |
    | BLOCKED or anything else                | no       |
    """
    if conversation is None:
        return True
    status = ConversationStatus(conversation.status)
    if status == ConversationStatus.ACCEPTED:
        return True
    return status == ConversationStatus.INITIATED and conversation.initiator_profile_id != sender_id


class ConversationService:
    """
    Owns conversation rows, participants and messages.

    Every method runs inside the caller's transaction; nothing here commits.
    """

    def __init__(self, gate: BlocklistGate, i18n: I18n, settings: Settings) -> None:
        self.gate = gate
        self.i18n = i18n
        self.settings = settings

    # Loading

    def _lock_conversation(self, session: Session, a_id: str, b_id: str) -> Optional[ConversationDB]:
        """Read the pair's conversation row FOR UPDATE, refreshing any stale copy in the session."""
        profile_a_id, profile_b_id = canonical_pair(a_id, b_id)
        try:
            return session.scalars(
                select(ConversationDB)
                .where(ConversationDB.profile_a_id == profile_a_id, ConversationDB.profile_b_id == profile_b_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).one_or_none()
        except MultipleResultsFound as e:
            logger.critical("Duplicate conversation rows for pair", profile_a_id=profile_a_id, profile_b_id=profile_b_id)
            raise IntegrityViolationError(
                "Duplicate conversation rows for one profile pair",
                details={"profile_a_id": profile_a_id, "profile_b_id": profile_b_id},
            ) from e

    def _get_row(self, session: Session, conversation_id: str) -> ConversationDB:
        row = session.get(ConversationDB, conversation_id, populate_existing=True)
        if row is None:
            raise NotFoundError("Conversation not found", details={"conversation_id": conversation_id})
        return row

    def _to_model(self, session: Session, row: ConversationDB) -> Conversation:
        session.flush()
        session.expire(row, ["participants"])
        return Conversation.model_validate(row)

    def _ensure_participant(self, row: ConversationDB, profile_id: str) -> None:
        if profile_id not in (row.profile_a_id, row.profile_b_id):
            raise PolicyViolationError(
                "Profile is not a participant of this conversation",
                code=NOT_PARTICIPANT,
                details={"conversation_id": row.id},
            )

    def find_conversation_between(self, session: Session, a_id: str, b_id: str) -> Optional[Conversation]:
        """The conversation of an unordered pair, if one exists."""
        profile_a_id, profile_b_id = canonical_pair(a_id, b_id)
        row = session.scalars(
            select(ConversationDB).where(
                ConversationDB.profile_a_id == profile_a_id, ConversationDB.profile_b_id == profile_b_id
            )
        ).one_or_none()
        return self._to_model(session, row) if row is not None else None

    def get_conversation(self, session: Session, conversation_id: str, viewer_id: Optional[str] = None) -> Conversation:
        """
        Load a conversation by id.

        Raises:
            NotFoundError: If it does not exist.
            PolicyViolationError: ``NOT_PARTICIPANT`` when ``viewer_id`` is given and not part of it.
        """
        row = self._get_row(session, conversation_id)
        if viewer_id is not None:
            self._ensure_participant(row, viewer_id)
        return self._to_model(session, row)

    # Sending

    def _create_if_missing(self, session: Session, sender_id: str, recipient_id: str) -> bool:
        """Insert the pair's conversation unless it exists. Returns True when this call created it."""
        profile_a_id, profile_b_id = canonical_pair(sender_id, recipient_id)
        now = utcnow()
        stmt = (
            dialect_insert(session, ConversationDB)
            .values(
                id=new_id(),
                profile_a_id=profile_a_id,
                profile_b_id=profile_b_id,
                status=ConversationStatus.INITIATED.value,
                initiator_profile_id=sender_id,
                call_state="idle",
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["profile_a_id", "profile_b_id"])
        )
        return session.execute(stmt).rowcount == 1

    def _add_participants(self, session: Session, conversation_id: str, *profile_ids: str) -> None:
        for profile_id in profile_ids:
            stmt = (
                dialect_insert(session, ConversationParticipantDB)
                .values(id=new_id(), conversation_id=conversation_id, profile_id=profile_id, is_callable=True)
                .on_conflict_do_nothing(index_elements=["conversation_id", "profile_id"])
            )
            session.execute(stmt)

    def send_or_start_conversation(
        self,
        session: Session,
        sender_id: str,
        recipient_id: str,
        content: str,
        message_type: str = TEXT_PLAIN,
        attachment: Optional[Attachment] = None,
    ) -> SendResult:
        """
        Send a message, creating the pair's conversation on first contact.

        The first message creates the conversation as INITIATED with the
        sender as initiator. The initiator cannot write again until the
        other side replies; that reply moves the conversation to ACCEPTED.
        ``text/plain`` content is escaped and its newlines turned into
        ``<br>``; other message types are stored as given.

        Raises:
            PolicyViolationError: ``SELF_INTERACTION`` or ``BLOCKED_PAIR`` from the
                blocklist, ``EMPTY_MESSAGE`` for blank text, ``CONVERSATION_BLOCKED``
                when reply gating forbids the send.
            NotFoundError: When either profile does not exist.
        """
        self.gate.ensure_can_interact(session, sender_id, recipient_id)

        if message_type == TEXT_PLAIN:
            content = sanitize_message_text(content)
            if not content:
                raise PolicyViolationError("Message cannot be empty", code=EMPTY_MESSAGE)

        with sentry_sdk.start_span(op="conversation.send", name=message_type) as span:
            found = set(session.scalars(select(ProfileDB.id).where(ProfileDB.id.in_([sender_id, recipient_id]))))
            missing = {sender_id, recipient_id} - found
            if missing:
                raise NotFoundError("Profile not found", details={"profile_ids": sorted(missing)})

            created = self._create_if_missing(session, sender_id, recipient_id)
            row = self._lock_conversation(session, sender_id, recipient_id)
            if row is None:
                raise IntegrityViolationError("Conversation vanished after insert")

            if not created and not can_send_message(row, sender_id):
                logger.info(
                    "Send rejected by reply gating",
                    conversation_id=row.id,
                    sender_id=sender_id,
                    status=row.status,
                )
                raise PolicyViolationError(
                    "You cannot send another message until the other person replies",
                    code=CONVERSATION_BLOCKED,
                    details={"conversation_id": row.id},
                )

            now = utcnow()
            if row.status == ConversationStatus.INITIATED.value and row.initiator_profile_id != sender_id:
                row.status = ConversationStatus.ACCEPTED.value
                logger.info("Conversation accepted by reply", conversation_id=row.id, sender_id=sender_id)
            row.updated_at = now

            self._add_participants(session, row.id, row.profile_a_id, row.profile_b_id)

            message = MessageDB(
                id=new_id(),
                conversation_id=row.id,
                sender_id=sender_id,
                content=content,
                message_type=message_type,
                created_at=now,
            )
            if attachment is not None:
                message.attachment = AttachmentDB(id=new_id(), **attachment.model_dump())
            session.add(message)

            # The sender has read everything up to their own message
            session.execute(
                update(ConversationParticipantDB)
                .where(
                    ConversationParticipantDB.conversation_id == row.id,
                    ConversationParticipantDB.profile_id == sender_id,
                )
                .values(last_read_at=now)
            )
            set_match_seen(session, sender_id, recipient_id, True)

            conversation = self._to_model(session, row)
            span.set_data("created_conversation", created)

        logger.info(
            "Message sent",
            conversation_id=conversation.id,
            sender_id=sender_id,
            recipient_id=recipient_id,
            message_type=message_type,
            created_conversation=created,
        )
        return SendResult(
            conversation=conversation,
            message=Message.model_validate(message),
            recipient_id=recipient_id,
            created_conversation=created,
        )

    def accept_on_match(self, session: Session, a_id: str, b_id: str) -> Optional[Conversation]:
        """
        Force an INITIATED conversation to ACCEPTED because the pair matched.

        A match overrides reply gating whoever the initiator was. Without a
        conversation nothing happens; it is still created by the first message.

        Raises:
            IntegrityViolationError: If the locked row could not be updated.
        """
        row = self._lock_conversation(session, a_id, b_id)
        if row is None:
            return None

        if row.status == ConversationStatus.INITIATED.value:
            result = session.execute(
                update(ConversationDB)
                .where(ConversationDB.id == row.id, ConversationDB.status == ConversationStatus.INITIATED.value)
                .values(status=ConversationStatus.ACCEPTED.value, updated_at=utcnow())
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount != 1:
                logger.critical("Force accept touched no conversation row", conversation_id=row.id)
                raise IntegrityViolationError(
                    "Failed to accept conversation on match", details={"conversation_id": row.id}
                )
            logger.info("Conversation accepted on match", conversation_id=row.id)

        return self._to_model(session, row)

    def send_welcome_message(
        self, session: Session, recipient_id: str, locale: Optional[str] = None
    ) -> Optional[SendResult]:
        """
        Greet a newly onboarded profile from the configured system sender.

        Returns None when no system sender is configured.
        """
        sender_id = self.settings.WELCOME_MESSAGE_SENDER_PROFILE_ID
        if not sender_id:
            logger.debug("No welcome message sender configured", recipient_id=recipient_id)
            return None

        text = self.i18n.get_text(
            WELCOME_MESSAGE, locale or self.settings.DEFAULT_LOCALE, site_name=self.settings.SITE_NAME
        )
        return self.send_or_start_conversation(
            session, sender_id, recipient_id, simple_markdown_to_html(text), message_type=TEXT_HTML
        )

    # Listing

    def _participant(self, session: Session, conversation_id: str, profile_id: str) -> Optional[ConversationParticipantDB]:
        return session.scalars(
            select(ConversationParticipantDB)
            .where(
                ConversationParticipantDB.conversation_id == conversation_id,
                ConversationParticipantDB.profile_id == profile_id,
            )
            .execution_options(populate_existing=True)
        ).one_or_none()

    def _summarize(self, session: Session, row: ConversationDB, viewer_id: str) -> ConversationSummary:
        participant_row = self._participant(session, row.id, viewer_id)
        participant = (
            Participant.model_validate(participant_row)
            if participant_row is not None
            else Participant(profile_id=viewer_id)
        )

        last_message = session.scalars(
            select(MessageDB)
            .where(MessageDB.conversation_id == row.id)
            .order_by(MessageDB.created_at.desc(), MessageDB.id.desc())
            .limit(1)
        ).first()

        unread_filter = [MessageDB.conversation_id == row.id, MessageDB.sender_id != viewer_id]
        if participant.last_read_at is not None:
            unread_filter.append(MessageDB.created_at > participant.last_read_at)
        unread_count = session.execute(select(func.count()).select_from(MessageDB).where(*unread_filter)).scalar_one()

        return ConversationSummary(
            conversation=self._to_model(session, row),
            participant=participant,
            partner_id=row.profile_b_id if row.profile_a_id == viewer_id else row.profile_a_id,
            last_message=Message.model_validate(last_message) if last_message is not None else None,
            unread_count=int(unread_count),
            can_reply=can_send_message(row, viewer_id),
        )

    def get_conversation_summary(self, session: Session, conversation_id: str, viewer_id: str) -> ConversationSummary:
        row = self._get_row(session, conversation_id)
        self._ensure_participant(row, viewer_id)
        return self._summarize(session, row, viewer_id)

    def list_conversations_for_profile(self, session: Session, profile_id: str) -> List[ConversationSummary]:
        """
        Conversations of a profile for its inbox.

        BLOCKED conversations and conversations with a blocked partner (in
        either direction) are left out. Pending (INITIATED) threads come
        first, then the most recently active.
        """
        partner_id = case(
            (ConversationDB.profile_a_id == profile_id, ConversationDB.profile_b_id),
            else_=ConversationDB.profile_a_id,
        )
        rows = session.scalars(
            select(ConversationDB)
            .join(
                ConversationParticipantDB,
                and_(
                    ConversationParticipantDB.conversation_id == ConversationDB.id,
                    ConversationParticipantDB.profile_id == profile_id,
                ),
            )
            .where(
                or_(ConversationDB.profile_a_id == profile_id, ConversationDB.profile_b_id == profile_id),
                ConversationDB.status != ConversationStatus.BLOCKED.value,
                exclusion_clause(profile_id, partner_id),
            )
            .order_by(ConversationDB.status.desc(), ConversationDB.updated_at.desc())
        ).all()
        return [self._summarize(session, row, profile_id) for row in rows]

    def list_messages(
        self,
        session: Session,
        conversation_id: str,
        viewer_id: str,
        limit: Optional[int] = None,
        before: Optional[datetime] = None,
    ) -> MessagePage:
        """
        A page of messages in chronological order.

        Fetches the ``limit`` newest messages older than ``before``;
        ``has_more`` tells whether older ones remain.
        """
        row = self._get_row(session, conversation_id)
        self._ensure_participant(row, viewer_id)
        limit = limit or self.settings.MESSAGE_PAGE_SIZE

        stmt = select(MessageDB).where(MessageDB.conversation_id == conversation_id)
        if before is not None:
            stmt = stmt.where(MessageDB.created_at < before)
        rows = list(
            session.scalars(stmt.order_by(MessageDB.created_at.desc(), MessageDB.id.desc()).limit(limit + 1))
        )

        has_more = len(rows) > limit
        page = rows[:limit]
        page.reverse()
        return MessagePage(messages=[Message.model_validate(m) for m in page], has_more=has_more)

    # Participant-local state

    def _update_participant(self, session: Session, conversation_id: str, profile_id: str, **values: object) -> Participant:
        result = session.execute(
            update(ConversationParticipantDB)
            .where(
                ConversationParticipantDB.conversation_id == conversation_id,
                ConversationParticipantDB.profile_id == profile_id,
            )
            .values(**values)
        )
        if not result.rowcount:
            raise NotFoundError(
                "Conversation participant not found",
                details={"conversation_id": conversation_id, "profile_id": profile_id},
            )
        participant = self._participant(session, conversation_id, profile_id)
        return Participant.model_validate(participant)

    def mark_conversation_read(self, session: Session, conversation_id: str, profile_id: str) -> Participant:
        """Move the profile's read marker to now. The counterpart's marker is untouched."""
        return self._update_participant(session, conversation_id, profile_id, last_read_at=utcnow())

    def set_muted(self, session: Session, conversation_id: str, profile_id: str, muted: bool) -> Participant:
        return self._update_participant(session, conversation_id, profile_id, is_muted=muted)

    def set_archived(self, session: Session, conversation_id: str, profile_id: str, archived: bool) -> Participant:
        return self._update_participant(session, conversation_id, profile_id, is_archived=archived)

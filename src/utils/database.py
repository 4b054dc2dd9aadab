"""Database models and unit of work for the matching core."""

import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar

import sentry_sdk
from sqlalchemy import (
    Boolean,
    Column,
    ColumnElement,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    or_,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from src.utils.errors import ConfigurationError, DatabaseError, TransientStorageError
from src.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def utcnow() -> datetime:
    """Get current UTC time (naive) to replace datetime.utcnow()."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    """Generate a new primary key."""
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""

    pass


profile_tags = Table(
    "profile_tags",
    Base.metadata,
    Column("profile_id", ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)

social_filter_tags = Table(
    "social_filter_tags",
    Base.metadata,
    Column("filter_profile_id", ForeignKey("social_match_filters.profile_id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class TagDB(Base):
    """Tag database model."""

    __tablename__ = "tags"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), unique=True)


class ProfilePreferredGenderDB(Base):
    """One accepted partner gender of a profile's dating preferences."""

    __tablename__ = "profile_pref_genders"

    profile_id: Mapped[str] = mapped_column(String(50), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True)
    gender: Mapped[str] = mapped_column(String(20), primary_key=True)


class ProfilePreferredKidsDB(Base):
    """One accepted children status of a profile's dating preferences."""

    __tablename__ = "profile_pref_kids"

    profile_id: Mapped[str] = mapped_column(String(50), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True)
    has_kids: Mapped[str] = mapped_column(String(20), primary_key=True)


class ProfileDB(Base):
    """Profile database model."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=new_id)
    public_name: Mapped[str] = mapped_column(String(100))
    is_social_active: Mapped[bool] = mapped_column(Boolean, default=False)
    is_dating_active: Mapped[bool] = mapped_column(Boolean, default=False)
    is_onboarded: Mapped[bool] = mapped_column(Boolean, default=True)
    is_callable: Mapped[bool] = mapped_column(Boolean, default=True)
    birthday: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    gender: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    has_kids: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    pref_age_min: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    pref_age_max: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True, index=True)
    lon: Mapped[Optional[float]] = mapped_column(Float, nullable=True, index=True)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    city_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    tags: Mapped[List[TagDB]] = relationship(secondary=profile_tags, lazy="selectin")
    preferred_genders: Mapped[List[ProfilePreferredGenderDB]] = relationship(
        lazy="selectin", cascade="all, delete-orphan"
    )
    preferred_kids: Mapped[List[ProfilePreferredKidsDB]] = relationship(lazy="selectin", cascade="all, delete-orphan")

    @hybrid_property
    def is_active(self) -> bool:
        """A profile is active while at least one of its scopes is."""
        return bool(self.is_social_active or self.is_dating_active)

    @is_active.inplace.expression
    @classmethod
    def _is_active_expression(cls) -> ColumnElement[bool]:
        return or_(cls.is_social_active, cls.is_dating_active)


class ProfileBlockDB(Base):
    """Directed block: ``blocker_id`` blocked ``blocked_id``."""

    __tablename__ = "profile_blocks"

    blocker_id: Mapped[str] = mapped_column(String(50), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True)
    blocked_id: Mapped[str] = mapped_column(String(50), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class SocialMatchFilterDB(Base):
    """Stored social discovery filter of a profile."""

    __tablename__ = "social_match_filters"

    profile_id: Mapped[str] = mapped_column(String(50), ForeignKey("profiles.id", ondelete="CASCADE"), primary_key=True)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    city_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    lon: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    radius: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    tags: Mapped[List[TagDB]] = relationship(secondary=social_filter_tags, lazy="selectin")


class InteractionEdgeDB(Base):
    """Directed like/pass edge between two profiles."""

    __tablename__ = "interaction_edges"
    __table_args__ = (UniqueConstraint("from_profile_id", "to_profile_id", name="uq_interaction_edge_pair"),)

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=new_id)
    from_profile_id: Mapped[str] = mapped_column(String(50), ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    to_profile_id: Mapped[str] = mapped_column(String(50), ForeignKey("profiles.id", ondelete="CASCADE"), index=True)
    kind: Mapped[str] = mapped_column(String(10))
    match_seen: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class ConversationDB(Base):
    """Conversation between a canonical (ordered) profile pair."""

    __tablename__ = "conversations"
    __table_args__ = (UniqueConstraint("profile_a_id", "profile_b_id", name="uq_conversation_pair"),)

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=new_id)
    profile_a_id: Mapped[str] = mapped_column(String(50), ForeignKey("profiles.id"), index=True)
    profile_b_id: Mapped[str] = mapped_column(String(50), ForeignKey("profiles.id"), index=True)
    status: Mapped[str] = mapped_column(String(20), default="INITIATED")
    initiator_profile_id: Mapped[str] = mapped_column(String(50), ForeignKey("profiles.id"))
    call_state: Mapped[str] = mapped_column(String(20), default="idle")
    call_room_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    call_caller_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    call_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    participants: Mapped[List["ConversationParticipantDB"]] = relationship(
        back_populates="conversation", lazy="selectin"
    )


class ConversationParticipantDB(Base):
    """Participant-local state of one profile in a conversation."""

    __tablename__ = "conversation_participants"
    __table_args__ = (UniqueConstraint("conversation_id", "profile_id", name="uq_participant_conversation_profile"),)

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=new_id)
    conversation_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("conversations.id", ondelete="CASCADE"), index=True
    )
    profile_id: Mapped[str] = mapped_column(String(50), ForeignKey("profiles.id"), index=True)
    last_read_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    is_muted: Mapped[bool] = mapped_column(Boolean, default=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    is_callable: Mapped[bool] = mapped_column(Boolean, default=True)

    conversation: Mapped[ConversationDB] = relationship(back_populates="participants")


class AttachmentDB(Base):
    """File attached to a message."""

    __tablename__ = "message_attachments"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=new_id)
    message_id: Mapped[str] = mapped_column(String(50), ForeignKey("messages.id", ondelete="CASCADE"), unique=True)
    file_path: Mapped[str] = mapped_column(String(500))
    mime_type: Mapped[str] = mapped_column(String(100))
    file_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    duration: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class MessageDB(Base):
    """Message database model."""

    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=new_id)
    conversation_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("conversations.id", ondelete="CASCADE"), index=True
    )
    sender_id: Mapped[str] = mapped_column(String(50), ForeignKey("profiles.id"))
    content: Mapped[str] = mapped_column(Text)
    message_type: Mapped[str] = mapped_column(String(50), default="text/plain")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    attachment: Mapped[Optional[AttachmentDB]] = relationship(lazy="selectin", uselist=False)


class PostDB(Base):
    """Post database model (only the fields geo discovery reads)."""

    __tablename__ = "posts"

    id: Mapped[str] = mapped_column(String(50), primary_key=True, default=new_id)
    posted_by_id: Mapped[str] = mapped_column(String(50), ForeignKey("profiles.id"), index=True)
    content: Mapped[str] = mapped_column(Text)
    lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    lon: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    is_visible: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    posted_by: Mapped[ProfileDB] = relationship(lazy="selectin")


def _redact_url(database_url: str) -> str:
    safe_url = database_url
    if "@" in safe_url:
        part1, part2 = safe_url.rsplit("@", 1)
        if ":" in part1:
            scheme_user, _ = part1.rsplit(":", 1)
            safe_url = f"{scheme_user}:***@{part2}"
    return safe_url


class Database:
    """
    Database connection manager and unit of work.

    One instance is built at process start and handed to every service.
    ``transaction()`` opens a session inside a single transaction that
    commits when the block exits normally and rolls back on any exception.
    """

    def __init__(self, database_url: str, echo: bool = False, max_retries: int = 3) -> None:
        if not database_url:
            raise DatabaseError("DATABASE_URL is not configured")

        # SQLAlchemy requires postgresql:// instead of postgres://
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)

        engine_kwargs: Dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_recycle"] = 300

        try:
            self.engine = create_engine(database_url, **engine_kwargs)
        except Exception as e:
            safe_url = _redact_url(database_url)
            logger.error("Failed to create database engine", error=str(e), url=safe_url)
            raise DatabaseError("Failed to connect to database", details={"error": str(e), "url": safe_url}) from e

        self.max_retries = max(1, max_retries)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.info("Database engine created", dialect=self.engine.dialect.name)

    def create_tables(self) -> None:
        """Create all database tables."""
        Base.metadata.create_all(self.engine)
        logger.info("Database tables created")

    def drop_tables(self) -> None:
        Base.metadata.drop_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Open a session bound to one atomic transaction.

        Driver level operational failures (serialization conflicts, lost
        connections) are re-raised as ``TransientStorageError``; every other
        exception propagates unchanged after the rollback.
        """
        session = self._session_factory()
        try:
            with session.begin():
                yield session
        except OperationalError as e:
            logger.warning("Transaction failed transiently", error=str(e))
            raise TransientStorageError("Database operation failed, please retry", details={"error": str(e)}) from e
        finally:
            session.close()

    def run_in_transaction(self, work: Callable[[Session], T], retry: bool = True) -> T:
        """
        Run ``work`` inside a transaction, retrying transient failures.

        Only pass ``retry=True`` for work that is safe to replay (upserts,
        guarded transitions). The last failure is re-raised.
        """
        attempts = self.max_retries if retry else 1
        for attempt in range(1, attempts + 1):
            try:
                with self.transaction() as session:
                    return work(session)
            except TransientStorageError as e:
                if attempt >= attempts:
                    raise
                sentry_sdk.add_breadcrumb(category="db", message="transaction retry", data={"attempt": attempt})
                logger.warning("Retrying transaction", attempt=attempt, error=e.details.get("error"))
        raise TransientStorageError("Transaction retries exhausted")  # pragma: no cover


def dialect_insert(session: Session, model: Any) -> Any:
    """
    Build a dialect-native INSERT supporting ``ON CONFLICT`` for ``model``.

    Raises:
        ConfigurationError: If the bound database has no upsert support here.
    """
    dialect_name = session.get_bind().dialect.name
    if dialect_name == "postgresql":
        return postgresql.insert(model)
    if dialect_name == "sqlite":
        return sqlite.insert(model)
    raise ConfigurationError(f"Upserts are not supported on dialect: {dialect_name}")

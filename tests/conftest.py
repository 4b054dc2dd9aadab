"""pytest configuration and fixtures."""

import os
from typing import Any, Callable, Iterator

# Settings are read at import time of src.config
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from src.config import Settings  # noqa: E402
from src.models.profile import DatingPreferences, Gender, Profile  # noqa: E402
from src.services import CoreServices, build_services  # noqa: E402
from src.utils.database import Database  # noqa: E402
from tests.helpers import years_ago  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    """Settings for an isolated in-memory database."""
    return Settings(DATABASE_URL="sqlite://", ENVIRONMENT="test", WELCOME_MESSAGE_SENDER_PROFILE_ID=None)


@pytest.fixture
def database() -> Iterator[Database]:
    """A fresh in-memory SQLite database with all tables."""
    db = Database("sqlite://")
    db.create_tables()
    yield db
    db.drop_tables()
    db.dispose()


@pytest.fixture
def services(database: Database, settings: Settings) -> CoreServices:
    return build_services(database, settings)


@pytest.fixture
def session(database: Database) -> Iterator[Session]:
    """One open transaction for the whole test, committed at teardown."""
    with database.transaction() as s:
        yield s


@pytest.fixture
def make_profile(services: CoreServices, session: Session) -> Callable[..., Profile]:
    """Create a social-active profile; keyword arguments go to ``create_profile``."""

    def _make(profile_id: str, name: str | None = None, **kwargs: Any) -> Profile:
        return services.profiles.create_profile(session, name or profile_id.title(), profile_id=profile_id, **kwargs)

    return _make


@pytest.fixture
def make_dater(make_profile: Callable[..., Profile]) -> Callable[..., Profile]:
    """Create a dating-active profile with explicit preferences."""

    def _make(
        profile_id: str,
        age: int,
        gender: Gender,
        wants: list[Gender],
        age_min: int = 18,
        age_max: int = 99,
        **kwargs: Any,
    ) -> Profile:
        return make_profile(
            profile_id,
            birthday=years_ago(age),
            gender=gender,
            is_dating_active=True,
            preferences=DatingPreferences(age_min=age_min, age_max=age_max, genders=wants),
            **kwargs,
        )

    return _make


@pytest.fixture
def file_services(tmp_path, settings: Settings) -> Iterator[CoreServices]:
    """Services on a file-backed SQLite database so each thread gets its own connection."""
    db = Database(f"sqlite:///{tmp_path / 'core.db'}")
    db.create_tables()
    file_backed = build_services(db, settings)
    with db.transaction() as s:
        for profile_id in ("alice", "bob"):
            file_backed.profiles.create_profile(s, profile_id.title(), profile_id=profile_id)
    yield file_backed
    db.dispose()

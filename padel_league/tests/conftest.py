"""
Shared pytest configuration for league tests.

Every test gets its own database: a fresh SQLite file through aiosqlite by
default, or TEST_DATABASE_URL when set (e.g. a PostgreSQL test database).
NullPool means every session opens its own connection, so concurrent
sessions in a test really are separate transactions.
"""

import os

os.environ.setdefault("ENV", "test")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import itertools  # noqa: E402
from datetime import timedelta  # noqa: E402
from typing import List, Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from padel_league.database import db  # noqa: E402
from padel_league.database.db import Base  # noqa: E402
from padel_league.database.models import (  # noqa: E402
    Club,
    Match,
    MatchMode,
    MatchResult,
    MatchStatus,
    SquadSize,
    Team,
    TeamStatus,
    User,
    UserRole,
)
from padel_league.utils.constants import CONFIRMATION_WINDOW_HOURS, MATCH_DEADLINE_DAYS  # noqa: E402
from padel_league.utils.datetime_utils import utcnow, week_cycle  # noqa: E402


def _test_database_url(tmp_path) -> str:
    return os.getenv("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'league_test.db'}"


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a test database engine and point db.AsyncSessionLocal at it."""
    url = _test_database_url(tmp_path)
    connect_args = {"timeout": 30} if url.startswith("sqlite") else {}
    engine = create_async_engine(url, echo=False, poolclass=NullPool, connect_args=connect_args)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    test_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = test_session_maker

    yield engine

    db.AsyncSessionLocal = original_async_session_local
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    """A session on the test database. Services under test commit through it."""
    async with db.AsyncSessionLocal() as session:
        yield session


class RecordingSink:
    """NotificationSink that records every event, optionally reporting failure."""

    def __init__(self, connected: bool = True, raises: bool = False):
        self.connected = connected
        self.raises = raises
        self.events: List[tuple] = []

    async def publish(self, user_id: int, event: dict) -> bool:
        if self.raises:
            raise RuntimeError("sink unavailable")
        self.events.append((user_id, event))
        return self.connected

    def types_for(self, user_id: int) -> List[str]:
        return [event["notification"]["type"] for uid, event in self.events if uid == user_id]


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_sink():
    return RecordingSink


class LeagueFactory:
    """Builds clubs, captains, teams and matches; every call commits."""

    _counter = itertools.count(1)

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _save(self, obj):
        self.session.add(obj)
        await self.session.commit()
        await self.session.refresh(obj)
        return obj

    async def club(self, name: Optional[str] = None) -> Club:
        return await self._save(Club(name=name or f"Club {next(self._counter)}"))

    async def user(self, club: Optional[Club] = None, role: UserRole = UserRole.CAPTAIN, name: Optional[str] = None) -> User:
        n = next(self._counter)
        return await self._save(
            User(
                full_name=name or f"Player {n}",
                email=f"player{n}@example.com",
                role=role,
                club_id=club.id if club else None,
            )
        )

    async def team(
        self,
        club: Club,
        name: Optional[str] = None,
        status: TeamStatus = TeamStatus.AVAILABLE,
        experience_level: Optional[str] = "INTERMEDIATE",
        points: int = 0,
        with_partner: bool = True,
        squad_size: SquadSize = SquadSize.DOUBLES,
        **values,
    ) -> Team:
        captain = await self.user(club)
        partner = await self.user(club, role=UserRole.PLAYER) if with_partner else None
        if status == TeamStatus.COOLDOWN and "cooldown_expires_at" not in values:
            values["cooldown_expires_at"] = utcnow() + timedelta(days=3)
        return await self._save(
            Team(
                club_id=club.id,
                name=name or f"Team {next(self._counter)}",
                captain_id=captain.id,
                player_2_id=partner.id if partner else None,
                experience_level=experience_level,
                squad_size=squad_size,
                status=status,
                points=points,
                **values,
            )
        )

    async def match(
        self,
        team_a: Team,
        team_b: Team,
        status: MatchStatus = MatchStatus.PROPOSED,
        mode: MatchMode = MatchMode.COMPETITIVE,
        result: Optional[MatchResult] = None,
        submitted_by: Optional[int] = None,
        confirmation_deadline=None,
        completed_at=None,
    ) -> Match:
        """A match with both teams put IN_MATCH (or left alone once COMPLETED)."""
        now = utcnow()
        if status == MatchStatus.AWAITING_CONFIRMATION:
            result = result or MatchResult.WIN
            submitted_by = submitted_by or team_a.captain_id
            confirmation_deadline = confirmation_deadline or now + timedelta(hours=CONFIRMATION_WINDOW_HOURS)
        if status != MatchStatus.COMPLETED:
            for team in (team_a, team_b):
                team.status = TeamStatus.IN_MATCH
                team.cooldown_expires_at = None
                self.session.add(team)
        return await self._save(
            Match(
                club_id=team_a.club_id,
                team_a_id=team_a.id,
                team_b_id=team_b.id,
                status=status,
                mode=mode,
                result=result,
                submitted_by=submitted_by,
                confirmation_deadline=confirmation_deadline,
                week_cycle=week_cycle(now),
                match_deadline=now + timedelta(days=MATCH_DEADLINE_DAYS),
                completed_at=completed_at,
            )
        )


@pytest_asyncio.fixture
async def league(db_session):
    return LeagueFactory(db_session)

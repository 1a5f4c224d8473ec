"""
SQLAlchemy ORM models for the padel league matchmaking system.
"""

from typing import Optional
import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from padel_league.database.db import Base


class UserRole(str, enum.Enum):
    """User role enum."""

    ADMIN = "ADMIN"
    CAPTAIN = "CAPTAIN"
    PLAYER = "PLAYER"


class TeamStatus(str, enum.Enum):
    """Matchmaking state of a team."""

    PENDING_PARTNER = "PENDING_PARTNER"
    AVAILABLE = "AVAILABLE"
    IN_MATCH = "IN_MATCH"
    COOLDOWN = "COOLDOWN"
    UNAVAILABLE = "UNAVAILABLE"
    INACTIVE = "INACTIVE"


class ExperienceLevel(str, enum.Enum):
    """Ordered experience bands. Declaration order is the band order."""

    BEGINNER = "BEGINNER"
    INTERMEDIATE = "INTERMEDIATE"
    ADVANCED = "ADVANCED"
    VERY_COMPETITIVE = "VERY_COMPETITIVE"

    @property
    def rank(self) -> int:
        return list(ExperienceLevel).index(self)

    @classmethod
    def parse(cls, value) -> Optional["ExperienceLevel"]:
        """
        Resolve a stored level to a band.

        Legacy free-text levels ("0-1 Months", ...) and anything else unknown
        resolve to None, which disables band restriction for that team.
        """
        if isinstance(value, cls):
            return value
        if not value or not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class MatchMode(str, enum.Enum):
    """Match mode enum."""

    COMPETITIVE = "COMPETITIVE"
    FRIENDLY = "FRIENDLY"


class SquadSize(str, enum.Enum):
    """Players per side."""

    SINGLES = "1v1"
    DOUBLES = "2v2"


class MatchStatus(str, enum.Enum):
    """Match lifecycle state."""

    PROPOSED = "PROPOSED"
    ACCEPTED = "ACCEPTED"
    SCHEDULED = "SCHEDULED"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    COMPLETED = "COMPLETED"
    DISPUTED = "DISPUTED"


class MatchResult(str, enum.Enum):
    """Outcome, always recorded from team A's perspective."""

    WIN = "WIN"
    LOSS = "LOSS"

    def inverted(self) -> "MatchResult":
        return MatchResult.LOSS if self is MatchResult.WIN else MatchResult.WIN


class DisputeStatus(str, enum.Enum):
    """Dispute status enum."""

    PENDING = "PENDING"
    UNDER_REVIEW = "UNDER_REVIEW"
    RESOLVED = "RESOLVED"
    REJECTED = "REJECTED"


class DisputeResolution(str, enum.Enum):
    """Admin decision on a dispute."""

    UPHOLD_ORIGINAL = "UPHOLD_ORIGINAL"
    REVERSE_RESULT = "REVERSE_RESULT"
    VOID_MATCH = "VOID_MATCH"
    OTHER = "OTHER"


class NotificationType(str, enum.Enum):
    """Notification type enum."""

    MATCH_CREATED = "MATCH_CREATED"
    MATCH_ASSIGNED = "MATCH_ASSIGNED"
    RESULT_SUBMITTED = "RESULT_SUBMITTED"
    RESULT_CONFIRMED = "RESULT_CONFIRMED"
    RESULT_AUTO_CONFIRMED = "RESULT_AUTO_CONFIRMED"
    COOLDOWN_EXPIRED = "COOLDOWN_EXPIRED"
    TEAM_INACTIVE = "TEAM_INACTIVE"
    UNAVAILABLE_REMINDER = "UNAVAILABLE_REMINDER"
    DISPUTE_CREATED = "DISPUTE_CREATED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"
    ADMIN_MESSAGE = "ADMIN_MESSAGE"


ACTIVE_DISPUTE_STATUSES = (DisputeStatus.PENDING, DisputeStatus.UNDER_REVIEW)

# Matches that still hold both teams IN_MATCH
OPEN_MATCH_STATUSES = (
    MatchStatus.PROPOSED,
    MatchStatus.ACCEPTED,
    MatchStatus.SCHEDULED,
    MatchStatus.AWAITING_CONFIRMATION,
)


class Club(Base):
    """Clubs. Teams only ever meet opponents from their own club."""

    __tablename__ = "clubs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    location = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    teams = relationship("Team", back_populates="club")


class User(Base):
    """User accounts. Authentication lives outside this service."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    phone_number = Column(String, nullable=True)
    role = Column(Enum(UserRole), default=UserRole.PLAYER, nullable=False)
    club_id = Column(Integer, ForeignKey("clubs.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (Index("idx_users_club", "club_id"),)


class Team(Base):
    """Teams and their mutable matchmaking state."""

    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    club_id = Column(Integer, ForeignKey("clubs.id"), nullable=False)
    name = Column(String, nullable=False)
    captain_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    player_2_id = Column(Integer, ForeignKey("users.id"), nullable=True)  # Null until partner joins

    # Stored as a plain string: legacy rows carry free-text levels
    experience_level = Column(String, nullable=True)
    mode = Column(Enum(MatchMode), default=MatchMode.COMPETITIVE, nullable=False)
    squad_size = Column(
        Enum(SquadSize, values_callable=lambda x: [e.value for e in x]),
        default=SquadSize.DOUBLES,
        nullable=False,
    )

    status = Column(Enum(TeamStatus), default=TeamStatus.PENDING_PARTNER, nullable=False)
    cooldown_expires_at = Column(DateTime(timezone=True), nullable=True)  # Set iff COOLDOWN
    unavailable_return_date = Column(DateTime(timezone=True), nullable=True)
    last_opponent_id = Column(Integer, ForeignKey("teams.id"), nullable=True)
    is_queued = Column(Boolean, default=False, nullable=False)

    points = Column(Integer, default=0, nullable=False)
    wins = Column(Integer, default=0, nullable=False)
    losses = Column(Integer, default=0, nullable=False)
    matches_played = Column(Integer, default=0, nullable=False)
    last_match_completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    club = relationship("Club", back_populates="teams")
    captain = relationship("User", foreign_keys=[captain_id])
    player_2 = relationship("User", foreign_keys=[player_2_id])

    __table_args__ = (
        UniqueConstraint("club_id", "name", name="uq_teams_club_name"),
        Index("idx_teams_club_status", "club_id", "status"),
        Index("idx_teams_status_cooldown", "status", "cooldown_expires_at"),
        Index("idx_teams_captain", "captain_id"),
    )

    @property
    def experience_band(self) -> Optional[ExperienceLevel]:
        return ExperienceLevel.parse(self.experience_level)

    @property
    def has_full_roster(self) -> bool:
        return self.player_2_id is not None or self.squad_size == SquadSize.SINGLES


class Match(Base):
    """Matches between two teams of the same club."""

    __tablename__ = "matches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    club_id = Column(Integer, ForeignKey("clubs.id"), nullable=False)
    team_a_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    team_b_id = Column(Integer, ForeignKey("teams.id"), nullable=False)

    status = Column(Enum(MatchStatus), default=MatchStatus.PROPOSED, nullable=False)
    mode = Column(Enum(MatchMode), default=MatchMode.COMPETITIVE, nullable=False)

    # Populated together on submission, from team A's perspective
    result = Column(Enum(MatchResult), nullable=True)
    score = Column(String, nullable=True)  # e.g. "6-4 6-4"
    submitted_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    confirmation_deadline = Column(DateTime(timezone=True), nullable=True)

    week_cycle = Column(Integer, nullable=False)
    match_deadline = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    auto_confirmed = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    team_a = relationship("Team", foreign_keys=[team_a_id])
    team_b = relationship("Team", foreign_keys=[team_b_id])
    dispute = relationship("Dispute", back_populates="match", uselist=False)

    __table_args__ = (
        CheckConstraint("team_a_id != team_b_id", name="ck_matches_distinct_teams"),
        Index("idx_matches_status_deadline", "status", "confirmation_deadline"),
        Index("idx_matches_team_a", "team_a_id", "status"),
        Index("idx_matches_team_b", "team_b_id", "status"),
    )


class Dispute(Base):
    """One dispute per match, raised by a captain against a submitted result."""

    __tablename__ = "disputes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    club_id = Column(Integer, ForeignKey("clubs.id"), nullable=False)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=False, unique=True)
    disputed_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    disputing_team_id = Column(Integer, ForeignKey("teams.id"), nullable=False)
    reason = Column(String(500), nullable=False)
    status = Column(Enum(DisputeStatus), default=DisputeStatus.PENDING, nullable=False)

    # Admin resolution
    resolution = Column(Enum(DisputeResolution), nullable=True)
    resolved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    admin_notes = Column(Text, nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    final_result = Column(Enum(MatchResult), nullable=True)  # Team A perspective
    final_score = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    match = relationship("Match", back_populates="dispute")

    __table_args__ = (Index("idx_disputes_status_created", "status", "created_at"),)


class Notification(Base):
    """
    User notifications.

    Rows double as the durable delivery queue: `delivered_at` stays NULL until
    the notification has been pushed to the live sink at least once.
    """

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    type = Column(String, nullable=False)  # NotificationType enum value
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    match_id = Column(Integer, ForeignKey("matches.id"), nullable=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=True)
    action_url = Column(String(500), nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_notifications_user_unread", "user_id", "is_read", "created_at"),
        Index("idx_notifications_undelivered", "delivered_at"),
    )

"""
db/models.py

SQLAlchemy 2.0 async ORM model definitions.
One current-location row and one reward-state row per user.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Double, Integer, Numeric, String
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from config import settings

# Async engine with connection pool settings
engine = create_async_engine(
    f"mysql+aiomysql://{settings.mysql_user}:{settings.mysql_password}"
    f"@{settings.mysql_host}:{settings.mysql_port}/{settings.mysql_db}",
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
)

AsyncSessionLocal = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class UserLocation(Base):
    """Latest published motion sample per user. Earlier samples are overwritten."""

    __tablename__ = "user_locations"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    profile_picture: Mapped[str | None] = mapped_column(String(512), nullable=True)
    latitude: Mapped[float | None] = mapped_column(
        Numeric(10, 7, asdecimal=False), nullable=True
    )
    longitude: Mapped[float | None] = mapped_column(
        Numeric(10, 7, asdecimal=False), nullable=True
    )
    speed_mph: Mapped[int | None] = mapped_column(Integer, nullable=True)
    battery_pct: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_driving: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    accuracy_m: Mapped[float | None] = mapped_column(Double, nullable=True)
    heading_deg: Mapped[float | None] = mapped_column(Double, nullable=True)
    altitude_m: Mapped[float | None] = mapped_column(Double, nullable=True)
    tier: Mapped[str | None] = mapped_column(String(10), nullable=True)
    observed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_updated: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class UserRewardState(Base):
    """Cumulative safety score and reward ledger per user."""

    __tablename__ = "user_reward_states"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    total_reward: Mapped[int] = mapped_column(Integer, default=0)
    weekly_reward: Mapped[int] = mapped_column(Integer, default=0)
    monthly_reward: Mapped[int] = mapped_column(Integer, default=0)
    safety_score: Mapped[float] = mapped_column(Double, default=100.0)
    speed_violation_count: Mapped[int] = mapped_column(Integer, default=0)
    average_speed_mph: Mapped[float] = mapped_column(Double, default=0.0)
    total_driving_minutes: Mapped[float] = mapped_column(Double, default=0.0)
    last_evaluated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

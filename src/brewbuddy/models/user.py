from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String, func
from sqlalchemy.orm import relationship

from . import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the form both SQLite and PostgreSQL round-trip."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    """SQLAlchemy model for registered testers."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    username = Column(String, nullable=False)
    token = Column(String, unique=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    coffees = relationship(
        "Coffee",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_users_username_lower", func.lower(username), unique=True),
    )

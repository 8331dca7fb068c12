from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import relationship

from . import Base
from .user import utcnow


class Coffee(Base):
    """One saved coffee, stored as the caller's serialized JSON."""

    __tablename__ = "coffees"

    id = Column(Integer, primary_key=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    data = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="coffees")

    __table_args__ = (
        Index("idx_coffees_user_id", "user_id"),
        Index("idx_coffees_user_created", "user_id", created_at.desc()),
    )

"""SQLAlchemy models for users and their coffee records."""

from sqlalchemy.orm import declarative_base

Base = declarative_base()

from .user import User  # noqa: E402
from .coffee import Coffee  # noqa: E402

__all__ = ["Base", "User", "Coffee"]

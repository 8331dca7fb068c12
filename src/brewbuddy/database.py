"""Storage for users and coffee lists on SQLite or PostgreSQL.

:class:`CoffeeStore` implements every query once on top of SQLAlchemy. The two
adapters only differ in how the engine is built; :func:`open_store` picks one
at startup and the rest of the application receives the instance.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import create_engine, event, func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .config import Settings
from .errors import CapacityError, StoreUnavailableError
from .models import Base, Coffee, User
from .models.user import utcnow

logger = logging.getLogger(__name__)


class CoffeeStore:
    """Query API shared by both backends."""

    backend = "sql"

    def __init__(self, engine: Engine):
        self.engine = engine
        self.Session = sessionmaker(
            bind=engine, class_=Session, expire_on_commit=False, future=True
        )

    def initialize(self) -> None:
        """Verify the connection and create missing tables and indexes."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            logger.error("%s connection failed: %s", self.backend, exc)
            raise StoreUnavailableError(
                f"{self.backend} database is unreachable"
            ) from exc
        logger.info("%s database initialized", self.backend)

    def close(self) -> None:
        self.engine.dispose()
        logger.info("%s connection closed", self.backend)

    # users

    def create_user(self, username: str, token: str) -> int:
        with self.Session() as session:
            user = User(username=username, token=token)
            session.add(user)
            session.commit()
            return user.id

    def create_user_capped(
        self, username: str, token: str, max_users: int
    ) -> Tuple[int, int]:
        """Insert a user unless ``max_users`` already exist.

        The count and the insert share one transaction holding the backend's
        write lock, so concurrent registrations cannot overshoot the cap.
        Returns the new id and the user count after the insert.
        """
        with self.Session.begin() as session:
            self._lock_users(session)
            count = session.execute(select(func.count(User.id))).scalar_one()
            if count >= max_users:
                raise CapacityError(
                    f"Tester limit reached ({max_users}/{max_users})",
                    spotsRemaining=0,
                )
            user = User(username=username, token=token)
            session.add(user)
            session.flush()
            return user.id, count + 1

    def _lock_users(self, session: Session) -> None:
        raise NotImplementedError

    def get_user_by_token(self, token: str) -> Optional[User]:
        with self.Session() as session:
            stmt = select(User).where(User.token == token)
            return session.execute(stmt).scalar_one_or_none()

    def username_exists(self, username: str) -> bool:
        with self.Session() as session:
            stmt = select(User.id).where(
                func.lower(User.username) == username.lower()
            )
            return session.execute(stmt).first() is not None

    def get_user_count(self) -> int:
        with self.Session() as session:
            return session.execute(select(func.count(User.id))).scalar_one()

    # coffees

    def get_user_coffees(self, user_id: int) -> List[Coffee]:
        """Return a user's coffees, newest save first.

        Rows written by the same save share a timestamp and keep their
        insertion order.
        """
        with self.Session() as session:
            stmt = (
                select(Coffee)
                .where(Coffee.user_id == user_id)
                .order_by(Coffee.created_at.desc(), Coffee.id.asc())
            )
            return list(session.execute(stmt).scalars())

    def save_coffee(
        self, user_id: int, data: str, created_at: Optional[datetime] = None
    ) -> int:
        with self.Session() as session:
            coffee = Coffee(user_id=user_id, data=data, created_at=created_at or utcnow())
            session.add(coffee)
            session.commit()
            return coffee.id

    def delete_user_coffees(self, user_id: int) -> int:
        with self.Session() as session:
            deleted = (
                session.query(Coffee)
                .filter(Coffee.user_id == user_id)
                .delete(synchronize_session=False)
            )
            session.commit()
            return deleted or 0

    def replace_user_coffees(self, user_id: int, payloads: Iterable[str]) -> int:
        """Atomically swap a user's coffee list for ``payloads``."""
        saved_at = utcnow()
        with self.Session.begin() as session:
            session.query(Coffee).filter(Coffee.user_id == user_id).delete(
                synchronize_session=False
            )
            rows = [
                Coffee(user_id=user_id, data=data, created_at=saved_at)
                for data in payloads
            ]
            session.add_all(rows)
        return len(rows)


class SQLiteStore(CoffeeStore):
    """Single-file store used for development and tests."""

    backend = "sqlite"

    def __init__(self, path: str):
        self.path = path
        engine = create_engine(
            f"sqlite:///{path}",
            future=True,
            connect_args={"check_same_thread": False},
        )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        super().__init__(engine)

    def _lock_users(self, session: Session) -> None:
        # take the database write lock before reading the user count
        session.execute(text("BEGIN IMMEDIATE"))


class PostgresStore(CoffeeStore):
    """Pooled PostgreSQL store used in production."""

    backend = "postgresql"

    def __init__(self, database_url: str, sslmode: Optional[str] = "require"):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresStore")
        connect_args = {"sslmode": sslmode} if sslmode else {}
        engine = create_engine(
            normalize_postgres_url(database_url),
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
            connect_args=connect_args,
        )
        super().__init__(engine)

    def _lock_users(self, session: Session) -> None:
        session.execute(text("LOCK TABLE users IN SHARE ROW EXCLUSIVE MODE"))


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ignores ON DELETE CASCADE unless enabled per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def normalize_postgres_url(url: str) -> str:
    """Pin the psycopg2 driver, accepting the ``postgres://`` scheme too.

    URLs that already name a driver (``postgresql+psycopg://``) are kept.
    """
    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            return "postgresql+psycopg2://" + url[len(scheme):]
    return url


def create_store(settings: Settings) -> CoffeeStore:
    """Build the store for the configured deployment without connecting."""
    if settings.is_production and settings.database_url:
        logger.info("using PostgreSQL storage")
        return PostgresStore(settings.database_url, settings.database_sslmode)
    logger.info("using SQLite storage at %s", settings.database_path)
    return SQLiteStore(settings.database_path)


def open_store(settings: Settings) -> CoffeeStore:
    """Create and initialize the configured store.

    Raises :class:`StoreUnavailableError` when the database cannot be reached.
    """
    store = create_store(settings)
    try:
        store.initialize()
    except StoreUnavailableError:
        store.close()
        raise
    return store

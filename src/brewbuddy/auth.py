import secrets
from typing import Optional

from fastapi import Request

from .database import CoffeeStore
from .errors import UnauthorizedError
from .models import User


def get_store(request: Request) -> CoffeeStore:
    """Return the store opened by the application lifespan."""
    return request.app.state.store


def generate_token() -> str:
    return secrets.token_urlsafe(32)


def resolve_user(store: CoffeeStore, token: Optional[str]) -> User:
    """Return the user owning ``token`` or raise :class:`UnauthorizedError`."""
    if not token:
        raise UnauthorizedError("Unauthorized")
    user = store.get_user_by_token(token)
    if user is None:
        raise UnauthorizedError("Invalid token")
    return user

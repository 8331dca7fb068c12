"""Service layer for registration, token validation and coffee lists."""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from prometheus_client import Counter
from sqlalchemy.exc import IntegrityError

from .auth import generate_token, resolve_user
from .database import CoffeeStore
from .errors import (
    CapacityError,
    ConflictError,
    MissingTokenError,
    UnauthorizedError,
    ValidationError,
)


logger = logging.getLogger(__name__)

MIN_USERNAME_LENGTH = 2

REGISTRATION_COUNTER = Counter(
    "registrations_total", "Registration attempts by outcome", ["outcome"]
)
COFFEE_SAVE_COUNTER = Counter(
    "coffee_list_saves_total", "Total coffee list replacements"
)


def isoformat(value: datetime) -> str:
    return value.isoformat() + "Z"


def register_user(
    store: CoffeeStore, username: Optional[str], max_users: int
) -> Dict[str, Any]:
    """Register a new tester and issue their token.

    Returns the public user fields, the token and the number of registration
    slots left after this one.
    """
    name = (username or "").strip()
    if len(name) < MIN_USERNAME_LENGTH:
        REGISTRATION_COUNTER.labels(outcome="invalid").inc()
        raise ValidationError(
            f"Username must be at least {MIN_USERNAME_LENGTH} characters"
        )

    if store.get_user_count() >= max_users:
        REGISTRATION_COUNTER.labels(outcome="full").inc()
        logger.info("registration rejected, limit of %s users reached", max_users)
        raise CapacityError(
            f"Tester limit reached ({max_users}/{max_users})", spotsRemaining=0
        )

    if store.username_exists(name):
        REGISTRATION_COUNTER.labels(outcome="conflict").inc()
        raise ConflictError("Username already taken")

    token = generate_token()
    try:
        user_id, count = store.create_user_capped(name, token, max_users)
    except CapacityError:
        # filled up by concurrent registrations since the check above
        REGISTRATION_COUNTER.labels(outcome="full").inc()
        raise
    except IntegrityError as exc:
        # lost a race against a concurrent registration of the same name
        REGISTRATION_COUNTER.labels(outcome="conflict").inc()
        raise ConflictError("Username already taken") from exc

    REGISTRATION_COUNTER.labels(outcome="registered").inc()
    logger.info("registered user id=%s", user_id)
    return {
        "user": {"id": user_id, "username": name, "token": token},
        "spots_remaining": max(max_users - count, 0),
    }


def validate_token(store: CoffeeStore, token: Optional[str]) -> Dict[str, Any]:
    if not token:
        raise MissingTokenError("Token required")
    user = store.get_user_by_token(token)
    if user is None:
        raise UnauthorizedError("Invalid token", valid=False)
    return {
        "id": user.id,
        "username": user.username,
        "created_at": isoformat(user.created_at),
    }


def list_coffees(store: CoffeeStore, token: Optional[str]) -> List[Dict[str, Any]]:
    """Return the caller's coffees merged with their id and save time."""
    user = resolve_user(store, token)
    coffees = []
    for row in store.get_user_coffees(user.id):
        coffees.append(
            {"id": row.id, **json.loads(row.data), "savedAt": isoformat(row.created_at)}
        )
    return coffees


def replace_coffees(
    store: CoffeeStore,
    token: Optional[str],
    coffees: Optional[List[Dict[str, Any]]],
) -> int:
    """Replace the caller's whole coffee list, returning how many were saved."""
    user = resolve_user(store, token)
    payloads = [json.dumps(coffee) for coffee in coffees or []]
    saved = store.replace_user_coffees(user.id, payloads)
    COFFEE_SAVE_COUNTER.inc()
    logger.info("saved %s coffees for user id=%s", saved, user.id)
    return saved

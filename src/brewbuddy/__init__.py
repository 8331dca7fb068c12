"""BrewBuddy backend: tester accounts, coffee lists and label analysis."""

from .api import app, create_app

__all__ = ["app", "create_app"]

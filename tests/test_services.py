import threading

import pytest

from brewbuddy import services
from brewbuddy.errors import (
    CapacityError,
    ConflictError,
    MissingTokenError,
    UnauthorizedError,
    ValidationError,
)


def test_register_user_trims_and_counts_down(store):
    first = services.register_user(store, "  alice  ", max_users=3)
    assert first["user"]["username"] == "alice"
    assert first["spots_remaining"] == 2

    second = services.register_user(store, "bob", max_users=3)
    assert second["spots_remaining"] == 1
    assert first["user"]["token"] != second["user"]["token"]


@pytest.mark.parametrize("username", [None, "", " ", "a", "  b  "])
def test_register_user_rejects_short_names(store, username):
    with pytest.raises(ValidationError):
        services.register_user(store, username, max_users=3)
    assert store.get_user_count() == 0


def test_register_user_respects_cap(store):
    services.register_user(store, "alice", max_users=1)
    with pytest.raises(CapacityError) as excinfo:
        services.register_user(store, "bob", max_users=1)
    assert excinfo.value.extra == {"spotsRemaining": 0}
    assert excinfo.value.to_payload()["success"] is False


def test_concurrent_registrations_cannot_exceed_cap(store, monkeypatch):
    barrier = threading.Barrier(8, timeout=5)

    def stale_count():
        # every caller passes the early check before any insert lands
        barrier.wait()
        return 0

    monkeypatch.setattr(store, "get_user_count", stale_count)
    outcomes = []

    def attempt(i):
        try:
            services.register_user(store, f"user{i}", max_users=1)
            outcomes.append("registered")
        except CapacityError:
            outcomes.append("full")

    threads = [threading.Thread(target=attempt, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    monkeypatch.undo()
    assert sorted(outcomes) == ["full"] * 7 + ["registered"]
    assert store.get_user_count() == 1


def test_register_user_conflict_ignores_case(store):
    services.register_user(store, "Coffee", max_users=3)
    with pytest.raises(ConflictError):
        services.register_user(store, "COFFEE", max_users=3)


def test_register_user_reports_insert_race_as_conflict(store, monkeypatch):
    services.register_user(store, "alice", max_users=3)
    # pretend the existence check ran before the other insert landed
    monkeypatch.setattr(store, "username_exists", lambda name: False)
    with pytest.raises(ConflictError):
        services.register_user(store, "Alice", max_users=3)


def test_validate_token(store):
    created = services.register_user(store, "alice", max_users=3)["user"]
    user = services.validate_token(store, created["token"])
    assert user["id"] == created["id"]
    assert user["username"] == "alice"
    assert user["created_at"].endswith("Z")

    with pytest.raises(MissingTokenError):
        services.validate_token(store, None)
    with pytest.raises(UnauthorizedError) as excinfo:
        services.validate_token(store, "unknown")
    assert excinfo.value.extra == {"valid": False}


def test_replace_and_list_coffees(store):
    token = services.register_user(store, "alice", max_users=3)["user"]["token"]

    assert services.replace_coffees(store, token, [{"name": "A"}, {"name": "B"}]) == 2
    coffees = services.list_coffees(store, token)
    assert [c["name"] for c in coffees] == ["A", "B"]
    assert all("id" in c and "savedAt" in c for c in coffees)

    assert services.replace_coffees(store, token, None) == 0
    assert services.list_coffees(store, token) == []


def test_listed_payload_keeps_its_own_id(store):
    token = services.register_user(store, "alice", max_users=3)["user"]["token"]
    services.replace_coffees(store, token, [{"id": 1712345, "name": "A"}])
    assert services.list_coffees(store, token)[0]["id"] == 1712345


def test_coffee_operations_require_known_token(store):
    with pytest.raises(UnauthorizedError, match="Unauthorized"):
        services.list_coffees(store, None)
    with pytest.raises(UnauthorizedError, match="Invalid token"):
        services.replace_coffees(store, "bogus", [])

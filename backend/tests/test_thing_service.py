"""
Tests for ThingService - ownership, visibility and paging rules.

Run: pytest tests/test_thing_service.py -v
"""

import pytest
from sqlalchemy.exc import OperationalError

from errors import Forbidden, InvalidRequest, NotFound
from services.retry import retry_read
from services.thing_service import MAX_PAGE, MAX_PAGE_SIZE, ThingService, can_manage
from utils.identity import IdentityContext


def _identity(subject, *roles):
    return IdentityContext(subject=subject, claims={"sub": subject}, roles=frozenset(roles))


U1 = _identity("U1")
U2 = _identity("U2")
ADMIN = _identity("root", "admin")


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def service(session):
    return ThingService(session)


class TestOwnership:
    def test_create_sets_owner(self, service):
        thing = service.create(U1, name="lamp")

        assert thing.owner_id == "U1"
        assert len(thing.id) == 36
        assert thing.created_at.tzinfo is not None

    def test_can_manage(self, service):
        thing = service.create(U1, name="lamp")

        assert can_manage(U1, thing)
        assert not can_manage(U2, thing)
        assert can_manage(ADMIN, thing)

    def test_get_by_other_subject(self, service):
        thing = service.create(U1, name="lamp")
        with pytest.raises(Forbidden):
            service.get(U2, thing.id)

    def test_get_missing(self, service):
        with pytest.raises(NotFound):
            service.get(U1, "missing")


class TestUpdate:
    def test_partial_update_leaves_other_fields(self, service):
        thing = service.create(U1, name="lamp", description="brass", image_key="a.png")

        updated = service.update(U1, thing.id, {"description": None})

        assert updated.name == "lamp"
        assert updated.description is None
        assert updated.image_key == "a.png"
        assert updated.updated_at >= thing.created_at

    def test_unknown_field(self, service):
        thing = service.create(U1, name="lamp")
        with pytest.raises(InvalidRequest) as exc:
            service.update(U1, thing.id, {"owner_id": "U2"})
        assert exc.value.details == {"field": "owner_id"}

    def test_non_owner(self, service):
        thing = service.create(U2, name="lamp")
        with pytest.raises(Forbidden):
            service.update(U1, thing.id, {"name": "mine"})
        assert service.get(U2, thing.id).name == "lamp"

    def test_update_after_concurrent_delete(self, service, session_factory):
        thing = service.create(U1, name="lamp")
        other = session_factory()
        try:
            ThingService(other).delete(U1, thing.id)
        finally:
            other.close()

        with pytest.raises(NotFound):
            service.update(U1, thing.id, {"name": "gone"})


class TestDelete:
    def test_delete(self, service):
        thing = service.create(U1, name="lamp")
        service.delete(U1, thing.id)
        with pytest.raises(NotFound):
            service.get(U1, thing.id)

    def test_admin_delete(self, service):
        thing = service.create(U1, name="lamp")
        service.delete(ADMIN, thing.id)
        with pytest.raises(NotFound):
            service.get(ADMIN, thing.id)


class TestList:
    def test_visibility(self, service):
        for name in ("a", "b"):
            service.create(U1, name=name)
        service.create(U2, name="c")

        mine, total = service.list(U1)
        assert total == 2
        assert {t.owner_id for t in mine} == {"U1"}

        everything, total = service.list(ADMIN)
        assert total == 3
        assert len(everything) == 3

    def test_newest_first(self, service):
        first = service.create(U1, name="first")
        second = service.create(U1, name="second")

        items, _ = service.list(U1)
        assert [t.id for t in items] == [second.id, first.id]

    def test_page_window(self, service):
        for i in range(5):
            service.create(U1, name=f"t{i}")

        page, total = service.list(U1, page=3, limit=2)
        assert total == 5
        assert len(page) == 1

        beyond, total = service.list(U1, page=9, limit=2)
        assert beyond == []
        assert total == 5

    @pytest.mark.parametrize("page,limit,field", [
        (0, 10, "page"),
        (MAX_PAGE + 1, 10, "page"),
        (10 ** 20, 10, "page"),
        (1, 0, "limit"),
        (1, MAX_PAGE_SIZE + 1, "limit"),
    ])
    def test_invalid_window(self, service, page, limit, field):
        with pytest.raises(InvalidRequest) as exc:
            service.list(U1, page=page, limit=limit)
        assert exc.value.details["field"] == field


class _FakeSession:
    def __init__(self):
        self.rollbacks = 0

    def rollback(self):
        self.rollbacks += 1


def _flaky(failures, result="ok"):
    calls = {"n": 0}

    def fn():
        calls["n"] += 1
        if calls["n"] <= failures:
            raise OperationalError(
                "SELECT 1", {}, Exception("server closed the connection"), connection_invalidated=True
            )
        return result

    return fn, calls


class TestRetryRead:
    def test_recovers_from_transient_failure(self):
        session = _FakeSession()
        sleeps = []
        fn, calls = _flaky(2)

        assert retry_read(session, fn, what="thing", attempts=3, sleep=sleeps.append) == "ok"
        assert calls["n"] == 3
        assert session.rollbacks == 2
        assert sleeps == [0.1, 0.2]

    def test_gives_up_after_attempts(self):
        session = _FakeSession()
        fn, calls = _flaky(5)

        with pytest.raises(OperationalError):
            retry_read(session, fn, what="thing", attempts=3, sleep=lambda s: None)
        assert calls["n"] == 3

    def test_non_transient_errors_are_not_retried(self):
        session = _FakeSession()
        calls = []

        def fn():
            calls.append(1)
            raise ValueError("bug")

        with pytest.raises(ValueError):
            retry_read(session, fn, what="thing", sleep=lambda s: None)
        assert calls == [1]
        assert session.rollbacks == 0

    def test_statement_errors_are_not_retried(self):
        session = _FakeSession()
        calls = []

        def fn():
            calls.append(1)
            raise OperationalError("SELECT image_key FROM things", {}, Exception("no such column: things.image_key"))

        with pytest.raises(OperationalError):
            retry_read(session, fn, what="thing", sleep=lambda s: None)
        assert calls == [1]
        assert session.rollbacks == 0

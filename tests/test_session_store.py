from datetime import timedelta


def test_create_session(session_store, clock):
    session = session_store.create(
        7, "User@Test.com", 24, client_ip="10.0.0.1", user_agent="pytest"
    )

    assert len(session.id) >= 43
    assert session.user_id == 7
    assert session.email == "user@test.com"
    assert session.expires_at == clock() + timedelta(hours=24)
    assert session.client_ip == "10.0.0.1"
    assert session.user_agent == "pytest"


def test_session_ids_are_unique(session_store):
    ids = {session_store.create(1, "a@b.com", 1).id for _ in range(20)}

    assert len(ids) == 20


def test_get_by_id_returns_live_session(session_store, clock):
    session = session_store.create(1, "a@b.com", 24)
    clock.advance(hours=23, minutes=59)

    assert session_store.get_by_id(session.id) == session


def test_get_by_id_hides_and_deletes_expired_session(session_store, clock):
    session = session_store.create(1, "a@b.com", 24)
    clock.advance(hours=24)

    assert session_store.get_by_id(session.id) is None
    assert session_store.count() == 0


def test_get_by_id_unknown(session_store):
    assert session_store.get_by_id("missing") is None


def test_delete(session_store):
    session = session_store.create(1, "a@b.com", 24)

    assert session_store.delete(session.id) is True
    assert session_store.delete(session.id) is False
    assert session_store.get_by_id(session.id) is None


def test_delete_all_by_email(session_store):
    session_store.create(1, "a@b.com", 24)
    session_store.create(1, "A@B.com", 24)
    other = session_store.create(2, "c@d.com", 24)

    assert session_store.delete_all_by_email("a@b.com") == 2
    assert session_store.count() == 1
    assert session_store.get_by_id(other.id) is not None


def test_sweep_expired(session_store, clock):
    session_store.create(1, "a@b.com", 1)
    keep = session_store.create(2, "c@d.com", 48)

    removed = session_store.sweep_expired(clock() + timedelta(hours=2))

    assert removed == 1
    assert session_store.get_by_id(keep.id) is not None

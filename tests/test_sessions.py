"""Assistant dialogue sessions and login tokens expire and are purged"""
from datetime import datetime, timedelta

from fastapi.testclient import TestClient

from core.auth import AuthManager
from core.session import SessionManager
from core.storage import MemStorage


def test_expired_assistant_session_is_dropped():
    manager = SessionManager(timeout_seconds=60)
    session = manager.create_session("session_farm")
    assert manager.get_session("session_farm") is session

    session.last_activity = datetime.now() - timedelta(seconds=120)
    assert manager.get_session("session_farm") is None
    assert "session_farm" not in manager.sessions


def test_creating_a_session_purges_expired_ones():
    manager = SessionManager(timeout_seconds=60)
    old = manager.create_session("session_old")
    old.last_activity = datetime.now() - timedelta(seconds=120)

    manager.create_session("session_new")
    assert set(manager.sessions) == {"session_new"}


def test_history_is_bounded():
    manager = SessionManager(max_history=3)
    session = manager.create_session("session_chatty")
    for i in range(5):
        session.add_turn("user", f"turn {i}")
    assert [turn["content"] for turn in session.get_history()] == ["turn 2", "turn 3", "turn 4"]


def test_login_purges_expired_tokens():
    auth = AuthManager(MemStorage(), bcrypt_rounds=4)
    user = auth.register("ravi", "secret123", "Ravi", "farmer")
    stale = auth.create_session(user)
    auth.sessions[stale].expires_at = 0

    fresh = auth.create_session(user)
    assert stale not in auth.sessions
    assert auth.get_user_for_token(fresh).id == user.id


def test_shutdown_purges_expired_sessions(app):
    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
        stale = app.state.sessions.create_session("session_idle")
        stale.last_activity = datetime.now() - timedelta(days=1)

    assert "session_idle" not in app.state.sessions.sessions

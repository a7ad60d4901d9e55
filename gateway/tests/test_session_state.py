import pytest

from gateway.errors import InvalidParamError
from gateway.network.session_state import ConnectionState, InvalidTransition, SessionManager, StateTracker


def test_happy_path_transitions():
    tracker = StateTracker()

    assert tracker.transition(ConnectionState.CONNECTING) is ConnectionState.DISCONNECTED
    tracker.transition(ConnectionState.CONNECTED)
    tracker.transition(ConnectionState.IDENTIFYING)
    tracker.transition(ConnectionState.READY)
    tracker.transition(ConnectionState.RECONNECTING)
    tracker.transition(ConnectionState.CONNECTED)
    tracker.transition(ConnectionState.IDENTIFYING)
    tracker.transition(ConnectionState.CLOSING)
    tracker.transition(ConnectionState.DISCONNECTED)

    assert tracker.state is ConnectionState.DISCONNECTED


@pytest.mark.parametrize(
    "path",
    [
        [ConnectionState.READY],
        [ConnectionState.CONNECTING, ConnectionState.READY],
        [ConnectionState.CONNECTING, ConnectionState.CLOSING, ConnectionState.CONNECTING],
        [ConnectionState.CONNECTING, ConnectionState.ERROR, ConnectionState.CONNECTING],
        [ConnectionState.CONNECTING, ConnectionState.ERROR, ConnectionState.CLOSING],
    ],
)
def test_rejects_transitions_outside_table(path):
    tracker = StateTracker()
    *allowed, rejected = path
    for state in allowed:
        tracker.transition(state)

    with pytest.raises(InvalidTransition):
        tracker.transition(rejected)
    assert tracker.state is (allowed[-1] if allowed else ConnectionState.DISCONNECTED)


def test_session_set_and_clear():
    session = SessionManager()
    assert not session.resumable

    session.set("abc", "wss://resume.example.test")

    assert session.session_id == "abc"
    assert session.resume_url == "wss://resume.example.test"
    assert session.resumable

    session.clear()

    assert session.session_id is None
    assert session.resume_url is None
    assert not session.resumable


@pytest.mark.parametrize("session_id, resume_url", [("", "wss://x"), ("abc", ""), (None, "wss://x"), ("abc", 1)])
def test_session_set_is_atomic(session_id, resume_url):
    session = SessionManager()
    session.set("old", "wss://old")

    with pytest.raises(InvalidParamError):
        session.set(session_id, resume_url)

    assert session.session_id == "old"
    assert session.resume_url == "wss://old"


def test_session_fields_are_read_only():
    session = SessionManager()

    with pytest.raises(AttributeError):
        session.session_id = "abc"  # type: ignore[misc]

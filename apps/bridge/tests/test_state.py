import pytest

from state import (
    CONNECTED,
    DISCONNECTED,
    WAITING_FOR_CONNECTION,
    SessionReset,
    resolve_status,
)


class TestResolveStatus:
    @pytest.mark.parametrize("url,attached,expected", [
        (None, False, DISCONNECTED),
        (None, True, WAITING_FOR_CONNECTION),
        ("any-url", False, CONNECTED),
        ("any-url", True, CONNECTED),
    ])
    def test_table(self, url, attached, expected):
        assert resolve_status(url, attached) == expected


class TestSessionState:
    def test_initial_snapshot(self, state):
        snapshot = state.snapshot()
        assert snapshot.connection_url is None
        assert snapshot.ptt_pressed is False
        assert snapshot.last_heartbeat_at is None
        assert snapshot.presentation_attached is False
        assert snapshot.status == DISCONNECTED

    def test_connect_sets_url_and_heartbeat(self, state, clock):
        state.connect("http://x")
        snapshot = state.snapshot()
        assert snapshot.connection_url == "http://x"
        assert snapshot.last_heartbeat_at == clock.now
        assert snapshot.status == CONNECTED
        assert snapshot.connected is True

    def test_disconnect_resets(self, state):
        state.attach_presentation()
        state.connect("http://x")
        state.set_ptt(True)
        result = state.disconnect()
        assert result == SessionReset(was_connected=True, ptt_released=True)
        snapshot = state.snapshot()
        assert snapshot.connection_url is None
        assert snapshot.ptt_pressed is False
        assert snapshot.last_heartbeat_at is None
        assert snapshot.status == WAITING_FOR_CONNECTION

    def test_disconnect_when_idle(self, state):
        assert state.disconnect() == SessionReset(was_connected=False, ptt_released=False)

    def test_touch_heartbeat(self, state, clock):
        clock.advance(3)
        state.touch_heartbeat()
        assert state.snapshot().last_heartbeat_at == clock.now
        assert state.snapshot().status == DISCONNECTED


class TestPTT:
    def test_requires_presentation(self, state):
        assert state.set_ptt(True) is False
        assert state.ptt_pressed is False

    def test_press_is_idempotent(self, state):
        state.attach_presentation()
        assert state.set_ptt(True) is True
        assert state.set_ptt(True) is False
        assert state.ptt_pressed is True

    def test_release_without_press(self, state):
        state.attach_presentation()
        assert state.set_ptt(False) is False

    def test_release_after_press(self, state):
        state.attach_presentation()
        state.set_ptt(True)
        assert state.set_ptt(False) is True
        assert state.ptt_pressed is False


class TestExpiry:
    def test_not_connected_never_expires(self, state, clock):
        state.touch_heartbeat()
        clock.advance(100)
        assert state.expire_if_stale(30) is None

    def test_fresh_session_survives(self, state, clock):
        state.connect("http://x")
        clock.advance(30)
        assert state.expire_if_stale(30) is None
        assert state.connection_url == "http://x"

    def test_stale_session_expires(self, state, clock):
        state.connect("http://x")
        clock.advance(30.5)
        result = state.expire_if_stale(30)
        assert result == SessionReset(was_connected=True, ptt_released=False)
        assert state.connection_url is None

    def test_heartbeat_keeps_session_alive(self, state, clock):
        state.connect("http://x")
        clock.advance(25)
        state.touch_heartbeat()
        clock.advance(25)
        assert state.expire_if_stale(30) is None

    def test_reconnect_after_stale_starts_fresh(self, state, clock):
        state.connect("http://old")
        clock.advance(40)
        state.connect("http://new")
        assert state.expire_if_stale(30) is None
        assert state.connection_url == "http://new"


class TestPresentation:
    def test_attach_moves_to_waiting(self, state):
        state.attach_presentation()
        assert state.snapshot().status == WAITING_FOR_CONNECTION

    def test_detach_resets_session(self, state):
        state.attach_presentation()
        state.connect("http://x")
        state.set_ptt(True)
        result = state.detach_presentation()
        assert result == SessionReset(was_connected=True, ptt_released=True)
        snapshot = state.snapshot()
        assert snapshot.presentation_attached is False
        assert snapshot.connection_url is None
        assert snapshot.ptt_pressed is False
        assert snapshot.last_heartbeat_at is None
        assert snapshot.status == DISCONNECTED

import pytest

from conftest import RecordingSurface
from dispatcher import UnknownActionError


class TestEmit:
    def test_drops_without_surface(self, dispatcher):
        assert dispatcher.emit("ptt:press") is False

    def test_forwards_to_surface(self, dispatcher, surface):
        dispatcher.attach(surface)
        assert dispatcher.emit("frequency:change", "45.3") is True
        assert surface.events == [("frequency:change", "45.3")]


class TestSession:
    def test_end_session_releases_ptt_first(self, dispatcher, surface, state):
        dispatcher.attach(surface)
        state.connect("http://x")
        state.set_ptt(True)
        dispatcher.end_session("manual")
        assert surface.events == [
            ("ptt:release", None),
            ("session:disconnect", {"reason": "manual"}),
        ]
        assert state.connection_url is None

    def test_expire_session_tags_reason(self, dispatcher, surface, state, clock):
        dispatcher.attach(surface)
        state.connect("http://x")
        clock.advance(31)
        assert dispatcher.expire_session(30) is not None
        assert surface.events == [("session:disconnect", {"reason": "heartbeat_timeout"})]

    def test_expire_session_noop_when_fresh(self, dispatcher, surface, state):
        dispatcher.attach(surface)
        state.connect("http://x")
        assert dispatcher.expire_session(30) is None
        assert surface.events == []


class TestLifecycle:
    def test_attach_marks_presentation(self, dispatcher, surface, state):
        dispatcher.attach(surface)
        assert state.presentation_attached is True
        assert dispatcher.surface is surface

    def test_detach_resets_session(self, dispatcher, surface, state):
        dispatcher.attach(surface)
        state.connect("http://x")
        assert dispatcher.detach(surface) is True
        assert dispatcher.surface is None
        assert state.presentation_attached is False
        assert state.connection_url is None

    def test_detach_without_surface(self, dispatcher):
        assert dispatcher.detach() is False

    def test_replaced_surface_cannot_detach(self, dispatcher, surface, state):
        old = RecordingSurface()
        dispatcher.attach(old)
        dispatcher.attach(surface)
        assert dispatcher.detach(old) is False
        assert dispatcher.surface is surface
        assert state.presentation_attached is True


class TestActions:
    def test_ptt_from_surface_updates_state_without_echo(self, dispatcher, surface, state):
        dispatcher.attach(surface)
        dispatcher.handle_action("ptt:press")
        assert state.ptt_pressed is True
        dispatcher.handle_action("ptt:release")
        assert state.ptt_pressed is False
        assert surface.events == []

    @pytest.mark.parametrize("action,call", [
        ("window:minimize", "minimize"),
        ("window:maximize", "maximize"),
        ("window:close", "close"),
    ])
    def test_window_controls(self, dispatcher, surface, action, call):
        dispatcher.attach(surface)
        dispatcher.handle_action(action)
        assert surface.window_calls == [call]

    def test_window_control_without_surface(self, dispatcher):
        assert dispatcher.handle_action("window:close") is None

    def test_queries(self, dispatcher, state):
        dispatcher.http_port = 19800
        state.connect("http://x")
        assert dispatcher.handle_action("get-server-url") == "http://x"
        assert dispatcher.handle_action("get-http-port") == 19800

    def test_unknown_action(self, dispatcher):
        with pytest.raises(UnknownActionError):
            dispatcher.handle_action("self-destruct")

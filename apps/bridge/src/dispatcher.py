import logging
import threading
from typing import Any, Optional, Protocol

from state import SessionReset, SessionState

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Event names forwarded to the presentation surface
# ---------------------------------------------------------------------------

PTT_PRESS = "ptt:press"
PTT_RELEASE = "ptt:release"
SESSION_CONNECT = "session:connect"
SESSION_DISCONNECT = "session:disconnect"
FREQUENCY_CHANGE = "frequency:change"
FREQUENCIES_UPDATE = "frequencies:update"
ACTIVE_CHANNEL_CHANGE = "active-channel:change"
EAR_SIDE_CHANGE = "ear-side:change"
FREQUENCY_DISCONNECT = "frequency:disconnect"

# Actions the surface may send back into the core
WINDOW_ACTIONS = ("window:minimize", "window:maximize", "window:close")
GET_SERVER_URL = "get-server-url"
GET_HTTP_PORT = "get-http-port"

REASON_MANUAL = "manual"
REASON_HEARTBEAT_TIMEOUT = "heartbeat_timeout"


class PresentationSurface(Protocol):
    """What the core needs from a UI surface."""

    def send(self, event: str, payload: Any = None) -> None: ...

    def minimize(self) -> None: ...

    def maximize(self) -> None: ...

    def close(self) -> None: ...


class UnknownActionError(ValueError):
    pass


class EventDispatcher:
    """
    Forwards named events to the attached presentation surface, dropping
    them when none is attached, and takes the surface's own reports
    (attach/detach, hardware PTT, window controls, queries) back into the
    session state.
    """

    def __init__(self, state: SessionState):
        self.state = state
        self.http_port: Optional[int] = None
        self._surface: Optional[PresentationSurface] = None
        self._surface_lock = threading.Lock()

    @property
    def surface(self) -> Optional[PresentationSurface]:
        with self._surface_lock:
            return self._surface

    def emit(self, event: str, payload: Any = None) -> bool:
        surface = self.surface
        if surface is None:
            logger.debug("No presentation attached, dropping %s", event)
            return False
        surface.send(event, payload)
        return True

    # -- session paths shared by the router and the heartbeat monitor -------

    def end_session(self, reason: str) -> SessionReset:
        result = self.state.disconnect()
        self.announce_disconnect(result, reason)
        return result

    def expire_session(self, timeout: float) -> Optional[SessionReset]:
        result = self.state.expire_if_stale(timeout)
        if result is not None:
            self.announce_disconnect(result, REASON_HEARTBEAT_TIMEOUT)
        return result

    def announce_disconnect(self, result: SessionReset, reason: str) -> None:
        logger.info("Disconnect: %s", reason)
        if result.ptt_released:
            self.emit(PTT_RELEASE)
        self.emit(SESSION_DISCONNECT, {"reason": reason})

    # -- presentation lifecycle ---------------------------------------------

    def attach(self, surface: PresentationSurface) -> None:
        with self._surface_lock:
            previous, self._surface = self._surface, surface
        if previous is not None and previous is not surface:
            logger.warning("Presentation surface replaced by a newer one")
        self.state.attach_presentation()
        logger.info("Presentation attached")

    def detach(self, surface: Optional[PresentationSurface] = None) -> bool:
        """
        Detach `surface` (or whatever is attached when None) and reset the
        session. A surface that was already replaced detaches nothing.
        """
        with self._surface_lock:
            if self._surface is None:
                return False
            if surface is not None and surface is not self._surface:
                return False
            self._surface = None
        result = self.state.detach_presentation()
        logger.info(
            "Presentation detached (was_connected=%s, ptt_released=%s)",
            result.was_connected, result.ptt_released,
        )
        return True

    # -- reports coming from the surface ------------------------------------

    def handle_action(self, action: str) -> Any:
        """
        Run an action sent by the surface. Queries return their value,
        everything else returns None.
        """
        if action == PTT_PRESS:
            self.state.set_ptt(True)
        elif action == PTT_RELEASE:
            self.state.set_ptt(False)
        elif action in WINDOW_ACTIONS:
            self._window_action(action)
        elif action == GET_SERVER_URL:
            return self.state.connection_url
        elif action == GET_HTTP_PORT:
            return self.http_port
        else:
            raise UnknownActionError(action)
        return None

    def _window_action(self, action: str) -> None:
        surface = self.surface
        if surface is None:
            return
        if action == "window:minimize":
            surface.minimize()
        elif action == "window:maximize":
            surface.maximize()
        else:
            surface.close()

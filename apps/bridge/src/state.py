import threading
import time
from dataclasses import dataclass
from typing import Callable, NamedTuple, Optional

# ---------------------------------------------------------------------------
# Connection status
#
# CONNECTED:              a server URL has been handed to the web client
# WAITING_FOR_CONNECTION: a presentation surface exists, no server URL yet
# DISCONNECTED:           neither
# ---------------------------------------------------------------------------

CONNECTED = "CONNECTED"
WAITING_FOR_CONNECTION = "WAITING_FOR_CONNECTION"
DISCONNECTED = "DISCONNECTED"


def resolve_status(connection_url: Optional[str], presentation_attached: bool) -> str:
    if connection_url:
        return CONNECTED
    if presentation_attached:
        return WAITING_FOR_CONNECTION
    return DISCONNECTED


@dataclass(frozen=True)
class SessionSnapshot:
    connection_url: Optional[str]
    ptt_pressed: bool
    last_heartbeat_at: Optional[float]
    presentation_attached: bool

    @property
    def status(self) -> str:
        return resolve_status(self.connection_url, self.presentation_attached)

    @property
    def connected(self) -> bool:
        return self.connection_url is not None


class SessionReset(NamedTuple):
    """Outcome of clearing the session; tells the caller which events to emit."""
    was_connected: bool
    ptt_released: bool


# ---------------------------------------------------------------------------
# Shared session state
#
# Written by HTTP handlers, the heartbeat monitor and the presentation
# surface (which may run on its own thread). Every read and write goes
# through one lock so each operation below is atomic.
# ---------------------------------------------------------------------------

class SessionState:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._lock = threading.Lock()
        self._clock = clock
        self._connection_url: Optional[str] = None
        self._ptt_pressed = False
        self._last_heartbeat_at: Optional[float] = None
        self._presentation_attached = False

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                connection_url=self._connection_url,
                ptt_pressed=self._ptt_pressed,
                last_heartbeat_at=self._last_heartbeat_at,
                presentation_attached=self._presentation_attached,
            )

    @property
    def connection_url(self) -> Optional[str]:
        with self._lock:
            return self._connection_url

    @property
    def ptt_pressed(self) -> bool:
        with self._lock:
            return self._ptt_pressed

    @property
    def presentation_attached(self) -> bool:
        with self._lock:
            return self._presentation_attached

    # -- session ------------------------------------------------------------

    def connect(self, url: str) -> None:
        """Accepts any non-empty URL; the format is not checked."""
        with self._lock:
            self._connection_url = url
            self._last_heartbeat_at = self._clock()

    def disconnect(self) -> SessionReset:
        with self._lock:
            return self._reset()

    def touch_heartbeat(self) -> None:
        with self._lock:
            self._last_heartbeat_at = self._clock()

    def expire_if_stale(self, timeout: float) -> Optional[SessionReset]:
        """
        Clear the session if it is connected and the last heartbeat is older
        than `timeout`. The check and the reset happen under one lock hold,
        so a /connect or /heartbeat racing with the monitor either refreshes
        the session first (nothing expires) or starts a new one afterwards.

        Returns None when nothing expired.
        """
        with self._lock:
            if not self._connection_url or self._last_heartbeat_at is None:
                return None
            if self._clock() - self._last_heartbeat_at <= timeout:
                return None
            return self._reset()

    # -- push-to-talk -------------------------------------------------------

    def set_ptt(self, pressed: bool) -> bool:
        """
        Move PTT to `pressed`. Only transitions while a presentation surface
        is attached and the flag actually changes; returns whether it did.
        """
        with self._lock:
            if not self._presentation_attached or self._ptt_pressed == pressed:
                return False
            self._ptt_pressed = pressed
            return True

    # -- presentation -------------------------------------------------------

    def attach_presentation(self) -> None:
        with self._lock:
            self._presentation_attached = True

    def detach_presentation(self) -> SessionReset:
        with self._lock:
            self._presentation_attached = False
            return self._reset()

    def _reset(self) -> SessionReset:
        # caller holds the lock
        result = SessionReset(
            was_connected=self._connection_url is not None,
            ptt_released=self._ptt_pressed,
        )
        self._connection_url = None
        self._ptt_pressed = False
        self._last_heartbeat_at = None
        return result

import logging
from typing import Optional

from aiohttp import web

from config import Settings, write_port_descriptor
from dispatcher import (
    ACTIVE_CHANNEL_CHANGE,
    EAR_SIDE_CHANGE,
    FREQUENCIES_UPDATE,
    FREQUENCY_CHANGE,
    FREQUENCY_DISCONNECT,
    PTT_PRESS,
    PTT_RELEASE,
    REASON_MANUAL,
    SESSION_CONNECT,
    EventDispatcher,
)
from heartbeat import HeartbeatMonitor
from presentation import serve_presentation
from state import SessionState
from validation import (
    InvalidJSONError,
    frequency_to_string,
    is_loopback_origin,
    is_number,
    is_valid_ear_side,
    is_valid_frequencies,
    normalize_ear_side,
    parse_json_body,
)

logger = logging.getLogger(__name__)

STATE_KEY = web.AppKey("session_state", SessionState)
DISPATCHER_KEY = web.AppKey("event_dispatcher", EventDispatcher)
MONITOR_KEY = web.AppKey("heartbeat_monitor", HeartbeatMonitor)
SETTINGS_KEY = web.AppKey("settings", Settings)

LOOPBACK_ORIGIN = "http://127.0.0.1"
MAX_PORT = 65535

INVALID_FREQUENCIES_MESSAGE = (
    "Invalid frequency format. Expected: [{frequency: number, earSide: 0|1|2}]"
)
INVALID_EAR_SIDE_MESSAGE = "earSide must be 0 (left), 1 (right), or 2 (both)"


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


async def _read_json(request: web.Request) -> dict:
    return parse_json_body(await request.text())


# ---------------------------------------------------------------------------
# Middleware: CORS, preflight, error mapping
# ---------------------------------------------------------------------------

def cors_headers(origin: Optional[str]) -> dict:
    if is_loopback_origin(origin):
        allowed = origin
    else:
        allowed = LOOPBACK_ORIGIN
    return {
        "Access-Control-Allow-Origin": allowed,
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
    }


@web.middleware
async def bridge_middleware(request: web.Request, handler):
    if request.method == "OPTIONS":
        response = web.Response(status=200)
    else:
        try:
            response = await handler(request)
        except (web.HTTPNotFound, web.HTTPMethodNotAllowed):
            response = _error(404, "Not found")
        except InvalidJSONError as exc:
            logger.warning("Invalid JSON on %s %s: %s", request.method, request.path, exc)
            response = _error(400, "Invalid JSON")
        except Exception:
            logger.exception("Error handling %s %s", request.method, request.path)
            response = _error(400, "Invalid JSON")

    if not response.prepared:
        response.headers.update(cors_headers(request.headers.get("Origin")))
    return response


# ---------------------------------------------------------------------------
# PTT
# ---------------------------------------------------------------------------

async def handle_ptt_press(request):
    """
    POST /ptt/press
    Idempotent: only the first press while a surface is attached emits.
    """
    dispatcher = request.app[DISPATCHER_KEY]
    if dispatcher.state.set_ptt(True):
        logger.info("PTT press from game")
        dispatcher.emit(PTT_PRESS)
    else:
        logger.debug("PTT press ignored (already pressed or no presentation)")
    return web.json_response({"success": True})


async def handle_ptt_release(request):
    """POST /ptt/release"""
    dispatcher = request.app[DISPATCHER_KEY]
    if dispatcher.state.set_ptt(False):
        logger.info("PTT release from game")
        dispatcher.emit(PTT_RELEASE)
    else:
        logger.debug("PTT release ignored (not pressed or no presentation)")
    return web.json_response({"success": True})


# ---------------------------------------------------------------------------
# Status + session
# ---------------------------------------------------------------------------

async def handle_status(request):
    """
    GET /status

    Response JSON:
        {
            "running": true,
            "status": "CONNECTED" | "WAITING_FOR_CONNECTION" | "DISCONNECTED",
            "pttPressed": bool,
            "connected": bool,
            "serverURL": str | null
        }
    """
    snapshot = request.app[STATE_KEY].snapshot()
    return web.json_response({
        "running": True,
        "status": snapshot.status,
        "pttPressed": snapshot.ptt_pressed,
        "connected": snapshot.connected,
        "serverURL": snapshot.connection_url,
    })


async def handle_connect(request):
    """
    POST /connect  {"url": "..."}
    Any non-empty url is accepted as is.
    """
    data = await _read_json(request)
    url = data.get("url")
    if not url:
        return _error(400, "Missing url parameter")

    dispatcher = request.app[DISPATCHER_KEY]
    dispatcher.state.connect(url)
    logger.info("Connect to: %s", url)
    dispatcher.emit(SESSION_CONNECT, url)
    return web.json_response({"success": True, "url": url})


async def handle_disconnect(request):
    """POST /disconnect"""
    request.app[DISPATCHER_KEY].end_session(REASON_MANUAL)
    return web.json_response({"success": True})


async def handle_heartbeat(request):
    """POST /heartbeat"""
    request.app[STATE_KEY].touch_heartbeat()
    return web.json_response({"success": True})


# ---------------------------------------------------------------------------
# Frequencies
# ---------------------------------------------------------------------------

async def handle_frequency(request):
    """
    POST /frequency  {"frequency": 45.3}
    Legacy single-frequency endpoint; any value is accepted.
    """
    data = await _read_json(request)
    if "frequency" not in data:
        return _error(400, "Missing frequency parameter")

    frequency = frequency_to_string(data["frequency"])
    logger.info("Frequency change from game: %s", frequency)
    request.app[DISPATCHER_KEY].emit(FREQUENCY_CHANGE, frequency)
    return web.json_response({"success": True, "frequency": frequency})


async def handle_frequencies(request):
    """
    POST /frequencies  {"frequencies": [{"frequency": 45.3, "earSide": 0}, ...]}
    Replaces the whole list of monitored frequencies.
    """
    data = await _read_json(request)
    frequencies = data.get("frequencies")

    if not isinstance(frequencies, list):
        return _error(400, "frequencies must be an array")
    if not is_valid_frequencies(frequencies):
        return _error(400, INVALID_FREQUENCIES_MESSAGE)

    converted = [
        {
            "frequency": frequency_to_string(f["frequency"]),
            "earSide": normalize_ear_side(f["earSide"]),
        }
        for f in frequencies
    ]
    logger.info("Frequencies update from game: %d frequencies", len(converted))
    request.app[DISPATCHER_KEY].emit(FREQUENCIES_UPDATE, converted)
    return web.json_response({"success": True, "count": len(converted)})


async def handle_active_channel(request):
    """POST /active-channel  {"frequency": 45.3}"""
    data = await _read_json(request)
    if not is_number(data.get("frequency")):
        return _error(400, "frequency must be a number")

    frequency = frequency_to_string(data["frequency"])
    logger.info("Active channel change from game: %s", frequency)
    request.app[DISPATCHER_KEY].emit(ACTIVE_CHANNEL_CHANGE, frequency)
    return web.json_response({"success": True, "frequency": frequency})


async def handle_ear_side(request):
    """POST /ear-side  {"frequency": 45.3, "earSide": 0|1|2}"""
    data = await _read_json(request)
    if not is_number(data.get("frequency")) or not is_number(data.get("earSide")):
        return _error(400, "frequency and earSide must be numbers")
    if not is_valid_ear_side(data["earSide"]):
        return _error(400, INVALID_EAR_SIDE_MESSAGE)

    frequency = frequency_to_string(data["frequency"])
    ear_side = normalize_ear_side(data["earSide"])
    logger.info("Ear side change from game: %s earSide=%d", frequency, ear_side)
    request.app[DISPATCHER_KEY].emit(EAR_SIDE_CHANGE, {"frequency": frequency, "earSide": ear_side})
    return web.json_response({"success": True, "frequency": frequency, "earSide": ear_side})


async def handle_frequency_disconnect(request):
    """POST /frequency/disconnect  {"frequency": 45.3}"""
    data = await _read_json(request)
    if not is_number(data.get("frequency")):
        return _error(400, "frequency must be a number")

    frequency = frequency_to_string(data["frequency"])
    logger.info("Frequency disconnect from game: %s", frequency)
    request.app[DISPATCHER_KEY].emit(FREQUENCY_DISCONNECT, frequency)
    return web.json_response({"success": True, "frequency": frequency})


# ---------------------------------------------------------------------------
# Presentation surface
# ---------------------------------------------------------------------------

async def handle_ws(request):
    """GET /ws  WebSocket for the web client acting as presentation surface."""
    return await serve_presentation(
        request,
        request.app[DISPATCHER_KEY],
        request.app[SETTINGS_KEY].secret_code,
    )


# ---------------------------------------------------------------------------
# App factory + server runner
# ---------------------------------------------------------------------------

async def _heartbeat_ctx(app: web.Application):
    monitor = app[MONITOR_KEY]
    monitor.start()
    yield
    await monitor.stop()


def build_app(
    state: Optional[SessionState] = None,
    dispatcher: Optional[EventDispatcher] = None,
    settings: Optional[Settings] = None,
) -> web.Application:
    settings = settings or Settings()
    if dispatcher is None:
        dispatcher = EventDispatcher(state or SessionState())
    state = dispatcher.state

    app = web.Application(middlewares=[bridge_middleware])
    app[SETTINGS_KEY] = settings
    app[STATE_KEY] = state
    app[DISPATCHER_KEY] = dispatcher
    app[MONITOR_KEY] = HeartbeatMonitor(
        dispatcher,
        interval=settings.heartbeat_interval,
        timeout=settings.heartbeat_timeout,
    )
    app.cleanup_ctx.append(_heartbeat_ctx)

    app.router.add_post("/ptt/press", handle_ptt_press)
    app.router.add_post("/ptt/release", handle_ptt_release)
    app.router.add_get("/status", handle_status, allow_head=False)
    app.router.add_post("/connect", handle_connect)
    app.router.add_post("/disconnect", handle_disconnect)
    app.router.add_post("/heartbeat", handle_heartbeat)
    app.router.add_post("/frequency", handle_frequency)
    app.router.add_post("/frequencies", handle_frequencies)
    app.router.add_post("/active-channel", handle_active_channel)
    app.router.add_post("/ear-side", handle_ear_side)
    app.router.add_post("/frequency/disconnect", handle_frequency_disconnect)
    app.router.add_get("/ws", handle_ws, allow_head=False)
    return app


async def start_site(
    runner: web.AppRunner,
    host: str,
    port: int,
    max_attempts: int,
) -> int:
    """
    Bind `runner` on the first free port starting at `port`, probing upward.
    Returns the bound port.
    """
    last_error: Optional[OSError] = None
    last_port = min(port + max_attempts, MAX_PORT + 1)
    for candidate in range(port, last_port):
        site = web.TCPSite(runner, host, candidate)
        try:
            await site.start()
        except OSError as exc:
            logger.debug("Port %d unavailable: %s", candidate, exc)
            last_error = exc
            await site.stop()
            continue
        return candidate
    raise OSError(f"No free port in {port}-{last_port - 1}") from last_error


async def start_http_server(app: web.Application) -> web.AppRunner:
    """
    Set up `app`, bind it on loopback and publish the bound port to the
    dispatcher and to the port descriptor file. Returns the runner so the
    caller can clean it up.
    """
    settings = app[SETTINGS_KEY]
    runner = web.AppRunner(app)
    await runner.setup()
    try:
        port = await start_site(runner, settings.host, settings.port, settings.max_port_attempts)
    except OSError:
        await runner.cleanup()
        raise

    app[DISPATCHER_KEY].http_port = port
    logger.info("Local HTTP server listening on http://%s:%d", settings.host, port)
    if settings.config_file is not None:
        write_port_descriptor(settings.config_file, port)
    return runner

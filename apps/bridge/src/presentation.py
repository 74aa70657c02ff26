import asyncio
import logging
from typing import Any

from aiohttp import WSMsgType, web

from dispatcher import EventDispatcher, UnknownActionError
from validation import is_loopback_origin

logger = logging.getLogger(__name__)

HELLO = "hello"
REPLY = "reply"


class WebSocketPresentation:
    """
    Presentation surface backed by the web client's WebSocket.

    `send` may be called from any handler on the server loop; messages are
    queued and written in order by `pump`.
    """

    def __init__(self, ws: web.WebSocketResponse):
        self._ws = ws
        self._outbox: asyncio.Queue = asyncio.Queue()

    def send(self, event: str, payload: Any = None) -> None:
        self._outbox.put_nowait({"event": event, "payload": payload})

    def minimize(self) -> None:
        self.send("window:minimize")

    def maximize(self) -> None:
        self.send("window:maximize")

    def close(self) -> None:
        self.send("window:close")

    async def pump(self) -> None:
        while True:
            message = await self._outbox.get()
            if message is None:
                return
            if self._ws.closed:
                continue
            try:
                await self._ws.send_json(message)
            except ConnectionResetError:
                logger.debug("Presentation socket closed while sending %s", message["event"])

    def shutdown(self) -> None:
        self._outbox.put_nowait(None)


def handle_message(dispatcher: EventDispatcher, surface: WebSocketPresentation, data: Any) -> None:
    """Dispatch one inbound `{"action": ...}` message from the web client."""
    if not isinstance(data, dict) or not isinstance(data.get("action"), str):
        logger.warning("Ignoring malformed presentation message: %r", data)
        return
    action = data["action"]
    try:
        value = dispatcher.handle_action(action)
    except UnknownActionError:
        logger.warning("Ignoring unknown presentation action: %s", action)
        return
    if action.startswith("get-"):
        surface.send(REPLY, {"action": action, "value": value})


async def serve_presentation(
    request: web.Request,
    dispatcher: EventDispatcher,
    secret_code: str,
) -> web.StreamResponse:
    """
    GET /ws
    Attaches the connecting web client as the presentation surface for as
    long as the socket stays open. Browsers always send an Origin; only
    loopback pages may attach. Local non-browser clients send none.
    """
    origin = request.headers.get("Origin")
    if origin is not None and not is_loopback_origin(origin):
        logger.warning("Rejected presentation socket from origin %s", origin)
        return web.json_response({"error": "Forbidden origin"}, status=403)

    ws = web.WebSocketResponse()
    await ws.prepare(request)

    surface = WebSocketPresentation(ws)
    dispatcher.attach(surface)
    surface.send(HELLO, {
        "secret": secret_code,
        "serverURL": dispatcher.state.connection_url,
        "httpPort": dispatcher.http_port,
    })
    writer = asyncio.get_running_loop().create_task(surface.pump())

    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    data = msg.json()
                except ValueError:
                    logger.warning("Ignoring non-JSON presentation message")
                    continue
                handle_message(dispatcher, surface, data)
            elif msg.type == WSMsgType.ERROR:
                logger.warning("Presentation socket error: %s", ws.exception())
    finally:
        dispatcher.detach(surface)
        surface.shutdown()
        await writer

    return ws

"""HTTP server: POST /send/{channel} push, health, stats. WebSocket /{channel}: subscribe to a channel."""

from dotenv import load_dotenv
load_dotenv()

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, Iterable, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.websockets import WebSocketState

from relay.config import Settings
from relay.connection import ConnectionHandle
from relay.errors import InvalidChannel, validate_channel
from relay.observability import get_logger
from relay.protocol import (
    CHANNEL_REQUIRED_REASON,
    ERROR_CHANNEL_REQUIRED,
    ERROR_FORBIDDEN,
    ERROR_MISSING_MESSAGE,
    ERROR_NOT_CONFIGURED,
    ERROR_UNAUTHORIZED,
    WS_CLOSE_POLICY_VIOLATION,
    HealthResponse,
    SendResponse,
    error_body,
    stats_response,
)
from relay.registry import ChannelRegistry

logger = get_logger("relay.server")

PROTECTED_PREFIXES = ("/send/", "/stats")


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """Require Authorization: Bearer <BEARER_TOKEN> on the push and stats routes."""

    def __init__(self, app, protected: Iterable[str] = PROTECTED_PREFIXES) -> None:
        super().__init__(app)
        self._protected = tuple(protected)

    async def dispatch(self, request: Request, call_next):
        if request.scope.get("type") == "websocket" or not request.url.path.startswith(self._protected):
            return await call_next(request)
        expected = request.app.state.settings.bearer_token
        if not expected:
            return JSONResponse(status_code=503, content=error_body(ERROR_NOT_CONFIGURED))
        header = request.headers.get("authorization") or ""
        scheme, _, token = header.partition(" ")
        if scheme != "Bearer" or not token.strip():
            return JSONResponse(status_code=401, content=error_body(ERROR_UNAUTHORIZED))
        if token.strip() != expected:
            return JSONResponse(status_code=403, content=error_body(ERROR_FORBIDDEN))
        return await call_next(request)


def get_registry(request: Request) -> ChannelRegistry:
    return request.app.state.registry


router = APIRouter()


# ---- Push ----

class SendBody(BaseModel):
    message: Any = None


def _missing(message: Any) -> bool:
    """Falsy scalars (null, "", 0, false) count as missing; {} and [] are real payloads."""
    return not isinstance(message, (dict, list)) and not message


@router.post("/send/{channel:path}")
def send(
    channel: str,
    body: Optional[SendBody] = None,
    registry: ChannelRegistry = Depends(get_registry),
) -> JSONResponse:
    """POST /send/{channel} { message } → 200 { status, channel, delivered }, even with no subscribers."""
    if not channel:
        return JSONResponse(content=error_body(ERROR_CHANNEL_REQUIRED), status_code=400)
    if body is None or _missing(body.message):
        return JSONResponse(content=error_body(ERROR_MISSING_MESSAGE), status_code=400)
    delivered = registry.publish(channel, body.message)
    return JSONResponse(
        content=SendResponse(channel=channel, delivered=delivered).to_dict(),
        status_code=200,
    )


# ---- Health / stats ----

@router.get("/health")
def health(request: Request, registry: ChannelRegistry = Depends(get_registry)) -> JSONResponse:
    """GET /health → { uptime_sec, channels, subscribers }."""
    body = HealthResponse(
        uptime_sec=time.time() - request.app.state.started_at,
        channels=registry.channel_count(),
        subscribers=registry.subscriber_count(),
    ).to_dict()
    return JSONResponse(content=body, status_code=200)


@router.get("/stats")
def stats(registry: ChannelRegistry = Depends(get_registry)) -> JSONResponse:
    """GET /stats → { channels: [ { name, subscribers } ], metrics }."""
    body = stats_response(registry.list_channels(), registry.metrics.snapshot())
    return JSONResponse(content=body, status_code=200)


# ---- WebSocket ----

async def _read_until_disconnect(websocket: WebSocket) -> None:
    """Consume (and ignore) client frames until the client goes away."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/{channel:path}")
async def channel_socket(websocket: WebSocket, channel: str) -> None:
    """
    Subscribe this connection to the channel named by the URL path.
    An empty path is accepted then closed with 1008 and never subscribed.
    """
    try:
        validate_channel(channel)
    except InvalidChannel:
        logger.info("channel_required", extra={"client": str(websocket.client)})
        await websocket.accept()
        await websocket.close(code=WS_CLOSE_POLICY_VIOLATION, reason=CHANNEL_REQUIRED_REASON)
        return

    registry: ChannelRegistry = websocket.app.state.registry
    settings: Settings = websocket.app.state.settings
    handle = ConnectionHandle(
        websocket.send_json,
        queue_max_size=settings.queue_max_size,
        send_timeout_sec=settings.send_timeout_sec,
        metrics=registry.metrics,
    )
    # Subscribe before accepting so anything published after the handshake is queued.
    registry.subscribe(channel, handle)
    reader: Optional[asyncio.Task] = None
    try:
        await websocket.accept()
        drain = handle.start_drain()
        reader = asyncio.ensure_future(_read_until_disconnect(websocket))
        await asyncio.wait({drain, reader}, return_when=asyncio.FIRST_COMPLETED)
    except Exception:
        logger.exception("connection_error", extra={"channel": channel, "handle_id": handle.handle_id})
    finally:
        if reader is not None:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("reader_failed", extra={"handle_id": handle.handle_id, "error": str(e)})
        await handle.stop_drain()
        registry.unsubscribe(channel, handle)
        if (
            websocket.application_state == WebSocketState.CONNECTED
            and websocket.client_state == WebSocketState.CONNECTED
        ):
            # send side gave up (dead or too slow): tell the client
            try:
                await websocket.close(code=1011)
            except Exception as e:
                logger.warning("close_failed", extra={"handle_id": handle.handle_id, "error": str(e)})


# ---- App ----

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the relay app; the registry lives for the app's lifespan and is drained at shutdown."""
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.registry = ChannelRegistry()
        app.state.started_at = time.time()
        logger.info("relay_started", extra={"port": settings.port})
        yield
        app.state.registry.drain()

    app = FastAPI(title="Channel Relay", lifespan=lifespan)
    app.state.settings = settings
    app.add_middleware(BearerAuthMiddleware)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=app.state.settings.host, port=app.state.settings.port)

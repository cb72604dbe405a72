"""FastAPI WebSocket server for the Busfahrer card game."""

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from config import config
from errors import GameError, InternalInconsistencyError, ValidationError
from handlers import HANDLERS, ConnectionContext
from logging_config import log_context, setup_logging
from routers.health import router as health_router
from routers.health import set_health_dependencies
from routers.sessions import router as sessions_router
from routers.sessions import set_session_manager
from services.broadcast import close_broadcast_hub, get_broadcast_hub
from session import SessionManager

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)

session_manager = SessionManager(hub=get_broadcast_hub())


async def _close_all_sessions():
    """Tell every connected member the server is going away."""
    for session in list(session_manager.sessions.values()):
        session.scheduler.cancel_all()
        await session_manager.hub.close_session(session.code, "Server shutting down")
    session_manager.sessions.clear()
    logger.info("All sessions closed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    set_health_dependencies(session_manager=session_manager)
    set_session_manager(session_manager)

    logger.info(f"Busfahrer server started (environment={config.ENVIRONMENT})")

    yield

    logger.info("Shutdown initiated...")
    await _close_all_sessions()
    close_broadcast_hub()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Busfahrer",
    debug=config.DEBUG,
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(sessions_router)


async def _dispatch(data, ctx: ConnectionContext, handler_deps: dict) -> None:
    """Run one client message, replying with an error to the sender on refusal."""
    if not isinstance(data, dict):
        raise ValidationError("Messages must be JSON objects")
    handler = HANDLERS.get(data.get("type"))
    if handler is None:
        raise ValidationError(f"Unknown message type: {data.get('type')}")
    with log_context(session_code=ctx.session_code, player_id=ctx.member_id):
        await handler(data, ctx, **handler_deps)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()

    connection_id = str(uuid.uuid4())
    ctx = ConnectionContext(websocket=websocket, connection_id=connection_id)
    logger.debug(f"WebSocket connected as {connection_id}")

    # Shared dependencies passed to every handler
    handler_deps = dict(session_manager=session_manager)

    with log_context(connection_id=connection_id):
        try:
            while True:
                try:
                    data = await websocket.receive_json()
                except ValueError:
                    await websocket.send_json(ValidationError("Malformed JSON").to_dict())
                    continue
                try:
                    await _dispatch(data, ctx, handler_deps)
                except GameError as e:
                    logger.debug(f"Refused {data.get('type') if isinstance(data, dict) else data}: {e}")
                    await websocket.send_json(e.to_dict())
                except WebSocketDisconnect:
                    raise
                except Exception:
                    logger.error(f"Handler for {data.get('type')} failed", exc_info=True)
                    await websocket.send_json(InternalInconsistencyError("Internal server error").to_dict())
        except WebSocketDisconnect:
            # A newer connection of the same member stays untouched
            if ctx.session_code and session_manager.hub.detach(ctx.session_code, ctx.member_id, websocket):
                await session_manager.mark_disconnected(ctx.session_code, ctx.member_id)
            logger.debug(f"WebSocket {connection_id} disconnected")


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting Busfahrer server on {config.HOST}:{config.PORT}")
    logger.info(f"Debug mode: {config.DEBUG}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()

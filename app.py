from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager, suppress
import asyncio
import os
from routers.rooms import rooms_router, keys_router
from backend import redis_backend
from constants import RESET_ON_STARTUP
from events import RoomEventRelay
from exceptions import KeyMismatch, KeysExhausted, NotFound
from logging_config import get_logger, setup_logging

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)

# One relay per instance, each instance forwards events to its own WebSocket connections
room_relay = RoomEventRelay(redis_backend.redis_client, redis_backend.events_channel)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await redis_backend.ping()
    if RESET_ON_STARTUP:
        await redis_backend.init()
    await room_relay.start()
    yield
    await room_relay.stop()
    await redis_backend.close()


app = FastAPI(lifespan=lifespan)

# Configure CORS to allow all origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(rooms_router)
app.include_router(keys_router)


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(KeyMismatch)
async def key_mismatch_handler(request: Request, exc: KeyMismatch):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(KeysExhausted)
async def keys_exhausted_handler(request: Request, exc: KeysExhausted):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


logger.info("FastAPI application initialized")


async def forward_room_events(websocket: WebSocket, queue: asyncio.Queue):
    while True:
        event = await queue.get()
        await websocket.send_text(event.to_message())


@app.websocket("/rooms/{room_id}/ws")
async def websocket_endpoint(room_id: int, websocket: WebSocket, user: str = None):
    """Join ``room_id`` as ``user`` and receive the room's membership events until disconnect.

    Query parameters:
    - user: id of the user joining the room
    """
    logger.info(f"WebSocket connection attempt for room: {room_id}, user: {user}")
    if not user or not user.strip():
        await websocket.close(code=1008, reason="user is required")
        return

    await websocket.accept()
    queue: asyncio.Queue = asyncio.Queue()
    handler = queue.put_nowait
    # Register before joining so the connection sees its own join event
    room_relay.add_handler(room_id, handler)
    sender = None
    try:
        await redis_backend.join_room(user, room_id)
        sender = asyncio.create_task(forward_room_events(websocket, queue))
        while True:
            # Clients only listen, anything they send is ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for user {user} in room {room_id}")
    finally:
        room_relay.remove_handler(room_id, handler)
        if sender is not None:
            sender.cancel()
            with suppress(asyncio.CancelledError, Exception):
                await sender
        try:
            await redis_backend.leave_room(user, room_id)
        except NotFound as e:
            logger.debug(f"User {user} already gone from room {room_id}: {e}")

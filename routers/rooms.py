from fastapi import APIRouter, Request
from schemas.rooms import (
    CreateRoomResponse,
    JoinRoomResponse,
    KeyLookupResponse,
    LeaveRoomResponse,
    PublicRoomsResponse,
    PublicStatusResponse,
    RoomDataResponse,
    RoomDataVarRequest,
    RoomDataVarResponse,
    RoomKeyResponse,
    RoomUsersResponse,
    UserRequest,
)
from backend import redis_backend
from typing import Any, Dict
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])
keys_router = APIRouter(prefix="/keys", tags=["keys"])

# NotFound, KeyMismatch and KeysExhausted raised below are turned into
# 404, 409 and 503 responses by the handlers registered in app.py


@rooms_router.post("", status_code=201, response_model=CreateRoomResponse)
async def create_room(body: UserRequest, request: Request):
    logger.info(f"Room creation request from {request.client.host}, user: {body.user}")
    room_id = await redis_backend.create_room(body.user)
    return CreateRoomResponse(room_id=room_id)


@rooms_router.get("/public", response_model=PublicRoomsResponse)
async def list_public_rooms():
    return PublicRoomsResponse(rooms=await redis_backend.get_public_rooms())


@rooms_router.post("/{room_id}/join", response_model=JoinRoomResponse)
async def join_room(room_id: int, body: UserRequest):
    logger.info(f"Join room request for {room_id}, user: {body.user}")
    await redis_backend.join_room(body.user, room_id)
    return JoinRoomResponse(room_id=room_id, users=await redis_backend.get_users_in_room(room_id))


@rooms_router.post("/{room_id}/leave", response_model=LeaveRoomResponse)
async def leave_room(room_id: int, body: UserRequest):
    logger.info(f"Leave room request for {room_id}, user: {body.user}")
    user_count = await redis_backend.leave_room(body.user, room_id)
    return LeaveRoomResponse(room_id=room_id, user_count=user_count)


@rooms_router.get("/{room_id}/users", response_model=RoomUsersResponse)
async def get_room_users(room_id: int):
    users = await redis_backend.get_users_in_room(room_id)
    return RoomUsersResponse(room_id=room_id, users=users)


@rooms_router.post("/{room_id}/key", response_model=RoomKeyResponse)
async def get_room_key(room_id: int):
    logger.info(f"Key request for room {room_id}")
    key = await redis_backend.get_key(room_id)
    return RoomKeyResponse(room_id=room_id, key=key)


@rooms_router.delete("/{room_id}/key/{key}", status_code=204)
async def return_room_key(room_id: int, key: str):
    logger.info(f"Key return for room {room_id}, key: {key}")
    await redis_backend.return_key(room_id, key)


@rooms_router.get("/{room_id}/data", response_model=RoomDataResponse)
async def get_room_data(room_id: int):
    return RoomDataResponse(room_id=room_id, data=await redis_backend.get_room_data(room_id))


@rooms_router.put("/{room_id}/data", response_model=RoomDataResponse)
async def set_room_data(room_id: int, data: Dict[str, Any]):
    await redis_backend.set_room_data(room_id, data)
    return RoomDataResponse(room_id=room_id, data=await redis_backend.get_room_data(room_id))


@rooms_router.get("/{room_id}/data/{name}", response_model=RoomDataVarResponse)
async def get_room_data_var(room_id: int, name: str):
    value = await redis_backend.get_room_data_var(room_id, name)
    return RoomDataVarResponse(room_id=room_id, name=name, value=value)


@rooms_router.put("/{room_id}/data/{name}", response_model=RoomDataVarResponse)
async def set_room_data_var(room_id: int, name: str, body: RoomDataVarRequest):
    value = await redis_backend.set_room_data_var(room_id, name, body.value)
    return RoomDataVarResponse(room_id=room_id, name=name, value=value)


@rooms_router.delete("/{room_id}/data/{name}", response_model=RoomDataVarResponse)
async def delete_room_data_var(room_id: int, name: str):
    value = await redis_backend.del_room_data_var(room_id, name)
    return RoomDataVarResponse(room_id=room_id, name=name, value=value)


@rooms_router.put("/{room_id}/public", response_model=PublicStatusResponse)
async def make_room_public(room_id: int):
    await redis_backend.make_room_public(room_id)
    return PublicStatusResponse(room_id=room_id, public=True)


@rooms_router.delete("/{room_id}/public", response_model=PublicStatusResponse)
async def make_room_private(room_id: int):
    await redis_backend.make_room_private(room_id)
    return PublicStatusResponse(room_id=room_id, public=False)


@keys_router.get("/{key}", response_model=KeyLookupResponse)
async def resolve_key(key: str):
    room_id = await redis_backend.get_room_id_for_key(key)
    return KeyLookupResponse(key=key, room_id=room_id)

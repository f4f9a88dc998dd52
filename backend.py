import json
import redis.asyncio as redis
from redis.exceptions import RedisError
from typing import Any, Dict, List, Optional

from allocator import KeyAllocator
from constants import KEY_LENGTH, KEY_POOL_SIZE, REDIS_HOST, REDIS_PORT, REDIS_URL, ROOM_EVENTS_CHANNEL
from exceptions import KeyMismatch, KeyNotFound, RoomNotFound, UserNotInRoom
from redis_keys import (
    REDIS_DATA_KEY,
    REDIS_NEXT_ROOM_ID_KEY,
    REDIS_PUBLIC_ROOMS_KEY,
    REDIS_USERS_KEY,
)
from schemas.rooms import RoomEvent
from logging_config import get_logger

logger = get_logger(__name__)


def encode_value(value: Any) -> str:
    return json.dumps(value)


def decode_value(value: Optional[str]) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        # Written by something other than encode_value
        return value


class RedisBackend:
    def __init__(
        self,
        redis_client=None,
        key_pool_size: int = KEY_POOL_SIZE,
        key_length: int = KEY_LENGTH,
        events_channel: str = ROOM_EVENTS_CHANNEL,
    ):
        if redis_client is None:
            logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")
            redis_client = redis.from_url(REDIS_URL, decode_responses=True)
        self.redis_client = redis_client
        self.key_pool_size = key_pool_size
        self.events_channel = events_channel
        self.allocator = KeyAllocator(redis_client, key_length=key_length)

    async def ping(self):
        try:
            await self.redis_client.ping()
            logger.info("Redis client connected successfully")
        except RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}", exc_info=True)
            raise

    async def close(self):
        await self.redis_client.aclose()

    async def init(self):
        """Wipe the database and set up a fresh room id counter and key pool.

        Must run once, before anything else, on a single instance.
        """
        logger.info(f"Resetting room store, key pool size {self.key_pool_size}")
        await self.redis_client.flushdb()
        await self.redis_client.set(REDIS_NEXT_ROOM_ID_KEY, 0)
        await self.allocator.generate_key_pool(self.key_pool_size)
        logger.info("Room store initialized")

    # Membership

    async def create_room(self, user_id: str) -> int:
        room_id = await self.allocator.next_room_id()
        await self.join_room(user_id, room_id)
        logger.info(f"Room {room_id} created by user {user_id}")
        return room_id

    async def join_room(self, user_id: str, room_id) -> int:
        room_id = int(room_id)
        users_key = REDIS_USERS_KEY.format(room_id=room_id)
        added = await self.redis_client.sadd(users_key, user_id)
        if added:
            logger.debug(f"User {user_id} added to room {room_id} (new user)")
            await self.publish_event(room_id, "join", user_id)
        else:
            logger.debug(f"User {user_id} already exists in room {room_id}")
        return room_id

    async def leave_room(self, user_id: str, room_id) -> int:
        """Remove a user from a room and return how many users are left.

        The last user leaving closes the room: its data and public listing are
        removed and its key goes back to the pool. The room id is not reused.
        """
        room_id = await self._ensure_room(room_id)
        users_key = REDIS_USERS_KEY.format(room_id=room_id)
        removed = await self.redis_client.srem(users_key, user_id)
        if not removed:
            logger.warning(f"Leave room failed: user {user_id} is not in room {room_id}")
            raise UserNotInRoom(user_id, room_id)
        user_count = await self.redis_client.scard(users_key)
        logger.debug(f"User {user_id} removed from room {room_id}, {user_count} users left")
        await self.publish_event(room_id, "leave", user_id)
        if user_count == 0:
            await self._close_room(room_id)
        return user_count

    async def _close_room(self, room_id: int):
        logger.info(f"Room {room_id} is empty, closing it")
        await self.redis_client.delete(REDIS_DATA_KEY.format(room_id=room_id))
        await self.redis_client.lrem(REDIS_PUBLIC_ROOMS_KEY, 0, room_id)
        key = await self.allocator.key_for_room(room_id)
        if key:
            try:
                await self.allocator.release_and_return_key(room_id, key)
            except (KeyNotFound, KeyMismatch) as e:
                # Someone returned or rebound the key in the meantime
                logger.warning(f"Could not release key {key} of closed room {room_id}: {e}")

    async def room_exists(self, room_id) -> bool:
        count = await self.redis_client.scard(REDIS_USERS_KEY.format(room_id=int(room_id)))
        return count > 0

    async def _ensure_room(self, room_id) -> int:
        room_id = int(room_id)
        if not await self.room_exists(room_id):
            logger.debug(f"Room {room_id} not found in Redis")
            raise RoomNotFound(room_id)
        return room_id

    async def get_users_in_room(self, room_id) -> List[str]:
        users = await self.redis_client.smembers(REDIS_USERS_KEY.format(room_id=int(room_id)))
        return sorted(users)

    async def get_user_count(self, room_id) -> int:
        return await self.redis_client.scard(REDIS_USERS_KEY.format(room_id=int(room_id)))

    async def is_user_in_room(self, user_id: str, room_id) -> bool:
        return bool(await self.redis_client.sismember(REDIS_USERS_KEY.format(room_id=int(room_id)), user_id))

    # Events

    async def publish_event(self, room_id: int, action: str, user_id: str):
        """Publish a membership change to the shared room events channel."""
        event = RoomEvent(
            room_id=room_id,
            action=action,
            user=user_id,
            users=await self.get_users_in_room(room_id),
        )
        subscribers = await self.redis_client.publish(self.events_channel, event.to_message())
        logger.debug(f"Published {action} of {user_id} in room {room_id}, {subscribers} subscribers")

    # Keys

    async def get_key(self, room_id) -> str:
        room_id = await self._ensure_room(room_id)
        return await self.allocator.claim_key_for_room(room_id)

    async def return_key(self, room_id, key: str):
        await self.allocator.release_and_return_key(room_id, key)

    async def get_room_id_for_key(self, key: str) -> int:
        return await self.allocator.resolve_key(key)

    # Room data

    async def set_room_data_var(self, room_id, name: str, value: Any) -> Any:
        room_id = await self._ensure_room(room_id)
        await self.redis_client.hset(REDIS_DATA_KEY.format(room_id=room_id), name, encode_value(value))
        return value

    async def get_room_data_var(self, room_id, name: str) -> Any:
        room_id = await self._ensure_room(room_id)
        value = await self.redis_client.hget(REDIS_DATA_KEY.format(room_id=room_id), name)
        return decode_value(value)

    async def del_room_data_var(self, room_id, name: str) -> Any:
        """Delete a field from the room data and return the value it held."""
        value = await self.get_room_data_var(room_id, name)
        try:
            await self.redis_client.hdel(REDIS_DATA_KEY.format(room_id=int(room_id)), name)
        except RedisError as e:
            logger.warning(f"Could not delete {name} from data of room {room_id}: {e}")
        return value

    async def get_room_data(self, room_id) -> Dict[str, Any]:
        room_id = await self._ensure_room(room_id)
        data = await self.redis_client.hgetall(REDIS_DATA_KEY.format(room_id=room_id))
        return {k: decode_value(v) for k, v in data.items()}

    async def set_room_data(self, room_id, data: Dict[str, Any]) -> Dict[str, Any]:
        room_id = await self._ensure_room(room_id)
        # Skip None values, there is no way to store them in a hash
        mapping = {k: encode_value(v) for k, v in data.items() if v is not None}
        if mapping:
            await self.redis_client.hset(REDIS_DATA_KEY.format(room_id=room_id), mapping=mapping)
        logger.debug(f"Set {len(mapping)} data fields for room {room_id}")
        return data

    # Public rooms

    async def make_room_public(self, room_id):
        room_id = await self._ensure_room(room_id)
        if await self.redis_client.lpos(REDIS_PUBLIC_ROOMS_KEY, room_id) is None:
            await self.redis_client.rpush(REDIS_PUBLIC_ROOMS_KEY, room_id)
            logger.info(f"Room {room_id} is now public")

    async def make_room_private(self, room_id) -> bool:
        removed = await self.redis_client.lrem(REDIS_PUBLIC_ROOMS_KEY, 0, int(room_id))
        if removed:
            logger.info(f"Room {room_id} is no longer public")
        return bool(removed)

    async def is_room_public(self, room_id) -> bool:
        return await self.redis_client.lpos(REDIS_PUBLIC_ROOMS_KEY, int(room_id)) is not None

    async def get_public_rooms(self) -> List[int]:
        rooms = await self.redis_client.lrange(REDIS_PUBLIC_ROOMS_KEY, 0, -1)
        return [int(room_id) for room_id in rooms]


redis_backend = RedisBackend()

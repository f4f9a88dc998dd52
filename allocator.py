"""
Room id and room key allocation.

Everything that has to be unique across callers (the next room id and the
pool of unused room keys) is changed only by Lua scripts running inside
Redis, so concurrent callers never read-modify-write shared state from the
client side.
"""

import random
import string
from typing import Optional

from constants import KEY_LENGTH, MIN_KEY_LENGTH
from exceptions import KeyMismatch, KeyNotFound, KeysExhausted, RoomAlreadyHasKey, RoomStoreError
from logging_config import get_logger
from redis_keys import (
    REDIS_KEY_FOR_ROOM_ID,
    REDIS_KEY_POOL_KEY,
    REDIS_NEXT_ROOM_ID_KEY,
    REDIS_ROOM_ID_FOR_KEY,
)

logger = get_logger(__name__)

KEY_ALPHABET = string.ascii_letters + string.digits
# Rounds of candidate generation before generate_key_pool gives up
MAX_GENERATE_ROUNDS = 10

# KEYS[1] = counter. A missing counter counts as 0.
NEXT_ROOM_ID_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1])) or 0
redis.call('SET', KEYS[1], current + 1)
return current
"""

# KEYS[1] = pool, KEYS[2] = key -> room id hash, ARGV = candidate keys.
# Candidates already in the pool or bound to a room are skipped.
ADD_KEYS_SCRIPT = """
local added = 0
for _, key in ipairs(ARGV) do
    if redis.call('HEXISTS', KEYS[2], key) == 0 then
        added = added + redis.call('SADD', KEYS[1], key)
    end
end
return added
"""

# KEYS[1] = pool, KEYS[2] = key -> room id hash, KEYS[3] = room id -> key hash
# ARGV[1] = room id
CLAIM_KEY_FOR_ROOM_SCRIPT = """
local existing = redis.call('HGET', KEYS[3], ARGV[1])
if existing then
    return existing
end
local key = redis.call('SPOP', KEYS[1])
if not key then
    return false
end
redis.call('HSET', KEYS[2], key, ARGV[1])
redis.call('HSET', KEYS[3], ARGV[1], key)
return key
"""

# KEYS[1] = key -> room id hash, KEYS[2] = room id -> key hash, KEYS[3] = pool
# ARGV[1] = key, ARGV[2] = room id
RELEASE_KEY_SCRIPT = """
local bound = redis.call('HGET', KEYS[1], ARGV[1])
if not bound then
    return {'missing', ''}
end
if bound ~= ARGV[2] then
    return {'mismatch', bound}
end
redis.call('HDEL', KEYS[1], ARGV[1])
-- the room may since have been bound to another key, leave that one alone
if redis.call('HGET', KEYS[2], ARGV[2]) == ARGV[1] then
    redis.call('HDEL', KEYS[2], ARGV[2])
end
redis.call('SADD', KEYS[3], ARGV[1])
return {'ok', bound}
"""


def generate_key(length: int = KEY_LENGTH) -> str:
    return ''.join(random.choices(KEY_ALPHABET, k=length))


def normalize_room_id(room_id) -> str:
    """Room ids are stored as decimal strings, so 7, "7" and "07" are the same room."""
    return str(int(room_id))


class KeyAllocator:
    def __init__(self, redis_client, key_length: int = KEY_LENGTH):
        if key_length < MIN_KEY_LENGTH:
            raise ValueError(f"key_length must be at least {MIN_KEY_LENGTH}, got {key_length}")
        self.redis_client = redis_client
        self.key_length = key_length
        self._next_room_id = redis_client.register_script(NEXT_ROOM_ID_SCRIPT)
        self._add_keys = redis_client.register_script(ADD_KEYS_SCRIPT)
        self._claim_key_for_room = redis_client.register_script(CLAIM_KEY_FOR_ROOM_SCRIPT)
        self._release_key = redis_client.register_script(RELEASE_KEY_SCRIPT)

    async def next_room_id(self) -> int:
        room_id = int(await self._next_room_id(keys=[REDIS_NEXT_ROOM_ID_KEY]))
        logger.debug(f"Generated room id {room_id}")
        return room_id

    async def generate_key_pool(self, count: int) -> int:
        """Add ``count`` new keys to the pool of unused keys.

        Keys already in the pool are kept, so calling this on a non-empty pool
        grows it. Returns the number of keys added, which is always ``count``.
        """
        if count < 0:
            raise ValueError(f"count must not be negative, got {count}")
        added = 0
        rounds = 0
        while added < count:
            if rounds >= MAX_GENERATE_ROUNDS:
                raise RoomStoreError(f"Could only generate {added} of {count} unique keys")
            candidates = [generate_key(self.key_length) for _ in range(count - added)]
            added += int(await self._add_keys(
                keys=[REDIS_KEY_POOL_KEY, REDIS_ROOM_ID_FOR_KEY],
                args=candidates,
            ))
            rounds += 1
        logger.info(f"Generated {added} room keys")
        return added

    async def pool_size(self) -> int:
        return await self.redis_client.scard(REDIS_KEY_POOL_KEY)

    async def claim_key(self) -> str:
        """Pop one unused key from the pool without binding it to a room."""
        key = await self.redis_client.spop(REDIS_KEY_POOL_KEY)
        if not key:
            logger.warning("Key claim failed: pool is empty")
            raise KeysExhausted()
        logger.debug(f"Claimed key {key}")
        return key

    async def return_key(self, key: str):
        """Put ``key`` back in the pool. The caller must already have removed its binding."""
        await self.redis_client.sadd(REDIS_KEY_POOL_KEY, key)
        logger.debug(f"Returned key {key} to the pool")

    async def bind_key_to_room(self, room_id, key: str):
        """Write both directions of the key binding.

        The two writes are sent together but are not atomic with the claim
        that produced ``key``; prefer claim_key_for_room. A room holding a
        different key is refused with RoomAlreadyHasKey.
        """
        room_id = normalize_room_id(room_id)
        existing = await self.redis_client.hget(REDIS_KEY_FOR_ROOM_ID, room_id)
        if existing is not None and existing != key:
            logger.warning(f"Bind of key {key} refused: room {room_id} already holds key {existing}")
            raise RoomAlreadyHasKey(int(room_id), existing)
        async with self.redis_client.pipeline(transaction=False) as pipe:
            pipe.hset(REDIS_ROOM_ID_FOR_KEY, key, room_id)
            pipe.hset(REDIS_KEY_FOR_ROOM_ID, room_id, key)
            await pipe.execute()
        logger.debug(f"Bound key {key} to room {room_id}")

    async def claim_key_for_room(self, room_id) -> str:
        """Atomically claim a key and bind it to ``room_id``.

        A room that already holds a key gets that key back and the pool is left alone.
        """
        room_id = normalize_room_id(room_id)
        key = await self._claim_key_for_room(
            keys=[REDIS_KEY_POOL_KEY, REDIS_ROOM_ID_FOR_KEY, REDIS_KEY_FOR_ROOM_ID],
            args=[room_id],
        )
        if not key:
            logger.warning(f"Key claim for room {room_id} failed: pool is empty")
            raise KeysExhausted()
        logger.info(f"Room {room_id} holds key {key}")
        return key

    async def resolve_key(self, key: str) -> int:
        room_id = await self.redis_client.hget(REDIS_ROOM_ID_FOR_KEY, key)
        if room_id is None:
            raise KeyNotFound(key)
        return int(room_id)

    async def key_for_room(self, room_id) -> Optional[str]:
        return await self.redis_client.hget(REDIS_KEY_FOR_ROOM_ID, normalize_room_id(room_id))

    async def release_and_return_key(self, room_id, key: str):
        """Drop the binding of ``key`` to ``room_id`` and put the key back in the pool.

        Raises KeyNotFound when the key is not bound and KeyMismatch when it is
        bound to another room; in both cases nothing is changed.
        """
        room_id = normalize_room_id(room_id)
        status, bound_room_id = await self._release_key(
            keys=[REDIS_ROOM_ID_FOR_KEY, REDIS_KEY_FOR_ROOM_ID, REDIS_KEY_POOL_KEY],
            args=[key, room_id],
        )
        if status == "missing":
            logger.warning(f"Key return failed: key {key} is not bound to any room")
            raise KeyNotFound(key)
        if status == "mismatch":
            logger.warning(f"Key return failed: key {key} belongs to room {bound_room_id}, not {room_id}")
            raise KeyMismatch(key, int(room_id), int(bound_room_id))
        logger.info(f"Room {room_id} returned key {key}")

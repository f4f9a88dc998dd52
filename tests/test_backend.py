"""
Tests for the room registry: membership, keys, room data and public rooms.
"""

import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from conftest import POOL_SIZE, next_message
from exceptions import KeyMismatch, KeyNotFound, RoomNotFound, UserNotInRoom
from redis_keys import REDIS_DATA_KEY, REDIS_NEXT_ROOM_ID_KEY


# ----------------------------------------------------------------------------
# init()
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_init_sets_counter_and_pool(backend, redis_client):
    assert await redis_client.get(REDIS_NEXT_ROOM_ID_KEY) == "0"
    assert await backend.allocator.pool_size() == POOL_SIZE


@pytest.mark.asyncio
async def test_init_wipes_previous_state(backend):
    room_id = await backend.create_room("alice")
    await backend.get_key(room_id)
    await backend.make_room_public(room_id)

    await backend.init()

    assert not await backend.room_exists(room_id)
    assert await backend.get_public_rooms() == []
    assert await backend.allocator.pool_size() == POOL_SIZE
    assert await backend.create_room("bob") == 0


# ----------------------------------------------------------------------------
# Membership
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_room_returns_sequential_ids(backend):
    assert await backend.create_room("alice") == 0
    assert await backend.create_room("bob") == 1


@pytest.mark.asyncio
async def test_creator_is_a_member(backend):
    room_id = await backend.create_room("alice")

    assert await backend.room_exists(room_id)
    assert await backend.get_users_in_room(room_id) == ["alice"]


@pytest.mark.asyncio
async def test_join_room_twice_keeps_one_membership(backend):
    room_id = await backend.create_room("alice")

    assert await backend.join_room("bob", room_id) == room_id
    assert await backend.join_room("bob", room_id) == room_id

    assert await backend.get_users_in_room(room_id) == ["alice", "bob"]
    assert await backend.get_user_count(room_id) == 2
    assert await backend.is_user_in_room("bob", room_id)


@pytest.mark.asyncio
async def test_leave_room_returns_remaining_count(backend):
    room_id = await backend.create_room("alice")
    await backend.join_room("bob", room_id)

    assert await backend.leave_room("bob", room_id) == 1
    assert not await backend.is_user_in_room("bob", room_id)


@pytest.mark.asyncio
async def test_leave_unknown_room_raises(backend):
    with pytest.raises(RoomNotFound):
        await backend.leave_room("alice", 42)


@pytest.mark.asyncio
async def test_leave_room_user_not_member_raises(backend):
    room_id = await backend.create_room("alice")

    with pytest.raises(UserNotInRoom):
        await backend.leave_room("mallory", room_id)
    assert await backend.get_users_in_room(room_id) == ["alice"]


@pytest.mark.asyncio
async def test_last_leave_closes_room(backend):
    room_id = await backend.create_room("alice")
    key = await backend.get_key(room_id)
    await backend.set_room_data_var(room_id, "topic", "cats")
    await backend.make_room_public(room_id)

    assert await backend.leave_room("alice", room_id) == 0

    assert not await backend.room_exists(room_id)
    assert await backend.get_public_rooms() == []
    assert await backend.allocator.pool_size() == POOL_SIZE
    with pytest.raises(KeyNotFound):
        await backend.get_room_id_for_key(key)
    with pytest.raises(RoomNotFound):
        await backend.get_room_data(room_id)


@pytest.mark.asyncio
async def test_room_ids_are_not_reused_after_close(backend):
    room_id = await backend.create_room("alice")
    await backend.leave_room("alice", room_id)

    assert await backend.create_room("alice") == room_id + 1


# ----------------------------------------------------------------------------
# Events
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_join_and_leave_publish_events(backend, redis_client):
    pubsub = redis_client.pubsub()
    await pubsub.subscribe(backend.events_channel)

    room_id = await backend.create_room("alice")
    await backend.join_room("bob", room_id)
    await backend.leave_room("alice", room_id)

    first = json.loads((await next_message(pubsub))["data"])
    second = json.loads((await next_message(pubsub))["data"])
    third = json.loads((await next_message(pubsub))["data"])
    await pubsub.aclose()

    assert first == {"roomID": room_id, "action": "join", "user": "alice", "users": ["alice"]}
    assert second == {"roomID": room_id, "action": "join", "user": "bob", "users": ["alice", "bob"]}
    assert third == {"roomID": room_id, "action": "leave", "user": "alice", "users": ["bob"]}


@pytest.mark.asyncio
async def test_rejoin_publishes_nothing(backend, redis_client):
    room_id = await backend.create_room("alice")
    pubsub = redis_client.pubsub()
    await pubsub.subscribe(backend.events_channel)

    await backend.join_room("alice", room_id)
    await backend.join_room("bob", room_id)

    message = json.loads((await next_message(pubsub))["data"])
    await pubsub.aclose()
    assert message["user"] == "bob"


# ----------------------------------------------------------------------------
# Keys
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_key_for_unknown_room_raises(backend):
    with pytest.raises(RoomNotFound):
        await backend.get_key(99)
    assert await backend.allocator.pool_size() == POOL_SIZE


@pytest.mark.asyncio
async def test_key_resolves_to_room(backend):
    room_id = await backend.create_room("alice")
    key = await backend.get_key(room_id)

    assert await backend.get_key(room_id) == key
    assert await backend.get_room_id_for_key(key) == room_id


@pytest.mark.asyncio
async def test_return_key_with_wrong_room_is_rejected(backend):
    first = await backend.create_room("alice")
    second = await backend.create_room("bob")
    key = await backend.get_key(first)

    with pytest.raises(KeyMismatch):
        await backend.return_key(second, key)
    assert await backend.get_room_id_for_key(key) == first

    await backend.return_key(first, key)
    with pytest.raises(KeyNotFound):
        await backend.get_room_id_for_key(key)


# ----------------------------------------------------------------------------
# Room data
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_room_data_var_round_trip(backend):
    room_id = await backend.create_room("alice")

    assert await backend.set_room_data_var(room_id, "topic", "cats") == "cats"
    assert await backend.get_room_data_var(room_id, "topic") == "cats"
    assert await backend.get_room_data_var(room_id, "missing") is None


@pytest.mark.asyncio
async def test_room_data_var_keeps_structured_values(backend):
    room_id = await backend.create_room("alice")

    await backend.set_room_data_var(room_id, "settings", {"max": 4, "tags": ["a"]})
    await backend.set_room_data_var(room_id, "locked", True)

    assert await backend.get_room_data_var(room_id, "settings") == {"max": 4, "tags": ["a"]}
    assert await backend.get_room_data_var(room_id, "locked") is True


@pytest.mark.asyncio
async def test_room_data_var_keeps_strings_that_look_like_json(backend):
    room_id = await backend.create_room("alice")

    await backend.set_room_data_var(room_id, "limit", "10")
    await backend.set_room_data_var(room_id, "flag", "true")
    await backend.set_room_data_var(room_id, "count", 10)

    assert await backend.get_room_data_var(room_id, "limit") == "10"
    assert await backend.get_room_data_var(room_id, "flag") == "true"
    assert await backend.get_room_data_var(room_id, "count") == 10


@pytest.mark.asyncio
async def test_del_room_data_var_returns_old_value(backend):
    room_id = await backend.create_room("alice")
    await backend.set_room_data_var(room_id, "topic", "cats")

    assert await backend.del_room_data_var(room_id, "topic") == "cats"
    assert await backend.get_room_data_var(room_id, "topic") is None
    assert await backend.del_room_data_var(room_id, "topic") is None


@pytest.mark.asyncio
async def test_del_room_data_var_survives_failed_delete(backend, monkeypatch):
    room_id = await backend.create_room("alice")
    await backend.set_room_data_var(room_id, "topic", "cats")

    async def failing_hdel(*args, **kwargs):
        raise RedisConnectionError("connection lost")

    monkeypatch.setattr(backend.redis_client, "hdel", failing_hdel)

    assert await backend.del_room_data_var(room_id, "topic") == "cats"


@pytest.mark.asyncio
async def test_set_room_data_bulk(backend, redis_client):
    room_id = await backend.create_room("alice")

    data = {"topic": "cats", "limit": 10, "owner": None}
    assert await backend.set_room_data(room_id, data) == data

    assert await backend.get_room_data(room_id) == {"topic": "cats", "limit": 10}
    assert await redis_client.hgetall(REDIS_DATA_KEY.format(room_id=room_id)) == {"topic": "\"cats\"", "limit": "10"}


@pytest.mark.asyncio
async def test_room_data_of_empty_room_is_empty_dict(backend):
    room_id = await backend.create_room("alice")
    assert await backend.get_room_data(room_id) == {}


@pytest.mark.asyncio
async def test_room_data_of_unknown_room_raises(backend):
    with pytest.raises(RoomNotFound):
        await backend.set_room_data_var(5, "topic", "cats")
    with pytest.raises(RoomNotFound):
        await backend.get_room_data_var(5, "topic")
    with pytest.raises(RoomNotFound):
        await backend.del_room_data_var(5, "topic")
    with pytest.raises(RoomNotFound):
        await backend.set_room_data(5, {"topic": "cats"})


# ----------------------------------------------------------------------------
# Public rooms
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_make_room_public_once(backend):
    first = await backend.create_room("alice")
    second = await backend.create_room("bob")

    await backend.make_room_public(first)
    await backend.make_room_public(second)
    await backend.make_room_public(first)

    assert await backend.get_public_rooms() == [first, second]
    assert await backend.is_room_public(first)


@pytest.mark.asyncio
async def test_make_room_private(backend):
    room_id = await backend.create_room("alice")
    await backend.make_room_public(room_id)

    assert await backend.make_room_private(room_id) is True
    assert await backend.make_room_private(room_id) is False
    assert not await backend.is_room_public(room_id)


@pytest.mark.asyncio
async def test_unknown_room_cannot_be_public(backend):
    with pytest.raises(RoomNotFound):
        await backend.make_room_public(12)

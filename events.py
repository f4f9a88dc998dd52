"""
Room event relay.

Every instance publishes membership changes to one shared Redis channel.
The relay subscribes to that channel and hands each event to the handlers
registered locally for the event's room.
"""

import asyncio
import inspect
from typing import Callable, Dict, List

from pydantic import ValidationError
from redis.exceptions import RedisError

from constants import ROOM_EVENTS_CHANNEL
from logging_config import get_logger
from schemas.rooms import RoomEvent

logger = get_logger(__name__)

# Seconds to wait after a failed read before polling the channel again
LISTENER_RETRY_DELAY = 1.0


class RoomEventRelay:
    def __init__(self, redis_client, channel: str = ROOM_EVENTS_CHANNEL):
        self.redis_client = redis_client
        self.channel = channel
        # Format: {room_id: [handler, ...]}
        self._handlers: Dict[int, List[Callable]] = {}
        self._pubsub = None
        self._task = None

    def add_handler(self, room_id, handler: Callable):
        """Call ``handler(event)`` for every event of ``room_id``. Handlers may be coroutines."""
        self._handlers.setdefault(int(room_id), []).append(handler)
        logger.debug(f"Added event handler for room {room_id} ({self.handler_count(room_id)} total)")

    def remove_handler(self, room_id, handler: Callable):
        room_id = int(room_id)
        handlers = self._handlers.get(room_id, [])
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            self._handlers.pop(room_id, None)
        logger.debug(f"Removed event handler for room {room_id}")

    def handler_count(self, room_id) -> int:
        return len(self._handlers.get(int(room_id), []))

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        if self.running:
            return
        self._pubsub = self.redis_client.pubsub(ignore_subscribe_messages=True)
        await self._pubsub.subscribe(self.channel)
        logger.info(f"Subscribed to Redis channel {self.channel}")
        self._task = asyncio.create_task(self._listen())

    async def stop(self):
        try:
            if self._task is not None:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.error(f"Room event listener on {self.channel} had failed: {e}", exc_info=True)
                self._task = None
        finally:
            if self._pubsub is not None:
                await self._pubsub.aclose()
                self._pubsub = None
                logger.debug(f"Closed pub/sub connection for channel {self.channel}")

    async def _listen(self):
        logger.info(f"Starting room event listener on {self.channel}")
        try:
            while True:
                try:
                    message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                except RedisError as e:
                    logger.error(f"Error in pubsub.get_message() on {self.channel}: {e}", exc_info=True)
                    await asyncio.sleep(LISTENER_RETRY_DELAY)
                    continue
                if message is None:
                    continue
                await self.dispatch(message["data"])
        except asyncio.CancelledError:
            logger.info(f"Room event listener on {self.channel} cancelled")
            raise

    async def dispatch(self, raw_message: str):
        try:
            event = RoomEvent.model_validate_json(raw_message)
        except ValidationError as e:
            logger.error(f"Error parsing room event {raw_message!r}: {e}")
            return

        handlers = list(self._handlers.get(event.room_id, []))
        logger.debug(f"Dispatching {event.action} in room {event.room_id} to {len(handlers)} handlers")
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Room event handler failed for room {event.room_id}: {e}", exc_info=True)

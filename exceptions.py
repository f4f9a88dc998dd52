class RoomStoreError(Exception):
    """Base class for errors raised by the room store."""


class KeysExhausted(RoomStoreError):
    """The pool of unused room keys is empty."""

    def __init__(self, message: str = "Run out of keys"):
        super().__init__(message)


class NotFound(RoomStoreError):
    pass


class RoomNotFound(NotFound):
    def __init__(self, room_id):
        self.room_id = room_id
        super().__init__(f"There is no room by the id: {room_id}")


class KeyNotFound(NotFound):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"No room is bound to the key: {key}")


class UserNotInRoom(NotFound):
    def __init__(self, user_id: str, room_id):
        self.user_id = user_id
        self.room_id = room_id
        super().__init__(f"User {user_id} is not in the room: {room_id}")


class KeyMismatch(RoomStoreError):
    """The key is bound to a different room than the one supplied."""

    def __init__(self, key: str, room_id, bound_room_id):
        self.key = key
        self.room_id = room_id
        self.bound_room_id = bound_room_id
        super().__init__(f"Key {key} belongs to room {bound_room_id}, not {room_id}")


class RoomAlreadyHasKey(RoomStoreError):
    """The room is already bound to a different key."""

    def __init__(self, room_id, key: str):
        self.room_id = room_id
        self.key = key
        super().__init__(f"Room {room_id} already holds key {key}")

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Literal, Optional


class RoomEvent(BaseModel):
    """Membership change published on the shared room events channel."""
    model_config = ConfigDict(populate_by_name=True)

    room_id: int = Field(alias="roomID")
    action: Literal["join", "leave"]
    user: str
    users: List[str] = []

    def to_message(self) -> str:
        return self.model_dump_json(by_alias=True)

class UserRequest(BaseModel):
    user: str = Field(min_length=1)

class CreateRoomResponse(BaseModel):
    room_id: int

class JoinRoomResponse(BaseModel):
    room_id: int
    users: List[str]

class LeaveRoomResponse(BaseModel):
    room_id: int
    user_count: int

class RoomUsersResponse(BaseModel):
    room_id: int
    users: List[str]

class RoomKeyResponse(BaseModel):
    room_id: int
    key: str

class KeyLookupResponse(BaseModel):
    key: str
    room_id: int

class RoomDataResponse(BaseModel):
    room_id: int
    data: Dict[str, Any]

class RoomDataVarRequest(BaseModel):
    value: Any

class RoomDataVarResponse(BaseModel):
    room_id: int
    name: str
    value: Optional[Any] = None

class PublicRoomsResponse(BaseModel):
    rooms: List[int]

class PublicStatusResponse(BaseModel):
    room_id: int
    public: bool

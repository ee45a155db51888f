from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateRoomResponse(_CamelModel):
    room_id: str = Field(alias="roomId")

class JoinRoomRequest(_CamelModel):
    room_id: Optional[str] = Field(default=None, alias="roomId")
    participant_id: str = Field(alias="participantId")

class JoinRoomResponse(_CamelModel):
    room_id: str = Field(alias="roomId")
    participants: list[str]

class ParticipantsResponse(BaseModel):
    participants: list[str]

class RoomDetailsResponse(_CamelModel):
    room_id: str = Field(alias="roomId")
    state: str
    participants: list[str]

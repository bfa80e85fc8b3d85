from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class MessageCreate(BaseModel):
    content: str = Field(min_length=1)
    attachment: Optional[str] = None
    attachment_type: Optional[Literal["image", "file"]] = None
    attachment_name: Optional[str] = None


class MessageOut(BaseModel):
    id: int
    room_id: int
    sender_id: int
    content: str
    attachment: Optional[str] = None
    attachment_type: Optional[str] = None
    attachment_name: Optional[str] = None
    created_at: datetime
    read_by: list[int]

    class Config:
        from_attributes = True


class GroupRoomCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    participant_ids: list[int] = Field(min_length=1)


class ParticipantAdd(BaseModel):
    user_id: int


class RoomOut(BaseModel):
    id: int
    type: str
    name: str
    admin_id: Optional[int] = None
    participant_ids: list[int]
    last_message: Optional[MessageOut] = None
    unread_count: int = 0
    updated_at: datetime

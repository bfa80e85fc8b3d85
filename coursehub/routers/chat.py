from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from coursehub.core.current_user import get_current_user
from coursehub.core.deps import get_chat_engine
from coursehub.models.user import User
from coursehub.schemas.chat import GroupRoomCreate, MessageCreate, MessageOut, ParticipantAdd, RoomOut
from coursehub.services.chat import DEFAULT_PAGE_SIZE, ChatEngine

router = APIRouter()


@router.get("/rooms", response_model=list[RoomOut])
def my_rooms(
    engine: ChatEngine = Depends(get_chat_engine),
    me: User = Depends(get_current_user),
):
    return engine.list_rooms(me)


@router.get("/direct/{recipient_id}", response_model=RoomOut)
def direct_room(
    recipient_id: int,
    engine: ChatEngine = Depends(get_chat_engine),
    me: User = Depends(get_current_user),
):
    room = engine.get_or_create_direct_room(me, recipient_id)
    return engine.describe_room(room, me)


@router.post("/group", response_model=RoomOut, status_code=status.HTTP_201_CREATED)
def create_group(
    payload: GroupRoomCreate,
    engine: ChatEngine = Depends(get_chat_engine),
    me: User = Depends(get_current_user),
):
    room = engine.create_group_room(me, payload.participant_ids, payload.name)
    return engine.describe_room(room, me)


@router.post("/rooms/{room_id}/participants", response_model=RoomOut)
def add_participant(
    room_id: int,
    payload: ParticipantAdd,
    engine: ChatEngine = Depends(get_chat_engine),
    me: User = Depends(get_current_user),
):
    room = engine.add_participant(room_id, me, payload.user_id)
    return engine.describe_room(room, me)


@router.delete("/rooms/{room_id}/participants/{user_id}", response_model=RoomOut)
def remove_participant(
    room_id: int,
    user_id: int,
    engine: ChatEngine = Depends(get_chat_engine),
    me: User = Depends(get_current_user),
):
    room = engine.remove_participant(room_id, me, user_id)
    return engine.describe_room(room, me)


@router.get("/rooms/{room_id}/messages", response_model=list[MessageOut])
def room_messages(
    room_id: int,
    before_id: Optional[int] = None,
    limit: int = Query(DEFAULT_PAGE_SIZE),
    engine: ChatEngine = Depends(get_chat_engine),
    me: User = Depends(get_current_user),
):
    return engine.list_messages(room_id, me, before_id=before_id, limit=limit)


@router.post(
    "/rooms/{room_id}/messages",
    response_model=MessageOut,
    status_code=status.HTTP_201_CREATED,
)
def send_message(
    room_id: int,
    payload: MessageCreate,
    engine: ChatEngine = Depends(get_chat_engine),
    me: User = Depends(get_current_user),
):
    return engine.send_message(
        room_id,
        me,
        payload.content,
        attachment=payload.attachment,
        attachment_type=payload.attachment_type,
        attachment_name=payload.attachment_name,
    )


@router.post("/messages/{message_id}/read", response_model=MessageOut)
def mark_read(
    message_id: int,
    engine: ChatEngine = Depends(get_chat_engine),
    me: User = Depends(get_current_user),
):
    return engine.mark_read(message_id, me)

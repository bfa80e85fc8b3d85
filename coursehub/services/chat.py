"""Chat rooms, message delivery and read tracking.

Every message is committed before it is published, and sends to one room
are serialized by that room's lock, so subscribers see a room's messages in
the order they were stored.
"""
import logging
import threading
import weakref
from typing import Hashable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coursehub.core.clock import Clock, utcnow
from coursehub.core.errors import Forbidden, NotFound, ValidationFailed
from coursehub.models.chat import ChatParticipant, ChatRoom, Message, MessageRead, RoomType, direct_key
from coursehub.models.user import ROLE_ADMIN, User
from coursehub.services.broadcaster import Broadcaster

logger = logging.getLogger(__name__)

RECEIVE_MESSAGE = "receive_message"
USER_TYPING = "user_typing"

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


class RoomLocks:
    """One lock per room, shared by every engine the application builds.

    A room's lock is dropped once no caller holds a reference to it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()

    def for_room(self, room_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(room_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[room_id] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)


def serialize_message(message: Message) -> dict:
    return {
        "id": message.id,
        "room_id": message.room_id,
        "sender_id": message.sender_id,
        "content": message.content,
        "attachment": message.attachment,
        "attachment_type": message.attachment_type,
        "attachment_name": message.attachment_name,
        "created_at": message.created_at,
        "read_by": message.read_by,
    }


def can_manage_room(user: User, room: ChatRoom) -> bool:
    return room.type == RoomType.GROUP.value and room.admin_id == user.id


class ChatEngine:
    def __init__(
        self,
        db: Session,
        broadcaster: Broadcaster,
        room_locks: Optional[RoomLocks] = None,
        clock: Optional[Clock] = None,
    ):
        self.db = db
        self.broadcaster = broadcaster
        self.room_locks = room_locks or RoomLocks()
        self.clock = clock or utcnow

    def _commit(self) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    # ------------------------------------------------------------------ rooms

    def get_room(self, room_id: int) -> ChatRoom:
        room = self.db.get(ChatRoom, room_id)
        if room is None:
            raise NotFound("Chat room not found")
        return room

    def require_participant(self, room_id: int, user: User) -> ChatRoom:
        room = self.get_room(room_id)
        if not room.has_participant(user.id):
            raise Forbidden("You are not a participant in this chat")
        return room

    def _find_direct_room(self, key: str) -> Optional[ChatRoom]:
        return self.db.query(ChatRoom).filter(ChatRoom.direct_key == key).first()

    def get_or_create_direct_room(self, user: User, recipient_id: int) -> ChatRoom:
        if recipient_id == user.id:
            raise ValidationFailed("Cannot open a direct chat with yourself")
        if self.db.get(User, recipient_id) is None:
            raise NotFound("Recipient not found")

        key = direct_key(user.id, recipient_id)
        room = self._find_direct_room(key)
        if room is not None:
            return room

        now = self.clock()
        room = ChatRoom(
            type=RoomType.DIRECT.value,
            direct_key=key,
            created_at=now,
            updated_at=now,
            participants=[
                ChatParticipant(user_id=user.id),
                ChatParticipant(user_id=recipient_id),
            ],
        )
        self.db.add(room)
        try:
            self.db.commit()
        except IntegrityError:
            # the other participant created it first
            self.db.rollback()
            room = self._find_direct_room(key)
            if room is None:
                raise
            return room

        self.db.refresh(room)
        logger.info("direct room %s created for %s", room.id, key)
        return room

    def create_group_room(self, creator: User, participant_ids: list[int], name: str) -> ChatRoom:
        if creator.role != ROLE_ADMIN:
            raise Forbidden("Only admins can create group chats")

        member_ids = sorted(set(participant_ids) | {creator.id})
        found = self.db.query(func.count(User.id)).filter(User.id.in_(member_ids)).scalar()
        if found != len(member_ids):
            raise NotFound("One or more participants not found")
        if len(member_ids) < 2:
            raise ValidationFailed("A group chat needs at least two participants")

        now = self.clock()
        room = ChatRoom(
            type=RoomType.GROUP.value,
            name=name,
            admin_id=creator.id,
            created_at=now,
            updated_at=now,
            participants=[ChatParticipant(user_id=uid) for uid in member_ids],
        )
        self.db.add(room)
        self._commit()

        self.db.refresh(room)
        logger.info("group room %s (%r) created by %s", room.id, name, creator.id)
        return room

    def _managed_group(self, room_id: int, manager: User) -> ChatRoom:
        room = self.get_room(room_id)
        if not can_manage_room(manager, room):
            raise Forbidden("Only the group admin can manage participants")
        return room

    def add_participant(self, room_id: int, manager: User, user_id: int) -> ChatRoom:
        room = self._managed_group(room_id, manager)
        if self.db.get(User, user_id) is None:
            raise NotFound("User not found")
        if room.has_participant(user_id):
            return room

        room.participants.append(ChatParticipant(user_id=user_id))
        try:
            self.db.commit()
        except IntegrityError:
            # added concurrently; membership is what was asked for
            self.db.rollback()

        self.db.refresh(room)
        return room

    def remove_participant(self, room_id: int, manager: User, user_id: int) -> ChatRoom:
        room = self._managed_group(room_id, manager)
        if user_id == room.admin_id:
            raise ValidationFailed("The group admin cannot be removed")

        (
            self.db.query(ChatParticipant)
            .filter(ChatParticipant.room_id == room.id, ChatParticipant.user_id == user_id)
            .delete(synchronize_session=False)
        )
        self._commit()
        # sockets the member already joined stop receiving the room
        self.broadcaster.evict(room.id, user_id)

        self.db.refresh(room)
        logger.info("user %s removed from room %s by %s", user_id, room.id, manager.id)
        return room

    def unread_count(self, room: ChatRoom, user: User) -> int:
        already_read = select(MessageRead.message_id).where(MessageRead.user_id == user.id)
        return (
            self.db.query(func.count(Message.id))
            .filter(
                Message.room_id == room.id,
                Message.sender_id != user.id,
                Message.id.not_in(already_read),
            )
            .scalar()
        ) or 0

    def describe_room(self, room: ChatRoom, user: User) -> dict:
        last = self.db.get(Message, room.last_message_id) if room.last_message_id else None
        return {
            "id": room.id,
            "type": room.type,
            "name": room.name,
            "admin_id": room.admin_id,
            "participant_ids": room.participant_ids,
            "last_message": serialize_message(last) if last else None,
            "unread_count": self.unread_count(room, user),
            "updated_at": room.updated_at,
        }

    def list_rooms(self, user: User) -> list[dict]:
        rooms = (
            self.db.query(ChatRoom)
            .join(ChatParticipant, ChatParticipant.room_id == ChatRoom.id)
            .filter(ChatParticipant.user_id == user.id)
            .order_by(ChatRoom.updated_at.desc(), ChatRoom.id.desc())
            .all()
        )

        return [self.describe_room(room, user) for room in rooms]

    # --------------------------------------------------------------- messages

    def send_message(
        self,
        room_id: int,
        sender: User,
        content: str,
        attachment: Optional[str] = None,
        attachment_type: Optional[str] = None,
        attachment_name: Optional[str] = None,
    ) -> dict:
        if not content or not content.strip():
            raise ValidationFailed("Message content is required")

        room = self.require_participant(room_id, sender)

        with self.room_locks.for_room(room.id):
            now = self.clock()
            message = Message(
                room_id=room.id,
                sender_id=sender.id,
                content=content.strip(),
                attachment=attachment,
                attachment_type=attachment_type,
                attachment_name=attachment_name,
                created_at=now,
            )
            # the sender has read their own message
            message.reads.append(MessageRead(user_id=sender.id, read_at=now))
            self.db.add(message)
            self.db.flush()

            room.last_message_id = message.id
            room.updated_at = now
            self._commit()

            payload = serialize_message(message)
            self.broadcaster.publish(room.id, RECEIVE_MESSAGE, payload)

        logger.debug("message %s stored and published to room %s", payload["id"], room.id)
        return payload

    def mark_read(self, message_id: int, user: User) -> dict:
        message = self.db.get(Message, message_id)
        if message is None:
            raise NotFound("Message not found")
        self.require_participant(message.room_id, user)

        if user.id not in message.read_by:
            message.reads.append(MessageRead(user_id=user.id, read_at=self.clock()))
            try:
                self.db.commit()
            except IntegrityError:
                # a concurrent call recorded the same read
                self.db.rollback()
            self.db.refresh(message)

        return serialize_message(message)

    def list_messages(
        self,
        room_id: int,
        user: User,
        before_id: Optional[int] = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> list[dict]:
        """Newest ``limit`` messages older than ``before_id``, oldest first."""
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationFailed(f"limit must be between 1 and {MAX_PAGE_SIZE}")

        room = self.require_participant(room_id, user)

        q = self.db.query(Message).filter(Message.room_id == room.id)
        if before_id is not None:
            q = q.filter(Message.id < before_id)
        page = q.order_by(Message.id.desc()).limit(limit).all()

        return [serialize_message(m) for m in reversed(page)]

    def typing(
        self,
        room_id: int,
        user: User,
        is_typing: bool,
        exclude: Optional[Hashable] = None,
    ) -> None:
        room = self.require_participant(room_id, user)
        self.broadcaster.publish(
            room.id,
            USER_TYPING,
            {
                "room_id": room.id,
                "user_id": user.id,
                "username": user.full_name or user.email,
                "is_typing": is_typing,
            },
            exclude=exclude,
        )

import enum

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import relationship

from coursehub.db.base_class import Base


class RoomType(str, enum.Enum):
    DIRECT = "direct"
    GROUP = "group"


def direct_key(user_a: int, user_b: int) -> str:
    """Order-independent key for the single direct room of a user pair."""
    low, high = sorted((user_a, user_b))
    return f"{low}:{high}"


class ChatRoom(Base):
    __tablename__ = "chat_rooms"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String(10), nullable=False, default=RoomType.DIRECT.value)
    name = Column(String(255), nullable=False, default="")
    admin_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # unique per participant pair for direct rooms, NULL for groups
    direct_key = Column(String(64), nullable=True, unique=True)

    # denormalized pointer to the newest message; not authoritative
    last_message_id = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    participants = relationship(
        "ChatParticipant",
        back_populates="room",
        cascade="all, delete-orphan",
        order_by="ChatParticipant.user_id",
    )

    @property
    def participant_ids(self) -> list[int]:
        return [p.user_id for p in self.participants]

    def has_participant(self, user_id: int) -> bool:
        return user_id in self.participant_ids


class ChatParticipant(Base):
    __tablename__ = "chat_participants"

    room_id = Column(Integer, ForeignKey("chat_rooms.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True)
    joined_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    room = relationship("ChatRoom", back_populates="participants")


class Message(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(Integer, ForeignKey("chat_rooms.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    content = Column(Text, nullable=False)
    attachment = Column(String(1024), nullable=True)
    attachment_type = Column(String(10), nullable=True)
    attachment_name = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_chat_messages_room_id_id", "room_id", "id"),
    )

    reads = relationship(
        "MessageRead",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageRead.id",
    )

    @property
    def read_by(self) -> list[int]:
        return [r.user_id for r in self.reads]


class MessageRead(Base):
    __tablename__ = "chat_message_reads"

    id = Column(Integer, primary_key=True)
    message_id = Column(Integer, ForeignKey("chat_messages.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    read_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_read_user"),
    )

    message = relationship("Message", back_populates="reads")

from .users import User
from .chat_rooms import ChatRoom
from .room_members import RoomMember
from .messages import Message, MessageReaction

__all__ = [
    "User",
    "ChatRoom",
    "RoomMember",
    "Message",
    "MessageReaction",
]

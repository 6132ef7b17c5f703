# Chat Room schemas
from .chat_room import (
    DirectRoomCreate,
    GroupRoomCreate,
    ChatRoomResponse,
    ChatRoomList,
    ConversationStartResponse,
    ReadReceiptResponse,
)

# Participant schemas
from .room_member import (
    ParticipantAdd,
    ParticipantResponse,
    ParticipantList,
)

# Message schemas
from .message import (
    MessageCreate,
    MessageUpdate,
    MessageResponse,
    MessagePageResponse,
    ReactionRequest,
    TypingRequest,
    TypingResponse,
)

__all__ = [
    "DirectRoomCreate",
    "GroupRoomCreate",
    "ChatRoomResponse",
    "ChatRoomList",
    "ConversationStartResponse",
    "ReadReceiptResponse",
    "ParticipantAdd",
    "ParticipantResponse",
    "ParticipantList",
    "MessageCreate",
    "MessageUpdate",
    "MessageResponse",
    "MessagePageResponse",
    "ReactionRequest",
    "TypingRequest",
    "TypingResponse",
]

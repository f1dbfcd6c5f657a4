# app/models/chat/__init__.py
from .message import Message, MessageType
from .conversation import GroupConversation, ConversationParticipant
from .presence import PresenceRecord
from .typing_signal import TypingSignal
from .chat_request import ChatRequest, ChatRequestStatus

__all__ = [
    "Message", "MessageType",
    "GroupConversation", "ConversationParticipant",
    "PresenceRecord", "TypingSignal",
    "ChatRequest", "ChatRequestStatus",
]

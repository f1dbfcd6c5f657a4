# app/models/__init__.py
"""Import all models here, if needed for Alembic migration."""
from .base import Base

from .chat import (
    Message, GroupConversation, ConversationParticipant,
    PresenceRecord, TypingSignal, ChatRequest
)

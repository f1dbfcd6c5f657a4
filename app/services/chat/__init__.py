# app/services/chat/__init__.py
from .chat_request_service import ChatRequestWorkflow
from .dispatcher import RealtimeDispatcher
from .group_service import GroupService
from .message_service import MessageService
from .participants import HttpParticipantDirectory, Participant, ParticipantDirectory, ParticipantProfile, Role
from .presence_service import PresenceService, PresenceTracker
from .session import MessagingSession
from .typing_service import TypingBroadcaster, TypingObserver, TypingService
from .websocket_manager import WebSocketManager, websocket_manager

__all__ = [
    "ChatRequestWorkflow",
    "RealtimeDispatcher",
    "GroupService",
    "MessageService",
    "HttpParticipantDirectory",
    "Participant",
    "ParticipantDirectory",
    "ParticipantProfile",
    "Role",
    "PresenceService",
    "PresenceTracker",
    "MessagingSession",
    "TypingBroadcaster",
    "TypingObserver",
    "TypingService",
    "WebSocketManager",
    "websocket_manager",
]

"""Services package for Bloker session logic."""

from .session_service import SessionService
from .deadline_supervisor import DeadlineSupervisor
from .stats_service import StatsService, PlayerLedger
from .chat_service import ChatService, ChatMessage

__all__ = [
    "SessionService",
    "DeadlineSupervisor",
    "StatsService",
    "PlayerLedger",
    "ChatService",
    "ChatMessage",
]

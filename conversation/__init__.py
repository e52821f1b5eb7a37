# Voice Conversation - Conversation Package
from .config import ConversationConfig, SessionState, load_config
from .focus import AssessmentFocus, next_focus
from .manager import (
    ConversationManager,
    ConversationMetrics,
    ConversationState,
    ConversationSummary,
    Speaker,
    Turn,
)
from .session import VoiceConversation, main

__all__ = [
    "ConversationConfig",
    "SessionState",
    "load_config",
    "AssessmentFocus",
    "next_focus",
    "ConversationManager",
    "ConversationMetrics",
    "ConversationState",
    "ConversationSummary",
    "Speaker",
    "Turn",
    "VoiceConversation",
    "main",
]

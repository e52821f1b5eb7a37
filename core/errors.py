"""
Voice Conversation - Errors
===========================

Exception types shared by the core components and the conversation layer.

Collaborator errors (transcription, generation, timeouts) are recovered inside
the conversation manager. Busy and invalid-state errors are raised to the
caller, and so are audio source errors from the VAD.
"""


class VoiceConversationError(Exception):
    """Base class for all voice conversation errors."""


class AudioSourceError(VoiceConversationError):
    """The audio source could not be opened for energy analysis."""


class CollaboratorError(VoiceConversationError):
    """An external AI service failed."""


class TranscriptionError(CollaboratorError):
    """Speech-to-text failed (empty, unintelligible or malformed audio, or service down)."""


class GenerationError(CollaboratorError):
    """Response generation failed (service down or invalid focus)."""


class CollaboratorTimeoutError(CollaboratorError):
    """A collaborator did not answer within its time budget."""


class ConversationBusyError(VoiceConversationError):
    """A user turn is already being processed for this conversation."""


class InvalidStateError(VoiceConversationError):
    """Operation not allowed in the conversation's current state."""


class CollaboratorBusyError(CollaboratorError):
    """A collaborator is still running a call that timed out."""

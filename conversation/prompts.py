"""
Canned lines used when an AI service is unavailable.
"""

from datetime import datetime
from typing import Optional
import random


# Substituted for the user's words when transcription fails
TRANSCRIPTION_PLACEHOLDER = "[Speech unclear - transcription failed]"

# Substituted for the reply when generation fails
FALLBACK_RESPONSES = (
    "That's interesting. Could you tell me more about that?",
    "I'd love to hear more. What happened next?",
    "That sounds nice. How did that make you feel?",
    "Interesting. Can you describe that in more detail?",
    "Tell me more about what you mean by that.",
    "That's a good point. What made you think of that?",
)

FALLBACK_GREETINGS = (
    "Good {time_of_day}, {user_name}! It's wonderful to see you today. How are you feeling?",
    "Hello {user_name}! I hope you're having a lovely {time_of_day}. "
    "I'd love to hear about what's been going on in your life lately.",
    "Hi {user_name}! Thank you for taking the time to chat with me this {time_of_day}. What's on your mind?",
    "Good {time_of_day}! I'm here to have a nice conversation with you. How has your day been so far?",
    "Hello {user_name}! Let's have a pleasant conversation together. How are things with you today?",
)


def get_time_of_day(now: Optional[datetime] = None) -> str:
    hour = (now or datetime.now()).hour
    if hour < 12:
        return "morning"
    if hour < 18:
        return "afternoon"
    return "evening"


def fallback_greeting(
    user_name: str = "",
    time_of_day: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> str:
    """Pick an opening line from FALLBACK_GREETINGS."""
    template = (rng or random).choice(FALLBACK_GREETINGS)
    return template.format(
        time_of_day=time_of_day or get_time_of_day(),
        user_name=user_name or "there",
    )

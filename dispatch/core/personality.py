"""
Personality aggregate.

Carries prompt/model preferences for the reasoning service and the learned
AttentionState. Only the attention state changes after creation, and only
through the attention store's versioned writes.
"""
import uuid
from dataclasses import dataclass, field
from typing import Optional

from dispatch.core.attention import AttentionState

DEFAULT_SYSTEM_PROMPT = (
    "You are a voice assistant. Use the provided tools to fulfill the user's "
    "request. When the request is complete, reply with a short confirmation."
)


@dataclass
class Personality:
    name: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    base_model: Optional[str] = None  # None = reasoning config default
    temperature: float = 0.2
    max_tokens: int = 1024
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    user_prompt_template: str = "{input}"
    is_active: bool = True
    attention: AttentionState = field(default_factory=AttentionState)

    def render_user_prompt(self, utterance: str) -> str:
        return self.user_prompt_template.replace("{input}", utterance)

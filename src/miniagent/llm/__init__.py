"""Model abstraction layer — messages and the completion capability."""

from miniagent.llm.message import Message, Role
from miniagent.llm.provider import (
    LiteLLMProvider,
    ModelCapability,
    ModelError,
    ProviderConfig,
    create_provider,
)

__all__ = [
    "Message",
    "Role",
    "LiteLLMProvider",
    "ModelCapability",
    "ModelError",
    "ProviderConfig",
    "create_provider",
]

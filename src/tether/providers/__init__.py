from tether.providers.base import Provider, ProviderRequest
from tether.providers.model import PydanticAIProvider, to_model_messages

__all__ = ["Provider", "ProviderRequest", "PydanticAIProvider", "to_model_messages"]

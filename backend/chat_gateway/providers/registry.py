from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, List, Optional

from chat_gateway.core.config import settings
from chat_gateway.providers.a2a_provider import A2AProvider
from chat_gateway.providers.base import Provider
from chat_gateway.providers.openai_provider import OpenAIProvider
from chat_gateway.providers.reasoning import ReasoningProvider


@dataclass(frozen=True)
class ChatModel:
    id: str
    name: str
    description: str
    # Output must be collapsed by the part normalizer before storage
    requires_normalization: bool = False
    tools_enabled: bool = False
    selectable: bool = True


DEFAULT_CHAT_MODEL = "chat-model"

CHAT_MODELS: List[ChatModel] = [
    ChatModel(
        id="chat-model",
        name="OpenAI GPT-4 Vision",
        description="OpenAI GPT-4 model with multimodal vision and text capabilities",
        tools_enabled=True,
    ),
    ChatModel(
        id="chat-model-reasoning",
        name="OpenAI GPT-4 Reasoning",
        description="GPT-4 model optimized for advanced chain-of-thought reasoning on complex problems",
    ),
    ChatModel(
        id="a2a-model",
        name="A2A Chat",
        description="Chat powered by on-prem A2A AI server",
        requires_normalization=True,
    ),
    ChatModel(
        id="title-model",
        name="Title",
        description="Generates chat titles",
        selectable=False,
    ),
    ChatModel(
        id="artifact-model",
        name="Artifact",
        description="Generates document contents for tools",
        selectable=False,
    ),
]

_CATALOG: Dict[str, ChatModel] = {model.id: model for model in CHAT_MODELS}


def is_selectable_model(model_id: str) -> bool:
    model = _CATALOG.get(model_id)
    return model is not None and model.selectable


def selectable_models() -> List[ChatModel]:
    return [model for model in CHAT_MODELS if model.selectable]


class UnknownModelError(KeyError):
    pass


class ModelRegistry:
    """Maps catalog model ids to backend handles."""

    def __init__(self, providers: Optional[Dict[str, Provider]] = None):
        self._providers: Dict[str, Provider] = dict(providers or {})

    def register(self, model_id: str, provider: Provider) -> None:
        if model_id not in _CATALOG:
            raise UnknownModelError(model_id)
        self._providers[model_id] = provider

    def model(self, model_id: str) -> ChatModel:
        try:
            return _CATALOG[model_id]
        except KeyError:
            raise UnknownModelError(model_id) from None

    def resolve(self, model_id: str) -> Provider:
        try:
            return self._providers[model_id]
        except KeyError:
            raise UnknownModelError(model_id) from None

    def requires_normalization(self, model_id: str) -> bool:
        return self.model(model_id).requires_normalization


def build_default_registry() -> ModelRegistry:
    openai_model = settings.OPENAI_MODEL
    return ModelRegistry(
        {
            "chat-model": OpenAIProvider(openai_model),
            "chat-model-reasoning": ReasoningProvider(OpenAIProvider(openai_model), tag="think"),
            "title-model": OpenAIProvider(openai_model),
            "artifact-model": OpenAIProvider(openai_model),
            "a2a-model": A2AProvider(settings.A2A_BASE_URL),
        }
    )


@lru_cache
def get_registry() -> ModelRegistry:
    return build_default_registry()

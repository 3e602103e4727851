from typing import Any

from inndesign.config import ProviderConfig
from inndesign.providers.base import ImageProvider, RequestThrottle
from inndesign.providers.openai import OpenAIProvider
from inndesign.providers.replicate import ReplicateProvider
from inndesign.types import ProviderId

PROVIDER_CLASSES: dict[ProviderId, type[ImageProvider]] = {
    ProviderId.REPLICATE: ReplicateProvider,
    ProviderId.OPENAI: OpenAIProvider,
}

PROVIDER_CAPABILITIES: dict[ProviderId, dict[str, Any]] = {
    ProviderId.REPLICATE: {
        "label": "Replicate",
        "models": list(ReplicateProvider.models),
        "batching": True,
        "requiresKey": "REPLICATE_API_TOKEN",
    },
    ProviderId.OPENAI: {
        "label": "OpenAI",
        "models": list(OpenAIProvider.models),
        "batching": False,
        "requiresKey": "OPENAI_API_KEY",
    },
}


def build_providers(configs: dict[ProviderId, ProviderConfig]) -> dict[ProviderId, ImageProvider]:
    return {provider_id: PROVIDER_CLASSES[provider_id](config) for provider_id, config in configs.items()}


__all__ = [
    "PROVIDER_CAPABILITIES",
    "PROVIDER_CLASSES",
    "ImageProvider",
    "OpenAIProvider",
    "ReplicateProvider",
    "RequestThrottle",
    "build_providers",
]

from collections.abc import Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest

from inndesign.config import ProviderConfig
from inndesign.costs import CostGuard
from inndesign.orchestrator import Orchestrator
from inndesign.providers.base import ImageProvider
from inndesign.types import (
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    PromptTemplate,
    ProviderId,
)


class FakeProvider(ImageProvider):
    """Scripted backend. ``failures`` is consumed one entry per call; ``None`` means succeed."""

    models = ("fake-v1", "fake-v2")
    default_model = "fake-v1"
    default_base_url = "https://fake.invalid"

    def __init__(
        self,
        provider_id: ProviderId,
        *,
        max_retries: int = 3,
        per_image: float = 0.1,
        available: bool = True,
        failures: Sequence[BaseException | None] = (),
    ):
        self.provider_id = provider_id
        self.provider_name = provider_id.value.title()
        super().__init__(ProviderConfig(api_key="test-key", max_retries=max_retries))
        self.per_image = per_image
        self.available = available
        self.failures = list(failures)
        self.calls: list[tuple[str, GenerationOptions, list[str]]] = []

    async def is_available(self) -> bool:
        return self.available

    def default_options(self) -> GenerationOptions:
        return GenerationOptions(model=self.default_model)

    def interior_design_options(self, style: str) -> GenerationOptions:
        return self.default_options()

    def estimate_cost(self, options: GenerationOptions) -> float:
        return self.per_image * options.num_outputs

    async def generate_image(self, prompt, options, variation_prompts=None) -> GenerationResult:
        self.calls.append((prompt, options, list(variation_prompts or [])))
        if self.failures:
            failure = self.failures.pop(0)
            if failure is not None:
                raise failure
        return GenerationResult(
            success=True,
            images=tuple(f"https://img.test/{self.provider_id.value}/{i}.png" for i in range(options.num_outputs)),
            cost=self.estimate_cost(options),
            model_used=options.model or self.default_model,
            parameters=options,
            metadata={"provider": self.provider_id.value},
        )


def make_template(**overrides) -> PromptTemplate:
    fields = {
        "room_type": "bedroom",
        "style_preference": "modern",
        "size": "medium",
        "budget_level": "mid_range",
    }
    fields.update(overrides)
    return PromptTemplate(**fields)


def make_request(template: PromptTemplate | None = None, **overrides) -> GenerationRequest:
    fields = {
        "user_id": "user-1",
        "design_id": "design-1",
        "prompt_template": template or make_template(),
    }
    fields.update(overrides)
    return GenerationRequest(**fields)


def mock_response(status_code: int = 200, json_data=None, content: bytes = b"", text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.json.return_value = json_data if json_data is not None else {}
    resp.content = content
    resp.text = text
    return resp


def mock_client(post=(), get=(), request=()) -> AsyncMock:
    """httpx.AsyncClient stand-in returning the given responses in order."""
    client = AsyncMock()
    client.post.side_effect = list(post)
    client.get.side_effect = list(get)
    client.request.side_effect = list(request)
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    return client


@pytest.fixture
def primary() -> FakeProvider:
    return FakeProvider(ProviderId.REPLICATE, max_retries=3)


@pytest.fixture
def fallback() -> FakeProvider:
    return FakeProvider(ProviderId.OPENAI, max_retries=2)


@pytest.fixture
def guard() -> CostGuard:
    return CostGuard()


@pytest.fixture
def orchestrator(primary, fallback, guard) -> Orchestrator:
    return Orchestrator(
        {ProviderId.REPLICATE: primary, ProviderId.OPENAI: fallback},
        guard,
        default_provider=ProviderId.REPLICATE,
        fallback_provider=ProviderId.OPENAI,
        backoff_base=0,
    )

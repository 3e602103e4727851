"""Core value types shared by the prompt builder, providers and orchestrator."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from inndesign.errors import ErrorRecord


class ProviderId(str, Enum):
    REPLICATE = "replicate"
    OPENAI = "openai"


class BudgetTier(str, Enum):
    BUDGET = "budget"
    MID_RANGE = "mid_range"
    LUXURY = "luxury"


class RequestState(str, Enum):
    ADMITTED = "admitted"
    PROMPT_BUILT = "prompt_built"
    PROVIDER_SELECTED = "provider_selected"
    DISPATCHED = "dispatched"
    FALLBACK_TRIGGERED = "fallback_triggered"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class PromptTemplate:
    room_type: str
    style_preference: str
    size: str
    budget_level: BudgetTier | str
    color_scheme: str | None = None
    material_preferences: tuple[str, ...] = ()
    additional_requirements: str | None = None
    uploaded_image_context: str | None = None


@dataclass(frozen=True)
class GenerationOptions:
    model: str | None = None
    width: int = 1024
    height: int = 1024
    num_outputs: int = 1
    guidance_scale: float | None = None
    num_inference_steps: int | None = None
    seed: int | None = None
    style: str | None = None
    quality: str = "standard"  # "standard" | "hd"

    def as_dict(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass(frozen=True)
class GenerationRequest:
    user_id: str
    design_id: str
    prompt_template: PromptTemplate
    provider: ProviderId | None = None
    model: str | None = None
    variation_count: int | None = None
    is_regeneration: bool = False


@dataclass(frozen=True)
class GenerationResult:
    success: bool
    images: tuple[str, ...]
    cost: float
    model_used: str
    parameters: GenerationOptions
    metadata: dict[str, Any] = field(default_factory=dict)
    error: ErrorRecord | None = None

    @classmethod
    def failure(
        cls,
        error: ErrorRecord,
        *,
        model_used: str = "",
        parameters: GenerationOptions | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "GenerationResult":
        return cls(
            success=False,
            images=(),
            cost=0.0,
            model_used=model_used,
            parameters=parameters or GenerationOptions(),
            metadata=metadata or {},
            error=error,
        )

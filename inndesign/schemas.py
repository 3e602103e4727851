from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class DesignPreferences(BaseModel):
    room_type: str
    style_preference: str
    size: str = "medium"
    budget_level: str = "mid_range"
    color_scheme: str | None = None
    material_preferences: list[str] = Field(default_factory=list)
    additional_requirements: str | None = None


class GenerateDesignRequest(BaseModel):
    user_id: str
    design_id: str
    preferences: DesignPreferences
    provider: str | None = None
    model: str | None = None
    num_variations: int | None = None
    uploaded_image_context: str | None = None
    is_regeneration: bool = False


class GenerateDesignResponse(BaseModel):
    success: bool
    images: list[str]
    cost_usd: float
    model_used: str
    provider: str
    parameters: dict[str, Any]
    metadata: dict[str, Any]


class CostEstimateResponse(BaseModel):
    estimated_cost_usd: float
    provider: str
    num_variations: int


class CostSummaryResponse(BaseModel):
    user_id: str
    total_cost: float
    today_cost: float
    month_cost: float
    generation_count: int
    last_generation: datetime | None
    daily_limit: float
    monthly_limit: float
    can_generate: bool
    remaining_daily_budget: float
    daily_usage_percent: float
    monthly_usage_percent: float


class CostCheckResponse(BaseModel):
    allowed: bool
    reason: str | None = None
    limit_kind: str | None = None
    current_cost: float
    limit: float
    estimated_cost: float


class CostLimitsRequest(BaseModel):
    daily_limit_usd: float | None = None
    monthly_limit_usd: float | None = None


class CostLimitsResponse(BaseModel):
    daily_limit_usd: float
    monthly_limit_usd: float

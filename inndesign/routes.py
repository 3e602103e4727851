from typing import Any

from fastapi import APIRouter, Query, Request

from inndesign import handlers
from inndesign.orchestrator import Orchestrator
from inndesign.schemas import (
    CostCheckResponse,
    CostEstimateResponse,
    CostLimitsRequest,
    CostLimitsResponse,
    CostSummaryResponse,
    GenerateDesignRequest,
    GenerateDesignResponse,
)

router = APIRouter()


def _orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


@router.post("/api/designs/generate", response_model=GenerateDesignResponse)
async def generate_design(payload: GenerateDesignRequest, request: Request) -> dict:
    return await handlers.handle_generate(_orchestrator(request), payload)


@router.get("/api/providers")
async def get_providers(request: Request) -> dict[str, Any]:
    return await handlers.handle_providers(_orchestrator(request))


@router.get("/api/providers/{provider}/models")
async def get_provider_models(provider: str, request: Request) -> dict:
    return await handlers.handle_provider_models(_orchestrator(request), provider)


@router.post("/api/costs/estimate", response_model=CostEstimateResponse)
async def estimate_cost(payload: GenerateDesignRequest, request: Request) -> dict:
    return await handlers.handle_estimate(_orchestrator(request), payload)


@router.post("/api/costs/limits", response_model=CostLimitsResponse)
async def set_cost_limits(payload: CostLimitsRequest, request: Request) -> dict:
    return await handlers.handle_cost_limits(_orchestrator(request), payload)


@router.get("/api/costs/admin/top-users")
async def get_top_users(request: Request, limit: int = Query(10, ge=1, le=100)) -> list[dict]:
    return await handlers.handle_top_users(_orchestrator(request), limit)


@router.get("/api/costs/admin/trend")
async def get_cost_trend(request: Request, days: int = Query(30, ge=1, le=366)) -> list[dict]:
    return await handlers.handle_cost_trend(_orchestrator(request), days)


@router.get("/api/costs/{user_id}", response_model=CostSummaryResponse)
async def get_user_costs(user_id: str, request: Request) -> dict:
    return await handlers.handle_cost_summary(_orchestrator(request), user_id)


@router.get("/api/costs/{user_id}/check", response_model=CostCheckResponse)
async def check_user_cost(user_id: str, request: Request, cost: float = Query(...)) -> dict:
    return await handlers.handle_cost_check(_orchestrator(request), user_id, cost)


@router.delete("/api/costs/{user_id}")
async def reset_user_costs(user_id: str, request: Request) -> dict:
    return await handlers.handle_cost_reset(_orchestrator(request), user_id)

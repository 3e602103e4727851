"""Core handler functions. No FastAPI routing types; used by the REST routes."""

from dataclasses import asdict
from typing import Any

from fastapi import HTTPException

from inndesign.config import settings
from inndesign.errors import GenerationFailedError
from inndesign.orchestrator import Orchestrator
from inndesign.providers import PROVIDER_CAPABILITIES
from inndesign.schemas import CostLimitsRequest, GenerateDesignRequest
from inndesign.types import GenerationRequest, PromptTemplate, ProviderId


def _parse_provider(provider: str | None) -> ProviderId | None:
    if not provider:
        return None
    try:
        return ProviderId(provider)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unsupported provider: {provider}") from None


def _percent(used: float, limit: float) -> float:
    if limit <= 0:
        return 100.0 if used > 0 else 0.0
    return round(used / limit * 100, 2)


def to_generation_request(payload: GenerateDesignRequest) -> GenerationRequest:
    prefs = payload.preferences
    return GenerationRequest(
        user_id=payload.user_id,
        design_id=payload.design_id,
        prompt_template=PromptTemplate(
            room_type=prefs.room_type,
            style_preference=prefs.style_preference,
            size=prefs.size,
            budget_level=prefs.budget_level,
            color_scheme=prefs.color_scheme,
            material_preferences=tuple(prefs.material_preferences),
            additional_requirements=prefs.additional_requirements,
            uploaded_image_context=payload.uploaded_image_context,
        ),
        provider=_parse_provider(payload.provider),
        model=payload.model,
        variation_count=payload.num_variations,
        is_regeneration=payload.is_regeneration,
    )


async def handle_generate(orchestrator: Orchestrator, payload: GenerateDesignRequest) -> dict:
    if not payload.user_id.strip() or not payload.design_id.strip():
        raise HTTPException(status_code=400, detail="user_id and design_id are required.")

    result = await orchestrator.generate_design(to_generation_request(payload))
    if not result.success:
        raise GenerationFailedError(result.error)

    return {
        "success": True,
        "images": list(result.images),
        "cost_usd": round(result.cost, 6),
        "model_used": result.model_used,
        "provider": result.metadata.get("provider", ""),
        "parameters": result.parameters.as_dict(),
        "metadata": result.metadata,
    }


async def handle_providers(orchestrator: Orchestrator) -> dict[str, Any]:
    providers = {}
    for provider_id, details in PROVIDER_CAPABILITIES.items():
        providers[provider_id.value] = {
            **details,
            "hasKey": bool(settings.get(details["requiresKey"])),
            "configured": provider_id in orchestrator.providers,
        }
    fallback = orchestrator.fallback_provider
    return {
        "providers": providers,
        "default": orchestrator.default_provider.value,
        "fallback": fallback.value if fallback else None,
    }


async def handle_provider_models(orchestrator: Orchestrator, provider: str) -> dict:
    provider_id = _parse_provider(provider)
    return {"provider": provider_id.value, "models": orchestrator.get_provider_models(provider_id)}


async def handle_estimate(orchestrator: Orchestrator, payload: GenerateDesignRequest) -> dict:
    request = to_generation_request(payload)
    if request.variation_count is not None and not 1 <= request.variation_count <= orchestrator.max_variations:
        raise HTTPException(
            status_code=400,
            detail=f"num_variations must be between 1 and {orchestrator.max_variations}",
        )
    try:
        estimate = orchestrator.estimate_generation_cost(request)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    provider = request.provider or orchestrator.default_provider
    return {
        "estimated_cost_usd": round(estimate, 6),
        "provider": provider.value,
        "num_variations": request.variation_count or orchestrator.default_variations,
    }


async def handle_cost_summary(orchestrator: Orchestrator, user_id: str) -> dict:
    summary = await orchestrator.get_user_cost(user_id)
    return {
        "user_id": user_id,
        **asdict(summary),
        "daily_usage_percent": _percent(summary.today_cost, summary.daily_limit),
        "monthly_usage_percent": _percent(summary.month_cost, summary.monthly_limit),
    }


async def handle_cost_check(orchestrator: Orchestrator, user_id: str, cost: float) -> dict:
    if cost < 0:
        raise HTTPException(status_code=400, detail="cost must be non-negative.")
    decision = await orchestrator.check_cost_limit(user_id, cost)
    return {
        "allowed": decision.allowed,
        "reason": decision.reason,
        "limit_kind": decision.limit_kind,
        "current_cost": decision.current_cost,
        "limit": decision.limit,
        "estimated_cost": decision.estimated_cost,
    }


async def handle_cost_reset(orchestrator: Orchestrator, user_id: str) -> dict:
    await orchestrator.reset_user_cost(user_id)
    return {"user_id": user_id, "reset": True}


async def handle_cost_limits(orchestrator: Orchestrator, payload: CostLimitsRequest) -> dict:
    try:
        if payload.daily_limit_usd is not None:
            orchestrator.set_daily_limit(payload.daily_limit_usd)
        if payload.monthly_limit_usd is not None:
            orchestrator.set_monthly_limit(payload.monthly_limit_usd)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "daily_limit_usd": orchestrator.cost_guard.daily_limit,
        "monthly_limit_usd": orchestrator.cost_guard.monthly_limit,
    }


async def handle_top_users(orchestrator: Orchestrator, limit: int) -> list[dict]:
    return await orchestrator.cost_guard.get_top_users(limit)


async def handle_cost_trend(orchestrator: Orchestrator, days: int) -> list[dict]:
    return await orchestrator.cost_guard.get_daily_trend(days)

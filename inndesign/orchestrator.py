"""Design generation orchestration.

``Orchestrator.generate_design`` drives one request through admission,
prompt construction, provider selection, bounded retry with a single
fallback, optional persistence and cost recording. It never raises for a
generation failure; every outcome is a ``GenerationResult`` whose
``metadata["state"]`` holds the final ``RequestState``.
"""

import asyncio
import logging
import time
from dataclasses import replace
from functools import partial
from typing import Any

from inndesign.config import (
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_DAILY_LIMIT_USD,
    DEFAULT_MAX_VARIATIONS,
    DEFAULT_MONTHLY_LIMIT_USD,
    DEFAULT_NUM_VARIATIONS,
    DEFAULT_STORAGE_BUCKET,
    Settings,
    default_provider,
    fallback_provider,
    provider_configs,
    settings,
)
from inndesign.costs import AdmissionDecision, CostEntry, CostGuard, CostSummary
from inndesign.errors import (
    ErrorClassifier,
    ErrorCode,
    ErrorRecord,
    InvalidPromptError,
    ProviderError,
    StorageError,
    format_for_logging,
    make_error,
)
from inndesign.prompts import PromptBuilder, parse_budget_tier
from inndesign.providers import PROVIDER_CLASSES, ImageProvider, build_providers
from inndesign.storage import DesignStorage
from inndesign.types import (
    BudgetTier,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    ProviderId,
    RequestState,
)

logger = logging.getLogger("inndesign.orchestrator")

WIDE_ROOMS = {"living_room", "dining_room"}
TALL_ROOMS = {"bathroom"}
STORAGE_ATTEMPTS = 3


def _backoff_delay(base: float, attempt: int) -> float:
    """Wait before retry number ``attempt + 1``; attempts count from 0."""
    return base * 2 ** (attempt + 1)


def _reap_detached(design_id: str, call: "asyncio.Future[GenerationResult]") -> None:
    if call.cancelled():
        return
    exc = call.exception()
    if exc is not None:
        logger.warning("Detached generation for design %s failed after cancellation: %s", design_id, exc)


class Orchestrator:
    def __init__(
        self,
        providers: dict[ProviderId, ImageProvider],
        cost_guard: CostGuard,
        *,
        prompt_builder: PromptBuilder | None = None,
        classifier: ErrorClassifier | None = None,
        default_provider: ProviderId = ProviderId.REPLICATE,
        fallback_provider: ProviderId | None = ProviderId.OPENAI,
        storage: DesignStorage | None = None,
        max_variations: int = DEFAULT_MAX_VARIATIONS,
        default_variations: int = DEFAULT_NUM_VARIATIONS,
        backoff_base: float = 1.0,
    ) -> None:
        self.providers = providers
        self.cost_guard = cost_guard
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.classifier = classifier or ErrorClassifier()
        self.default_provider = default_provider
        self.fallback_provider = fallback_provider
        self.storage = storage
        self.max_variations = max_variations
        self.default_variations = default_variations
        self.backoff_base = backoff_base

    # --- Option tuning ---

    def _adjust_for_budget(self, options: GenerationOptions, tier: BudgetTier) -> GenerationOptions:
        if tier == BudgetTier.BUDGET:
            return replace(options, num_outputs=min(options.num_outputs, 2), quality="standard")
        if tier == BudgetTier.LUXURY:
            steps = options.num_inference_steps
            return replace(
                options,
                num_outputs=max(options.num_outputs, 4),
                quality="hd",
                num_inference_steps=max(steps, 60) if steps is not None else None,
            )
        return options

    def _adjust_for_room(self, options: GenerationOptions, room_type: str) -> GenerationOptions:
        room = room_type.strip().lower()
        if room in WIDE_ROOMS:
            return replace(options, width=1792, height=1024)
        if room in TALL_ROOMS:
            return replace(options, width=1024, height=1792)
        return options

    def _tune_options(self, provider: ImageProvider, request: GenerationRequest) -> GenerationOptions:
        template = request.prompt_template
        options = provider.interior_design_options(template.style_preference)
        options = replace(options, num_outputs=self.default_variations)
        options = self._adjust_for_budget(options, parse_budget_tier(template.budget_level))
        options = self._adjust_for_room(options, template.room_type)
        if request.variation_count is not None:
            options = replace(options, num_outputs=request.variation_count)
        if request.model and provider.supports_model(request.model):
            options = replace(options, model=request.model)
        return replace(options, num_outputs=max(1, min(options.num_outputs, self.max_variations)))

    def _candidates(self, requested: ProviderId | None) -> list[ImageProvider]:
        candidates = []
        for provider_id in (requested or self.default_provider, self.fallback_provider):
            provider = self.providers.get(provider_id) if provider_id else None
            if provider is not None and provider not in candidates:
                candidates.append(provider)
        return candidates

    def _estimate(self, request: GenerationRequest) -> float:
        estimates = [p.estimate_cost(self._tune_options(p, request)) for p in self._candidates(request.provider)]
        return max(estimates, default=0.0)

    # --- Request lifecycle ---

    def _enter(self, request: GenerationRequest, trail: list[str], state: RequestState, detail: str = "") -> None:
        trail.append(state.value)
        logger.debug("Design %s -> %s %s", request.design_id, state.value, detail)

    def _failure(
        self,
        request: GenerationRequest,
        error: ErrorRecord,
        state: RequestState,
        trail: list[str] | None = None,
        **metadata: Any,
    ) -> GenerationResult:
        trail = trail if trail is not None else []
        self._enter(request, trail, state, error.code.value)
        context = {"user_id": request.user_id, "design_id": request.design_id, "state": state.value, **metadata}
        logger.warning("Design generation failed: %s", format_for_logging(error, context))
        return GenerationResult.failure(
            error,
            metadata={
                "state": state.value,
                "design_id": request.design_id,
                "user_id": request.user_id,
                "transitions": list(trail),
                **metadata,
            },
        )

    def _validate(self, request: GenerationRequest) -> ErrorRecord | None:
        count = request.variation_count
        if count is not None and not 1 <= count <= self.max_variations:
            return make_error(
                ErrorCode.INVALID_PROMPT,
                f"Variation count must be between 1 and {self.max_variations}, got {count}",
                user_message=f"Please request between 1 and {self.max_variations} variations.",
                details={"field": "variation_count"},
            )
        if request.model and not any(p.supports_model(request.model) for p in self.providers.values()):
            return make_error(
                ErrorCode.INVALID_PROMPT,
                f"Unsupported model: {request.model}",
                user_message="The selected AI model is not available. Please try a different model.",
                details={"field": "model"},
            )
        try:
            self.prompt_builder.validate(request.prompt_template)
        except InvalidPromptError as exc:
            return self.classifier.classify(None, exc)
        return None

    async def _select_provider(self, requested: ProviderId | None) -> ImageProvider | None:
        target_id = requested or self.default_provider
        target = self.providers.get(target_id)
        if target is not None and await target.is_available():
            return target
        fallback = self.providers.get(self.fallback_provider) if self.fallback_provider else None
        if fallback is not None and fallback is not target and await fallback.is_available():
            logger.warning("Provider %s unavailable, using fallback %s", target_id.value, fallback.provider_id.value)
            return fallback
        return None

    async def generate_design(self, request: GenerationRequest) -> GenerationResult:
        started = time.monotonic()

        invalid = self._validate(request)
        if invalid is not None:
            return self._failure(request, invalid, RequestState.REJECTED)

        estimate = self._estimate(request)
        decision = await self.cost_guard.reserve(request.user_id, estimate)
        if not decision.allowed:
            error = make_error(
                ErrorCode.COST_LIMIT_EXCEEDED,
                decision.reason or "Cost limit exceeded",
                details={
                    "limit_kind": decision.limit_kind,
                    "current_cost": decision.current_cost,
                    "limit": decision.limit,
                    "estimated_cost": estimate,
                },
            )
            return self._failure(request, error, RequestState.REJECTED)

        reservation = decision.reservation
        recorded = False
        trail: list[str] = []
        try:
            logger.info(
                "Generation admitted for user %s design %s (estimate $%.4f)",
                request.user_id, request.design_id, estimate,
            )
            self._enter(request, trail, RequestState.ADMITTED)
            try:
                base_prompt = self.prompt_builder.build_prompt(request.prompt_template)
            except InvalidPromptError as exc:
                return self._failure(request, self.classifier.classify(None, exc), RequestState.REJECTED, trail)
            self._enter(request, trail, RequestState.PROMPT_BUILT)

            provider = await self._select_provider(request.provider)
            if provider is None:
                error = make_error(
                    ErrorCode.PROVIDER_UNAVAILABLE,
                    "No configured image provider is available",
                )
                return self._failure(request, replace(error, retryable=False), RequestState.REJECTED, trail)
            self._enter(request, trail, RequestState.PROVIDER_SELECTED, provider.provider_id.value)

            outcome = await self._dispatch_with_retry(request, provider, base_prompt, trail)
            if not outcome.success:
                return outcome

            images = outcome.images
            if self.storage is not None:
                try:
                    images = await self._persist(request, images)
                except StorageError as exc:
                    error = self.classifier.classify(None, exc)
                    return self._failure(
                        request, error, RequestState.EXHAUSTED, trail, attempts=outcome.metadata["attempts"],
                    )

            entry = CostEntry(
                user_id=request.user_id,
                design_id=request.design_id,
                provider=outcome.metadata["provider"],
                model=outcome.model_used,
                cost_usd=outcome.cost,
                parameters=outcome.parameters.as_dict(),
            )
            await self.cost_guard.record_cost(entry, reservation)
            recorded = True

            self._enter(request, trail, RequestState.SUCCEEDED)
            logger.info(
                "Generated %d image(s) for design %s via %s ($%.4f)",
                len(images), request.design_id, entry.provider, outcome.cost,
            )
            return replace(
                outcome,
                images=tuple(images),
                metadata={
                    **outcome.metadata,
                    "state": RequestState.SUCCEEDED.value,
                    "design_id": request.design_id,
                    "user_id": request.user_id,
                    "original_prompt": base_prompt,
                    "processing_time": time.monotonic() - started,
                    "transitions": list(trail),
                },
            )
        finally:
            if not recorded and reservation is not None:
                await self.cost_guard.release(reservation)

    async def _dispatch_with_retry(
        self,
        request: GenerationRequest,
        provider: ImageProvider,
        base_prompt: str,
        trail: list[str],
    ) -> GenerationResult:
        """Retry on the chosen provider, then switch once to the fallback."""
        tried: list[ProviderId] = []
        attempts = 0
        last_error: ErrorRecord | None = None
        current: ImageProvider | None = provider

        while current is not None:
            tried.append(current.provider_id)
            options = self._tune_options(current, request)
            prompt = self.prompt_builder.optimize_for_provider(base_prompt, current.provider_id)
            variations = [
                self.prompt_builder.optimize_for_provider(p, current.provider_id)
                for p in self.prompt_builder.build_variation_prompts(base_prompt, options.num_outputs)
            ]

            for attempt in range(current.max_retries):
                attempts += 1
                self._enter(request, trail, RequestState.DISPATCHED, f"{current.provider_id.value}#{attempt + 1}")
                logger.info(
                    "Dispatching design %s to %s (attempt %d/%d)",
                    request.design_id, current.provider_id.value, attempt + 1, current.max_retries,
                )
                try:
                    call = asyncio.ensure_future(current.generate_image(prompt, options, variations))
                    try:
                        # a cancelled caller stops retrying but leaves the backend call running
                        result = await asyncio.shield(call)
                    except asyncio.CancelledError:
                        call.add_done_callback(partial(_reap_detached, request.design_id))
                        raise
                    if len(result.images) != options.num_outputs:
                        raise ProviderError(
                            current.provider_id.value,
                            f"Expected {options.num_outputs} images, got {len(result.images)}",
                        )
                except Exception as exc:
                    last_error = self.classifier.classify(current.provider_id, exc)
                    if not last_error.retryable:
                        return self._failure(
                            request,
                            last_error,
                            RequestState.EXHAUSTED,
                            trail,
                            provider=current.provider_id.value,
                            attempts=attempts,
                        )
                    if attempt < current.max_retries - 1:
                        await asyncio.sleep(_backoff_delay(self.backoff_base, attempt))
                    continue

                return replace(
                    result,
                    metadata={
                        **result.metadata,
                        "provider": current.provider_id.value,
                        "attempts": attempts,
                        "fallback_used": len(tried) > 1,
                        "optimized_prompt": prompt,
                    },
                )

            fallback = self.providers.get(self.fallback_provider) if self.fallback_provider else None
            if fallback is None or fallback.provider_id in tried:
                break
            logger.warning(
                "Provider %s exhausted after %d attempt(s), falling back to %s",
                current.provider_id.value, attempts, fallback.provider_id.value,
            )
            self._enter(request, trail, RequestState.FALLBACK_TRIGGERED, fallback.provider_id.value)
            current = fallback

        error = make_error(
            ErrorCode.GENERATION_FAILED,
            f"All generation attempts failed ({attempts})",
            details={
                "last_error": {
                    "code": last_error.code.value,
                    "message": last_error.message,
                } if last_error else None,
                "providers": [p.value for p in tried],
            },
            cause=last_error.cause if last_error else None,
        )
        return self._failure(
            request, replace(error, retryable=False), RequestState.EXHAUSTED, trail, attempts=attempts,
        )

    async def _persist(self, request: GenerationRequest, images: tuple[str, ...]) -> list[str]:
        # a failed batch removes its partial uploads, so every attempt starts clean
        for attempt in range(STORAGE_ATTEMPTS):
            try:
                return await self.storage.upload_design_images(
                    request.design_id,
                    list(images),
                    is_regeneration=request.is_regeneration,
                )
            except StorageError as exc:
                if attempt == STORAGE_ATTEMPTS - 1:
                    raise
                logger.warning("Storing images for design %s failed, retrying: %s", request.design_id, exc)
                await asyncio.sleep(_backoff_delay(self.backoff_base, attempt))
        raise StorageError("Storage retries exhausted")

    # --- Administration ---

    async def get_user_cost(self, user_id: str) -> CostSummary:
        return await self.cost_guard.get_summary(user_id)

    async def check_cost_limit(self, user_id: str, estimated_cost: float) -> AdmissionDecision:
        return await self.cost_guard.check_admission(user_id, estimated_cost)

    async def reset_user_cost(self, user_id: str) -> None:
        await self.cost_guard.reset_user(user_id)

    def set_daily_limit(self, limit: float) -> None:
        self.cost_guard.set_daily_limit(limit)

    def set_monthly_limit(self, limit: float) -> None:
        self.cost_guard.set_monthly_limit(limit)

    def estimate_generation_cost(self, request: GenerationRequest) -> float:
        return self._estimate(request)

    async def get_available_providers(self) -> list[ProviderId]:
        ids = list(self.providers)
        checks = await asyncio.gather(*(self.providers[i].is_available() for i in ids))
        return [provider_id for provider_id, ok in zip(ids, checks) if ok]

    def get_provider_models(self, provider_id: ProviderId) -> list[str]:
        provider = self.providers.get(provider_id)
        if provider is not None:
            return list(provider.models)
        return list(PROVIDER_CLASSES[provider_id].models)

    def set_active_provider(self, provider_id: ProviderId) -> None:
        if provider_id not in self.providers:
            raise ValueError(f"Provider {provider_id.value} is not configured")
        self.default_provider = provider_id
        logger.info("Active provider set to %s", provider_id.value)


def build_orchestrator(config: Settings = settings) -> Orchestrator:
    """Wire providers, cost guard and storage from configuration."""
    providers = build_providers(provider_configs(config))
    guard = CostGuard(
        daily_limit=config.get_float("DAILY_COST_LIMIT_USD", DEFAULT_DAILY_LIMIT_USD),
        monthly_limit=config.get_float("MONTHLY_COST_LIMIT_USD", DEFAULT_MONTHLY_LIMIT_USD),
        cache_ttl=config.get_float("COST_CACHE_TTL_SECONDS", DEFAULT_CACHE_TTL_SECONDS),
    )

    storage = None
    supabase_url = config.get("SUPABASE_URL")
    service_key = config.get("SUPABASE_SERVICE_KEY")
    if supabase_url and service_key:
        storage = DesignStorage(supabase_url, service_key, config.get("STORAGE_BUCKET") or DEFAULT_STORAGE_BUCKET)

    primary = default_provider(config)
    fallback = fallback_provider(config)
    if not providers:
        logger.warning("No image provider credentials configured; generation will be unavailable")

    return Orchestrator(
        providers,
        guard,
        default_provider=primary,
        fallback_provider=fallback if fallback != primary else None,
        storage=storage,
        max_variations=config.get_int("MAX_VARIATIONS", DEFAULT_MAX_VARIATIONS),
        default_variations=config.get_int("DEFAULT_VARIATIONS", DEFAULT_NUM_VARIATIONS),
    )

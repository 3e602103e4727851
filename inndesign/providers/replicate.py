import asyncio
import logging
import random
import time
from collections.abc import Sequence
from dataclasses import replace
from typing import Any

import httpx

from inndesign.costs import estimate_replicate_cost
from inndesign.errors import ProviderError
from inndesign.prompts import NEGATIVE_PROMPT
from inndesign.providers.base import ImageProvider
from inndesign.types import GenerationOptions, GenerationResult, ProviderId

logger = logging.getLogger("inndesign.providers.replicate")

SDXL = "stability-ai/sdxl:39ed52f2a78e934b3ba6e2a89f5b1c712de7dfea535525255b1aa35c5565e08b"
STABLE_DIFFUSION = "stability-ai/stable-diffusion:ac732df83cea7fff18b8472768c88ad041fa750ff7682a21affe81863cbe77e4"
OPENJOURNEY = "prompthero/openjourney:9936c2001faa2194a261c01381f90e65261879985476014a0a37a334593a05eb"

# SDXL rejects num_outputs above 4
MAX_OUTPUTS_PER_PREDICTION = 4
TERMINAL_STATUSES = {"succeeded", "failed", "canceled"}


class ReplicateProvider(ImageProvider):
    provider_id = ProviderId.REPLICATE
    provider_name = "Replicate"
    models = (SDXL, STABLE_DIFFUSION, OPENJOURNEY)
    default_model = SDXL
    default_base_url = "https://api.replicate.com/v1"
    poll_interval: float = 1.0

    def supports_model(self, model: str) -> bool:
        # bare "owner/name" ids resolve to the pinned version
        return model in self.models or any(m.split(":", 1)[0] == model for m in self.models)

    def default_options(self) -> GenerationOptions:
        return GenerationOptions(
            model=self.default_model,
            width=1024,
            height=1024,
            num_outputs=3,
            guidance_scale=7.5,
            num_inference_steps=50,
        )

    def interior_design_options(self, style: str) -> GenerationOptions:
        base = self.default_options()
        style = style.lower()
        if style == "minimalist":
            # less aggressive guidance for clean, simple designs
            return replace(base, guidance_scale=6.0, num_inference_steps=40)
        if style in ("maximalist", "bohemian"):
            return replace(base, guidance_scale=8.5, num_inference_steps=60)
        if style in ("photorealistic", "contemporary"):
            return replace(base, guidance_scale=7.5, num_inference_steps=50, model=SDXL)
        return base

    def estimate_cost(self, options: GenerationOptions) -> float:
        return estimate_replicate_cost(options, self.default_model)

    def _resolve_model(self, model: str) -> str:
        for known in self.models:
            if known.split(":", 1)[0] == model:
                return known
        return model

    def _prediction_url(self, model: str) -> tuple[str, dict[str, Any]]:
        if ":" in model:
            return f"{self.base_url}/predictions", {"version": model.split(":", 1)[1]}
        return f"{self.base_url}/models/{model}/predictions", {}

    async def _run_prediction(
        self,
        client: httpx.AsyncClient,
        model: str,
        model_input: dict[str, Any],
    ) -> list[str]:
        url, body = self._prediction_url(model)
        await self.throttle.acquire()
        response = await client.post(
            url,
            headers={**self.auth_headers(), "Content-Type": "application/json", "Prefer": "wait"},
            json={**body, "input": model_input},
        )
        self.raise_on_error(response)
        prediction = response.json()

        deadline = time.monotonic() + self.config.timeout_seconds
        while prediction.get("status") not in TERMINAL_STATUSES:
            poll_url = (prediction.get("urls") or {}).get("get")
            if not poll_url:
                raise ProviderError(self.provider_id.value, "Replicate prediction has no status URL")
            if time.monotonic() >= deadline:
                raise ProviderError(self.provider_id.value, "Replicate prediction timeout")
            await asyncio.sleep(self.poll_interval)
            response = await client.get(poll_url, headers=self.auth_headers())
            self.raise_on_error(response)
            prediction = response.json()

        if prediction["status"] != "succeeded":
            raise ProviderError(
                self.provider_id.value,
                prediction.get("error") or f"Replicate prediction {prediction['status']}",
                payload={"id": prediction.get("id"), "status": prediction["status"]},
            )

        output = prediction.get("output")
        outputs = output if isinstance(output, list) else [output]
        return [item for item in outputs if isinstance(item, str)]

    async def generate_image(
        self,
        prompt: str,
        options: GenerationOptions,
        variation_prompts: Sequence[str] | None = None,
    ) -> GenerationResult:
        model = self._resolve_model(options.model or self.default_model)
        seed = options.seed if options.seed is not None else random.randint(0, 999_999)
        used = replace(options, model=model, seed=seed)
        prompts = list(variation_prompts) if variation_prompts else [prompt]
        wanted = options.num_outputs
        started = time.monotonic()

        logger.info("Replicate generation started with model %s (%d image(s))", model.split(":", 1)[0], wanted)
        images: list[str] = []
        async with self.make_client() as client:
            # first round batches natively; later rounds top up short batches
            for round_index in range(wanted):
                missing = wanted - len(images)
                if missing <= 0:
                    break
                model_input: dict[str, Any] = {
                    "prompt": prompts[round_index % len(prompts)],
                    "negative_prompt": NEGATIVE_PROMPT,
                    "width": used.width,
                    "height": used.height,
                    "num_outputs": min(missing, MAX_OUTPUTS_PER_PREDICTION),
                    "guidance_scale": used.guidance_scale if used.guidance_scale is not None else 7.5,
                    "num_inference_steps": used.num_inference_steps or 50,
                    "seed": seed + round_index,
                }
                images.extend(await self._run_prediction(client, model, model_input))

        if len(images) < wanted:
            raise ProviderError(
                self.provider_id.value,
                f"Replicate returned {len(images)} of {wanted} requested images",
            )

        used = replace(used, num_outputs=wanted)
        return GenerationResult(
            success=True,
            images=tuple(images[:wanted]),
            cost=self.estimate_cost(used),
            model_used=model,
            parameters=used,
            metadata={
                "provider": self.provider_id.value,
                "seed": seed,
                "processing_time": time.monotonic() - started,
            },
        )

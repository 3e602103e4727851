import logging
import time
from collections.abc import Sequence
from dataclasses import replace

import httpx

from inndesign.costs import estimate_openai_cost, openai_image_size
from inndesign.errors import ProviderError
from inndesign.providers.base import ImageProvider
from inndesign.types import GenerationOptions, GenerationResult, ProviderId

logger = logging.getLogger("inndesign.providers.openai")

# dall-e-3 only accepts n=1; dall-e-2 accepts up to 10 per call
MAX_IMAGES_PER_CALL = {"dall-e-3": 1, "dall-e-2": 10}


class OpenAIProvider(ImageProvider):
    provider_id = ProviderId.OPENAI
    provider_name = "OpenAI"
    models = ("dall-e-3", "dall-e-2")
    default_model = "dall-e-3"
    default_base_url = "https://api.openai.com/v1"

    def default_options(self) -> GenerationOptions:
        return GenerationOptions(
            model=self.default_model,
            width=1024,
            height=1024,
            num_outputs=1,
            quality="standard",
            style="natural",
        )

    def interior_design_options(self, style: str) -> GenerationOptions:
        base = self.default_options()
        style = style.lower()
        if style in ("photorealistic", "contemporary", "modern"):
            return replace(base, quality="hd", style="natural")
        if style in ("artistic", "bohemian", "eclectic"):
            return replace(base, quality="standard", style="vivid")
        if style in ("minimalist", "scandinavian"):
            return replace(base, quality="standard", style="natural")
        return base

    def estimate_cost(self, options: GenerationOptions) -> float:
        return estimate_openai_cost(options, self.default_model)

    async def _request_images(
        self,
        client: httpx.AsyncClient,
        model: str,
        prompt: str,
        size: str,
        count: int,
        options: GenerationOptions,
    ) -> list[str]:
        body = {
            "model": model,
            "prompt": prompt,
            "n": count,
            "size": size,
            "response_format": "url",
        }
        if model == "dall-e-3":
            body["quality"] = "hd" if options.quality == "hd" else "standard"
            body["style"] = options.style or "natural"

        await self.throttle.acquire()
        response = await client.post(
            f"{self.base_url}/images/generations",
            headers={**self.auth_headers(), "Content-Type": "application/json"},
            json=body,
        )
        self.raise_on_error(response)

        payload = response.json()
        return [item["url"] for item in (payload.get("data") or []) if item.get("url")]

    async def generate_image(
        self,
        prompt: str,
        options: GenerationOptions,
        variation_prompts: Sequence[str] | None = None,
    ) -> GenerationResult:
        model = options.model or self.default_model
        size = openai_image_size(model, options.width, options.height)
        per_call = MAX_IMAGES_PER_CALL.get(model, 1)
        wanted = options.num_outputs
        prompts = list(variation_prompts) if variation_prompts else [prompt]
        started = time.monotonic()

        logger.info("OpenAI generation started with model %s (%d image(s), %s)", model, wanted, size)
        images: list[str] = []
        async with self.make_client() as client:
            # one call per image on dall-e-3; top-up calls if a batch comes back short
            for _ in range(wanted):
                missing = wanted - len(images)
                if missing <= 0:
                    break
                call_prompt = prompts[len(images) % len(prompts)]
                images.extend(
                    await self._request_images(client, model, call_prompt, size, min(missing, per_call), options)
                )

        if len(images) < wanted:
            raise ProviderError(
                self.provider_id.value,
                f"OpenAI returned {len(images)} of {wanted} requested images",
            )

        used = replace(options, model=model, num_outputs=wanted)
        return GenerationResult(
            success=True,
            images=tuple(images[:wanted]),
            cost=self.estimate_cost(used),
            model_used=model,
            parameters=used,
            metadata={
                "provider": self.provider_id.value,
                "size": size,
                "processing_time": time.monotonic() - started,
            },
        )

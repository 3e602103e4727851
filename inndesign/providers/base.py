"""Base class for image generation backends."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Sequence

import httpx

from inndesign.config import ProviderConfig
from inndesign.errors import ProviderError
from inndesign.types import GenerationOptions, GenerationResult, ProviderId

logger = logging.getLogger("inndesign.providers")


class RequestThrottle:
    """Sliding one-minute window limiting outbound requests."""

    def __init__(self, requests_per_minute: int | None, window: float = 60.0) -> None:
        self.requests_per_minute = requests_per_minute
        self._window = window
        self._calls: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        if not self.requests_per_minute:
            return
        async with self._lock:
            while True:
                now = time.monotonic()
                while self._calls and now - self._calls[0] >= self._window:
                    self._calls.popleft()
                if len(self._calls) < self.requests_per_minute:
                    self._calls.append(now)
                    return
                await asyncio.sleep(self._window - (now - self._calls[0]))


class ImageProvider(ABC):
    """Shared infrastructure for all image backends.

    Subclasses are stateless apart from the request throttle and can be
    shared across concurrent requests.
    """

    provider_id: ProviderId
    provider_name: str            # "Replicate", "OpenAI"
    models: tuple[str, ...]
    default_model: str
    default_base_url: str
    availability_path: str = "/models"

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config
        self.base_url = (config.base_url or self.default_base_url).rstrip("/")
        self.throttle = RequestThrottle(config.requests_per_minute)

    @property
    def max_retries(self) -> int:
        return self.config.max_retries

    def supports_model(self, model: str) -> bool:
        return model in self.models

    def make_client(self, timeout: float | None = None) -> httpx.AsyncClient:
        """Create an httpx async client with the provider's configured timeout."""
        return httpx.AsyncClient(timeout=timeout or self.config.timeout_seconds)

    def auth_headers(self) -> dict[str, str]:
        """Return auth headers. Default: Bearer token. Override per provider."""
        return {"Authorization": f"Bearer {self.config.api_key}"}

    def raise_on_error(self, response: httpx.Response) -> None:
        """Raise ProviderError if response indicates an error."""
        if response.status_code < 400:
            return
        try:
            payload = response.json()
        except ValueError:
            raise ProviderError(
                self.provider_id.value,
                f"{self.provider_name} returned an unexpected error",
                status_code=response.status_code,
            )

        message = ""
        code = None
        if isinstance(payload, dict):
            error_obj = payload.get("error")
            if isinstance(error_obj, dict):
                message = error_obj.get("message") or ""
                code = error_obj.get("code") or None
            elif isinstance(error_obj, str):
                message = error_obj
            message = message or payload.get("detail") or payload.get("title") or ""

        raise ProviderError(
            self.provider_id.value,
            message or f"{self.provider_name} error ({response.status_code})",
            status_code=response.status_code,
            code=code,
            payload=payload,
        )

    async def is_available(self) -> bool:
        """Cheap authenticated check. Never raises."""
        try:
            async with self.make_client(timeout=10.0) as client:
                response = await client.get(
                    f"{self.base_url}{self.availability_path}",
                    headers=self.auth_headers(),
                )
            return response.status_code < 400
        except Exception as exc:
            logger.warning("%s availability check failed: %s", self.provider_name, exc)
            return False

    @abstractmethod
    def default_options(self) -> GenerationOptions: ...

    @abstractmethod
    def interior_design_options(self, style: str) -> GenerationOptions:
        """Provider defaults tuned for an interior design style."""

    @abstractmethod
    def estimate_cost(self, options: GenerationOptions) -> float: ...

    @abstractmethod
    async def generate_image(
        self,
        prompt: str,
        options: GenerationOptions,
        variation_prompts: Sequence[str] | None = None,
    ) -> GenerationResult:
        """Return exactly ``options.num_outputs`` image URLs or raise."""

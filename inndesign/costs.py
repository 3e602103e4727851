"""Cost estimation and per-user spend limits for image generation."""

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from inndesign.config import (
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_DAILY_LIMIT_USD,
    DEFAULT_MONTHLY_LIMIT_USD,
)
from inndesign.types import GenerationOptions

logger = logging.getLogger("inndesign.costs")


# --- Pricing tables ---

# Replicate: per image at 50 inference steps, keyed by model family
REPLICATE_IMAGE_PRICING: dict[str, float] = {
    "sdxl": 0.002,
    "stable-diffusion": 0.0012,
    "openjourney": 0.001,
}
REPLICATE_DEFAULT_IMAGE_COST = 0.002
REPLICATE_BASE_STEPS = 50

# dall-e-3: {(quality, shape): cost per image}
DALLE3_PRICING: dict[tuple[str, str], float] = {
    ("standard", "square"): 0.04,
    ("standard", "wide"): 0.08,
    ("hd", "square"): 0.08,
    ("hd", "wide"): 0.12,
}

# dall-e-2: {size: cost per image}
DALLE2_PRICING: dict[str, float] = {
    "1024x1024": 0.02,
    "512x512": 0.018,
    "256x256": 0.016,
}

OPENAI_DEFAULT_IMAGE_COST = 0.04


def openai_image_size(model: str, width: int, height: int) -> str:
    """Snap requested dimensions to a size the OpenAI image API accepts."""
    if model == "dall-e-3":
        if width > height:
            return "1792x1024"
        if height > width:
            return "1024x1792"
        return "1024x1024"
    if width >= 1024 or height >= 1024:
        return "1024x1024"
    if width >= 512 or height >= 512:
        return "512x512"
    return "256x256"


def replicate_model_family(model: str) -> str | None:
    name = model.split(":", 1)[0].lower()
    if "sdxl" in name:
        return "sdxl"
    if "stable-diffusion" in name:
        return "stable-diffusion"
    if "openjourney" in name:
        return "openjourney"
    return None


def estimate_replicate_cost(options: GenerationOptions, default_model: str) -> float:
    family = replicate_model_family(options.model or default_model)
    per_image = REPLICATE_IMAGE_PRICING.get(family or "", REPLICATE_DEFAULT_IMAGE_COST)
    steps = options.num_inference_steps or REPLICATE_BASE_STEPS
    step_multiplier = max(1.0, steps / REPLICATE_BASE_STEPS)
    return per_image * max(options.num_outputs, 0) * step_multiplier


def estimate_openai_cost(options: GenerationOptions, default_model: str) -> float:
    model = options.model or default_model
    size = openai_image_size(model, options.width, options.height)
    if model == "dall-e-3":
        shape = "square" if size == "1024x1024" else "wide"
        quality = "hd" if options.quality == "hd" else "standard"
        per_image = DALLE3_PRICING[(quality, shape)]
    elif model == "dall-e-2":
        per_image = DALLE2_PRICING[size]
    else:
        per_image = OPENAI_DEFAULT_IMAGE_COST
    return per_image * max(options.num_outputs, 0)


# --- Records ---

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CostEntry:
    user_id: str
    design_id: str
    provider: str
    model: str
    cost_usd: float
    parameters: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class CostSummary:
    total_cost: float
    today_cost: float
    month_cost: float
    generation_count: int
    last_generation: datetime | None
    daily_limit: float
    monthly_limit: float
    can_generate: bool
    remaining_daily_budget: float


@dataclass(frozen=True)
class Reservation:
    id: str
    user_id: str
    amount: float


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    current_cost: float
    limit: float
    estimated_cost: float
    reason: str | None = None
    limit_kind: str | None = None  # "daily" | "monthly"
    reservation: Reservation | None = None


class CostStore(Protocol):
    """Durable record of realized generation costs."""

    async def add(self, entry: CostEntry) -> None: ...

    async def entries_for(self, user_id: str) -> list[CostEntry]: ...

    async def all_entries(self) -> list[CostEntry]: ...

    async def clear(self, user_id: str) -> None: ...


class InMemoryCostStore:
    def __init__(self) -> None:
        self._entries: dict[str, list[CostEntry]] = {}

    async def add(self, entry: CostEntry) -> None:
        self._entries.setdefault(entry.user_id, []).append(entry)

    async def entries_for(self, user_id: str) -> list[CostEntry]:
        return list(self._entries.get(user_id, []))

    async def all_entries(self) -> list[CostEntry]:
        return [e for entries in self._entries.values() for e in entries]

    async def clear(self, user_id: str) -> None:
        self._entries.pop(user_id, None)


def _as_utc(ts: datetime) -> datetime:
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts.astimezone(timezone.utc)


class CostGuard:
    """Per-user daily/monthly spend limits.

    Admission and recording for one user are serialized by a per-user lock.
    An admitted request holds a reservation for its estimated cost until it
    either records its actual cost or releases the reservation, so concurrent
    requests for the same user see each other's in-flight spend.

    Summaries are cached per user for ``cache_ttl`` seconds. Recording through
    this guard invalidates the user's entry, so staleness only comes from
    writers that bypass the guard and is bounded by the TTL.
    """

    def __init__(
        self,
        store: CostStore | None = None,
        *,
        daily_limit: float = DEFAULT_DAILY_LIMIT_USD,
        monthly_limit: float = DEFAULT_MONTHLY_LIMIT_USD,
        cache_ttl: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store: CostStore = store if store is not None else InMemoryCostStore()
        self._daily_limit = daily_limit
        self._monthly_limit = monthly_limit
        self._cache_ttl = cache_ttl
        self._clock = clock
        self._cache: dict[str, tuple[float, CostSummary]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._pending: dict[str, dict[str, Reservation]] = {}
        self._next_cleanup = time.monotonic() + cache_ttl

    @property
    def daily_limit(self) -> float:
        return self._daily_limit

    @property
    def monthly_limit(self) -> float:
        return self._monthly_limit

    @property
    def store(self) -> CostStore:
        return self._store

    @asynccontextmanager
    async def _user_lock(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        self._lock_users[user_id] = self._lock_users.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[user_id] -= 1
            if not self._lock_users[user_id]:
                del self._lock_users[user_id]
                del self._locks[user_id]

    def pending_cost(self, user_id: str) -> float:
        return sum(r.amount for r in self._pending.get(user_id, {}).values())

    # --- Summaries ---

    async def get_summary(self, user_id: str) -> CostSummary:
        cached = self._cache.get(user_id)
        if cached and time.monotonic() < cached[0]:
            return cached[1]
        summary = await self._build_summary(user_id)
        self._cache[user_id] = (time.monotonic() + self._cache_ttl, summary)
        return summary

    async def _build_summary(self, user_id: str) -> CostSummary:
        now = _as_utc(self._clock())
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        start_of_month = start_of_day.replace(day=1)

        total = today = month = 0.0
        count = 0
        last: datetime | None = None
        for entry in await self._store.entries_for(user_id):
            if entry.cost_usd <= 0:
                continue
            ts = _as_utc(entry.timestamp)
            total += entry.cost_usd
            count += 1
            if ts >= start_of_day:
                today += entry.cost_usd
            if ts >= start_of_month:
                month += entry.cost_usd
            if last is None or ts > last:
                last = ts

        return CostSummary(
            total_cost=total,
            today_cost=today,
            month_cost=month,
            generation_count=count,
            last_generation=last,
            daily_limit=self._daily_limit,
            monthly_limit=self._monthly_limit,
            can_generate=today < self._daily_limit and month < self._monthly_limit,
            remaining_daily_budget=max(0.0, self._daily_limit - today),
        )

    # --- Admission ---

    def _evaluate(self, summary: CostSummary, pending: float, estimated_cost: float) -> AdmissionDecision:
        today = summary.today_cost + pending
        month = summary.month_cost + pending
        if round(today + estimated_cost, 9) > self._daily_limit:
            return AdmissionDecision(
                allowed=False,
                current_cost=today,
                limit=self._daily_limit,
                estimated_cost=estimated_cost,
                reason="Daily cost limit exceeded",
                limit_kind="daily",
            )
        if round(month + estimated_cost, 9) > self._monthly_limit:
            return AdmissionDecision(
                allowed=False,
                current_cost=month,
                limit=self._monthly_limit,
                estimated_cost=estimated_cost,
                reason="Monthly cost limit exceeded",
                limit_kind="monthly",
            )
        return AdmissionDecision(
            allowed=True,
            current_cost=today,
            limit=self._daily_limit,
            estimated_cost=estimated_cost,
        )

    async def check_admission(self, user_id: str, estimated_cost: float) -> AdmissionDecision:
        async with self._user_lock(user_id):
            summary = await self.get_summary(user_id)
            return self._evaluate(summary, self.pending_cost(user_id), estimated_cost)

    async def reserve(self, user_id: str, estimated_cost: float) -> AdmissionDecision:
        """Admission check that also holds ``estimated_cost`` when allowed."""
        if time.monotonic() >= self._next_cleanup:
            self.cleanup_cache()
        async with self._user_lock(user_id):
            summary = await self.get_summary(user_id)
            decision = self._evaluate(summary, self.pending_cost(user_id), estimated_cost)
            if not decision.allowed:
                logger.warning(
                    "Admission denied for user %s: %s (current $%.4f + estimate $%.4f > $%.2f)",
                    user_id, decision.reason, decision.current_cost, estimated_cost, decision.limit,
                )
                return decision
            reservation = Reservation(id=uuid.uuid4().hex, user_id=user_id, amount=estimated_cost)
            self._pending.setdefault(user_id, {})[reservation.id] = reservation
            return AdmissionDecision(
                allowed=True,
                current_cost=decision.current_cost,
                limit=decision.limit,
                estimated_cost=estimated_cost,
                reservation=reservation,
            )

    async def release(self, reservation: Reservation) -> None:
        async with self._user_lock(reservation.user_id):
            self._drop_reservation(reservation)

    def _drop_reservation(self, reservation: Reservation) -> None:
        held = self._pending.get(reservation.user_id)
        if held is None:
            return
        held.pop(reservation.id, None)
        if not held:
            del self._pending[reservation.user_id]

    # --- Recording ---

    async def record_cost(self, entry: CostEntry, reservation: Reservation | None = None) -> None:
        if entry.cost_usd < 0:
            raise ValueError(f"Cost must be non-negative, got {entry.cost_usd}")
        async with self._user_lock(entry.user_id):
            await self._store.add(entry)
            if reservation is not None:
                self._drop_reservation(reservation)
            self._cache.pop(entry.user_id, None)
        logger.info("Recorded cost: $%.4f for user %s (%s/%s)", entry.cost_usd, entry.user_id, entry.provider, entry.model)

    # --- Administration ---

    async def reset_user(self, user_id: str) -> None:
        async with self._user_lock(user_id):
            await self._store.clear(user_id)
            self._cache.pop(user_id, None)
        logger.info("Cost history reset for user %s", user_id)

    def set_daily_limit(self, limit: float) -> None:
        if limit < 0:
            raise ValueError("Daily limit must be non-negative")
        self._daily_limit = limit
        self._cache.clear()

    def set_monthly_limit(self, limit: float) -> None:
        if limit < 0:
            raise ValueError("Monthly limit must be non-negative")
        self._monthly_limit = limit
        self._cache.clear()

    def cleanup_cache(self) -> None:
        """Drop expired summaries."""
        now = time.monotonic()
        for user_id in [u for u, (expiry, _) in self._cache.items() if now >= expiry]:
            del self._cache[user_id]
        self._next_cleanup = now + self._cache_ttl

    async def get_top_users(self, limit: int = 10) -> list[dict[str, Any]]:
        stats: dict[str, dict[str, Any]] = {}
        for entry in await self._store.all_entries():
            if entry.cost_usd <= 0:
                continue
            ts = _as_utc(entry.timestamp)
            row = stats.setdefault(
                entry.user_id,
                {"user_id": entry.user_id, "total_cost": 0.0, "generation_count": 0, "last_generation": ts},
            )
            row["total_cost"] += entry.cost_usd
            row["generation_count"] += 1
            if ts > row["last_generation"]:
                row["last_generation"] = ts
        return sorted(stats.values(), key=lambda r: r["total_cost"], reverse=True)[:limit]

    async def get_daily_trend(self, days: int = 30) -> list[dict[str, Any]]:
        start = _as_utc(self._clock()) - timedelta(days=days)
        daily: dict[str, dict[str, Any]] = {}
        for entry in await self._store.all_entries():
            ts = _as_utc(entry.timestamp)
            if ts < start:
                continue
            key = ts.date().isoformat()
            row = daily.setdefault(key, {"date": key, "total_cost": 0.0, "generation_count": 0})
            if entry.cost_usd > 0:
                row["total_cost"] += entry.cost_usd
                row["generation_count"] += 1
        return [daily[k] for k in sorted(daily)]

"""Provider health tracker - shared failure state behind atomic updates."""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
import logging

from ..config import RouterSettings
from ..models import HealthStatus, ProviderHealth

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackoffPolicy:
    """Cooldown curve for providers that crossed the failure threshold.

    Attributes:
        threshold: Consecutive failures that mark a provider unavailable
        base_seconds: Cooldown at the threshold
        factor: Multiplier per failure beyond the threshold
        max_seconds: Cap on a single cooldown
    """
    threshold: int = 3
    base_seconds: float = 300.0
    factor: float = 2.0
    max_seconds: float = 3600.0

    @classmethod
    def from_settings(cls, settings: RouterSettings) -> "BackoffPolicy":
        return cls(
            threshold=settings.failure_threshold,
            base_seconds=settings.cooldown_base_seconds,
            factor=settings.cooldown_factor,
            max_seconds=settings.cooldown_max_seconds,
        )

    def cooldown(self, consecutive_failures: int) -> float:
        """Cooldown in seconds; non-decreasing in ``consecutive_failures``."""
        over = max(0, consecutive_failures - self.threshold)
        return min(self.max_seconds, self.base_seconds * self.factor ** over)


class ProviderHealthTracker:
    """
    Health state for every provider the router has touched.

    One tracker is built at startup and handed to the router (tests build
    their own). All read-modify-write operations run under a single lock so
    concurrent route calls cannot lose a failure or race a reset.
    """

    def __init__(
        self,
        policy: Optional[BackoffPolicy] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.policy = policy or BackoffPolicy()
        self._clock = clock
        self._records: dict[str, ProviderHealth] = {}
        self._lock = asyncio.Lock()

    def now(self) -> datetime:
        return self._clock()

    def _record(self, provider_id: str) -> ProviderHealth:
        record = self._records.get(provider_id)
        if record is None:
            record = ProviderHealth(provider_id=provider_id)
            self._records[provider_id] = record
        return record

    async def is_eligible(self, provider_id: str) -> bool:
        """
        Check if a provider may be attempted now.

        Providers in cooldown are not eligible. Once the cooldown has elapsed
        the provider is eligible again; its record is left as-is until the
        next attempt decides between healthy and a longer cooldown.
        """
        async with self._lock:
            record = self._records.get(provider_id)
            if record is None:
                return True
            return not record.in_cooldown(self.now())

    async def record_success(self, provider_id: str) -> ProviderHealth:
        """Reset failures and mark the provider healthy."""
        async with self._lock:
            record = self._record(provider_id)
            recovered = record.status != HealthStatus.HEALTHY

            record.status = HealthStatus.HEALTHY
            record.consecutive_failures = 0
            record.cooldown_until = None
            record.last_success_at = self.now()
            record.total_successes += 1

            if recovered:
                logger.info(f"Provider {provider_id} recovered")
            return record.model_copy()

    async def record_failure(self, provider_id: str) -> ProviderHealth:
        """
        Count a failure.

        At or past the threshold the provider becomes unavailable with a
        cooldown from the backoff policy; below it, degraded.
        """
        async with self._lock:
            now = self.now()
            record = self._record(provider_id)

            record.consecutive_failures += 1
            record.total_failures += 1
            record.last_failure_at = now

            if record.consecutive_failures >= self.policy.threshold:
                cooldown = self.policy.cooldown(record.consecutive_failures)
                record.status = HealthStatus.UNAVAILABLE
                record.cooldown_until = now + timedelta(seconds=cooldown)
                logger.warning(
                    f"Provider {provider_id} marked unavailable after "
                    f"{record.consecutive_failures} failures (cooldown {cooldown:g}s)"
                )
            else:
                record.status = HealthStatus.DEGRADED

            return record.model_copy()

    def get(self, provider_id: str) -> ProviderHealth:
        """Snapshot of a provider's health (healthy if never seen)."""
        record = self._records.get(provider_id)
        if record is None:
            return ProviderHealth(provider_id=provider_id)
        return record.model_copy()

    def snapshot(self) -> dict[str, ProviderHealth]:
        """Snapshot of all tracked providers."""
        return {pid: r.model_copy() for pid, r in self._records.items()}

    async def reset(self, provider_id: Optional[str] = None) -> None:
        """Forget one provider's health, or everything."""
        async with self._lock:
            if provider_id is None:
                self._records.clear()
            else:
                self._records.pop(provider_id, None)

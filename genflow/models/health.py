"""Provider health record."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from .enums import HealthStatus


class ProviderHealth(BaseModel):
    """Tracked health of one provider. Created lazily on first reference."""

    provider_id: str

    status: HealthStatus = HealthStatus.HEALTHY

    consecutive_failures: int = 0
    """Failures since the last success."""

    cooldown_until: Optional[datetime] = None
    """While status is unavailable, the provider is skipped until this time."""

    last_failure_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    total_failures: int = 0
    total_successes: int = 0

    def in_cooldown(self, now: datetime) -> bool:
        """Check if the provider must be skipped at ``now``."""
        return (
            self.status == HealthStatus.UNAVAILABLE
            and self.cooldown_until is not None
            and now < self.cooldown_until
        )

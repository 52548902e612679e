"""Generation request/result models exchanged with providers and the router."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from .enums import Capability


class GenerationRequest(BaseModel):
    """Capability-specific payload sent to a provider."""

    prompt: str = ""
    """Text prompt (empty for upscales)."""

    input_assets: list[str] = Field(default_factory=list)
    """Reference assets (URIs) for img2img, img2vid and upscale."""

    options: dict[str, Any] = Field(default_factory=dict)
    """Generation options (size, duration, voice, ...)."""


class GenerationOutput(BaseModel):
    """Normalized provider response."""

    assets: list[str] = Field(default_factory=list)
    """Produced asset URIs."""

    metadata: dict[str, Any] = Field(default_factory=dict)
    """
    Provider metadata. Text and embedding results are carried here under the
    ``text`` and ``embedding`` keys.
    """


class ProviderAttempt(BaseModel):
    """One candidate considered during a route call."""

    provider_id: str
    skipped: bool = False
    reason: Optional[str] = None
    error: Optional[str] = None
    status_code: Optional[int] = None


class RouteResult(BaseModel):
    """Successful outcome of ``ProviderRouter.route``."""

    model_id: str
    capability: Capability
    provider_id: str
    output: GenerationOutput
    cost: float = 0.0
    attempts: list[ProviderAttempt] = Field(default_factory=list)

    @property
    def attempted_providers(self) -> list[str]:
        """Providers that were actually invoked, in order, including the winner."""
        return [a.provider_id for a in self.attempts if not a.skipped] + [self.provider_id]

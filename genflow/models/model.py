"""Catalog model - a generation model and the providers that can serve it."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .enums import Capability, ModelType, MODEL_TYPE_CAPABILITIES


class ProviderConfig(BaseModel):
    """How one provider serves one model."""

    model_config = ConfigDict(frozen=True)

    endpoint: Optional[str] = None
    """Provider-side endpoint or model version (e.g. "fal-ai/flux/schnell")."""

    checkpoint: Optional[str] = None
    """Checkpoint file for self-hosted backends."""

    cost: Optional[float] = None
    """Unit cost when served by this provider (falls back to the model base cost)."""

    options: dict[str, Any] = Field(default_factory=dict)
    """Provider-specific extras passed through to the backend."""


class ModelSpec(BaseModel):
    """
    A generation model in the registry.

    A model is defined once and may be served by several providers. The router
    tries ``default_provider`` first and then ``fallback_order``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    """Internal model id (e.g. "flux-pro-1.1")."""

    name: str = ""
    """Display name."""

    type: ModelType
    """What the model produces."""

    default_provider: str
    """Provider tried first."""

    fallback_order: list[str] = Field(default_factory=list)
    """Providers tried, in order, after the default."""

    providers: dict[str, ProviderConfig]
    """Per-provider configuration, keyed by provider id."""

    base_cost: float = 0.0
    """Cost used when the provider config has none."""

    price_multipliers: dict[str, dict[str, float]] = Field(default_factory=dict)
    """
    Option-dependent pricing: option name -> option value -> multiplier.

    Example: ``{"num_images": {"2": 2, "4": 4}}``.
    """

    tags: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_providers(self) -> "ModelSpec":
        missing = [
            p for p in [self.default_provider, *self.fallback_order]
            if p not in self.providers
        ]
        if missing:
            raise ValueError(
                f"Model '{self.id}' routes to providers without configuration: {missing}"
            )
        return self

    @property
    def capabilities(self) -> frozenset[Capability]:
        return MODEL_TYPE_CAPABILITIES[self.type]

    def supports(self, capability: Capability | str) -> bool:
        """Check if this model can serve a capability."""
        try:
            return Capability(capability) in self.capabilities
        except ValueError:
            return False

    def candidate_providers(self) -> list[str]:
        """Default provider followed by the fallbacks, duplicates removed."""
        seen: dict[str, None] = {}
        for provider_id in [self.default_provider, *self.fallback_order]:
            seen.setdefault(provider_id, None)
        return list(seen)

    def get_provider_config(self, provider_id: str) -> Optional[ProviderConfig]:
        return self.providers.get(provider_id)

    def estimate_cost(
        self,
        provider_id: Optional[str] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> float:
        """
        Cost of one call for a provider and set of options.

        Args:
            provider_id: Provider serving the call (defaults to the default provider)
            options: Generation options; matching values apply price multipliers

        Returns:
            The estimated cost
        """
        config = self.providers.get(provider_id or self.default_provider)
        cost = config.cost if config and config.cost is not None else self.base_cost

        for key, value in (options or {}).items():
            multipliers = self.price_multipliers.get(key)
            if multipliers:
                cost *= multipliers.get(str(value), 1.0)

        return cost

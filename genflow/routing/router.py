"""Provider router - health-aware failover across provider backends."""

from typing import Optional, Any
import logging

from ..catalog import ModelRegistry
from ..errors import (
    AllProvidersFailedError,
    ProviderError,
    ProviderUnavailableError,
    UnsupportedCapabilityError,
)
from ..models import (
    Capability,
    GenerationRequest,
    ModelSpec,
    ProviderAttempt,
    ProviderHealth,
    RouteResult,
)
from ..providers import ProviderRegistry
from .health import ProviderHealthTracker

logger = logging.getLogger(__name__)


class ProviderRouter:
    """
    Routes generation requests to the providers that serve a model.

    For each request the router walks the model's candidates (default
    provider first, then the fallbacks, no duplicates) and:
    - skips providers in cooldown
    - skips providers that aren't registered or report unavailable
    - returns the first successful result
    - records every success and failure with the health tracker
    """

    def __init__(
        self,
        models: ModelRegistry,
        providers: ProviderRegistry,
        health: Optional[ProviderHealthTracker] = None,
    ):
        self.models = models
        self.providers = providers
        self.health = health or ProviderHealthTracker()

    async def route(
        self,
        model_id: str,
        capability: Capability | str,
        request: GenerationRequest,
    ) -> RouteResult:
        """
        Generate with the best available provider for a model.

        Args:
            model_id: Model id from the registry
            capability: Operation to perform
            request: Capability-specific payload

        Returns:
            The first successful provider's result

        Raises:
            UnknownModelError: The model is not in the registry
            UnsupportedCapabilityError: The model can't serve the capability
            AllProvidersFailedError: Every candidate was skipped or failed
        """
        model = self.models.require(model_id)
        capability = self._check_capability(model, capability)

        attempts: list[ProviderAttempt] = []
        last_error: Optional[BaseException] = None
        candidates = model.candidate_providers()

        for index, provider_id in enumerate(candidates):
            if not await self.health.is_eligible(provider_id):
                attempts.append(
                    ProviderAttempt(provider_id=provider_id, skipped=True, reason="cooldown")
                )
                continue

            provider = self.providers.get(provider_id)
            if provider is None:
                last_error = ProviderUnavailableError(provider_id, "provider not registered")
                attempts.append(
                    ProviderAttempt(provider_id=provider_id, skipped=True, reason="not registered")
                )
                continue

            try:
                if not await provider.is_available():
                    raise ProviderUnavailableError(provider_id, "provider reports unavailable")

                output = await provider.generate(model, capability, request)

            except ProviderUnavailableError as e:
                last_error = e
                attempts.append(
                    ProviderAttempt(provider_id=provider_id, skipped=True, reason=e.message)
                )
                await self.health.record_failure(provider_id)
                continue

            except Exception as e:
                last_error = e
                attempts.append(
                    ProviderAttempt(
                        provider_id=provider_id,
                        error=str(e),
                        status_code=getattr(e, "status_code", None),
                    )
                )
                await self.health.record_failure(provider_id)

                next_provider = candidates[index + 1] if index + 1 < len(candidates) else None
                logger.warning(
                    f"Provider {provider_id} failed for model {model_id} "
                    f"({capability.value}): {e}; failing over to {next_provider or 'nothing'}"
                )
                continue

            await self.health.record_success(provider_id)

            cost = model.estimate_cost(provider_id, request.options)
            logger.info(
                f"Routed {capability.value} for model {model_id} to {provider_id} "
                f"after {len(attempts)} failed/skipped candidates"
            )
            return RouteResult(
                model_id=model_id,
                capability=capability,
                provider_id=provider_id,
                output=output,
                cost=cost,
                attempts=attempts,
            )

        attempted = [a.provider_id for a in attempts if not a.skipped]
        raise AllProvidersFailedError(
            model_id,
            attempted_providers=attempted,
            last_error=last_error,
            attempts=attempts,
        )

    async def probe(self, provider_id: str) -> bool:
        """
        Health-check a provider via ``is_available`` and record the outcome.

        Returns:
            True if the provider reported available
        """
        provider = self.providers.get(provider_id)
        if provider is None:
            return False

        try:
            available = await provider.is_available()
        except (ProviderError, OSError) as e:
            logger.warning(f"Probe of provider {provider_id} failed: {e}")
            available = False

        if available:
            await self.health.record_success(provider_id)
        else:
            await self.health.record_failure(provider_id)
        return available

    async def best_provider(self, model_id: str) -> Optional[dict[str, Any]]:
        """
        Pick the provider a route call would try first, without generating.

        Returns:
            ``{"id", "provider", "config", "cost"}`` or None if nothing is usable
        """
        model = self.models.get(model_id)
        if model is None:
            return None

        for provider_id in model.candidate_providers():
            if not await self.health.is_eligible(provider_id):
                continue
            provider = self.providers.get(provider_id)
            if provider is None:
                continue
            try:
                if not await provider.is_available():
                    continue
            except (ProviderError, OSError):
                continue
            return {
                "id": provider_id,
                "provider": provider,
                "config": model.providers[provider_id],
                "cost": model.estimate_cost(provider_id),
            }

        return None

    def health_status(self) -> dict[str, ProviderHealth]:
        """Snapshot of tracked provider health."""
        return self.health.snapshot()

    @staticmethod
    def _check_capability(model: ModelSpec, capability: Capability | str) -> Capability:
        try:
            capability = Capability(capability)
        except ValueError:
            raise UnsupportedCapabilityError(model.id, str(capability))
        if not model.supports(capability):
            raise UnsupportedCapabilityError(model.id, capability.value)
        return capability

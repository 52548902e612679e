"""Base Provider class - the capability interface every backend implements."""

from abc import ABC, abstractmethod
from typing import Optional, Any
import logging

from ..errors import ProviderUnavailableError
from ..models import Capability, GenerationOutput, GenerationRequest, ModelSpec, ProviderConfig

logger = logging.getLogger(__name__)


class Provider(ABC):
    """
    Base class for all generation providers.

    A provider wraps one third-party (or self-hosted) generation backend.
    The router only ever talks to this interface, never to a concrete class.

    Each provider must implement:
    - is_available(): Report whether the backend is configured and reachable

    and overrides the capability methods it supports:
    - generate_image(), generate_video(), upscale_image(), upscale_video()
    - generate_text(), synthesize_speech(), embed()

    Capabilities that are not overridden raise ProviderUnavailableError, so
    the router treats them as a skipped candidate.

    Example:
        class FluxProvider(Provider):
            id = "fal"
            display_name = "Fal.ai"

            async def is_available(self) -> bool:
                return bool(self.api_key)

            async def generate_image(self, model, config, request) -> GenerationOutput:
                ...
                return GenerationOutput(assets=[url])
    """

    # -------------------------------------------------------------------------
    # Metadata (must be defined by subclasses)
    # -------------------------------------------------------------------------

    id: str = ""
    """Unique provider id. Matches the keys of ``ModelSpec.providers``."""

    display_name: str = ""
    """Human-readable name."""

    # -------------------------------------------------------------------------
    # Internal state
    # -------------------------------------------------------------------------

    _config: dict[str, Any]
    """Runtime configuration."""

    def __init__(self, config: Optional[dict[str, Any]] = None):
        self._config = dict(config or {})

    @property
    def config(self) -> dict[str, Any]:
        return self._config

    # -------------------------------------------------------------------------
    # Abstract methods
    # -------------------------------------------------------------------------

    @abstractmethod
    async def is_available(self) -> bool:
        """
        Check if this provider is configured and can take requests.

        Returns:
            True if the provider can be called
        """
        pass

    # -------------------------------------------------------------------------
    # Capability dispatch
    # -------------------------------------------------------------------------

    _capability_methods: dict[Capability, str] = {
        Capability.TEXT: "generate_text",
        Capability.IMAGE: "generate_image",
        Capability.VIDEO: "generate_video",
        Capability.SPEECH: "synthesize_speech",
        Capability.EMBEDDING: "embed",
        Capability.UPSCALE_IMAGE: "upscale_image",
        Capability.UPSCALE_VIDEO: "upscale_video",
    }

    async def generate(
        self,
        model: ModelSpec,
        capability: Capability,
        request: GenerationRequest,
    ) -> GenerationOutput:
        """
        Serve a request for a capability.

        Args:
            model: The catalog model being served
            capability: Which operation to run
            request: Prompt, reference assets and options

        Returns:
            Normalized generation output

        Raises:
            ProviderUnavailableError: The provider has no config for the model
                or doesn't implement the capability
            ProviderRequestError: The backend call failed
        """
        config = model.get_provider_config(self.id)
        if config is None:
            raise ProviderUnavailableError(self.id, f"no configuration for model '{model.id}'")

        method = getattr(self, self._capability_methods[Capability(capability)])
        return await method(model, config, request)

    # -------------------------------------------------------------------------
    # Capability methods (override the supported ones)
    # -------------------------------------------------------------------------

    async def generate_text(
        self, model: ModelSpec, config: ProviderConfig, request: GenerationRequest
    ) -> GenerationOutput:
        raise self._unsupported(Capability.TEXT)

    async def generate_image(
        self, model: ModelSpec, config: ProviderConfig, request: GenerationRequest
    ) -> GenerationOutput:
        raise self._unsupported(Capability.IMAGE)

    async def generate_video(
        self, model: ModelSpec, config: ProviderConfig, request: GenerationRequest
    ) -> GenerationOutput:
        raise self._unsupported(Capability.VIDEO)

    async def synthesize_speech(
        self, model: ModelSpec, config: ProviderConfig, request: GenerationRequest
    ) -> GenerationOutput:
        raise self._unsupported(Capability.SPEECH)

    async def embed(
        self, model: ModelSpec, config: ProviderConfig, request: GenerationRequest
    ) -> GenerationOutput:
        raise self._unsupported(Capability.EMBEDDING)

    async def upscale_image(
        self, model: ModelSpec, config: ProviderConfig, request: GenerationRequest
    ) -> GenerationOutput:
        raise self._unsupported(Capability.UPSCALE_IMAGE)

    async def upscale_video(
        self, model: ModelSpec, config: ProviderConfig, request: GenerationRequest
    ) -> GenerationOutput:
        raise self._unsupported(Capability.UPSCALE_VIDEO)

    # -------------------------------------------------------------------------
    # Lifecycle hooks
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Release network resources. Called when the provider is unregistered."""
        pass

    # -------------------------------------------------------------------------
    # Utility methods
    # -------------------------------------------------------------------------

    def get_config(self, key: str, default: Any = None) -> Any:
        return self._config.get(key, default)

    def _unsupported(self, capability: Capability) -> ProviderUnavailableError:
        return ProviderUnavailableError(self.id, f"capability '{capability.value}' not supported")

    def __repr__(self) -> str:
        return f"<Provider {self.id}>"

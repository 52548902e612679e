"""Generic JSON-over-HTTP provider backend."""

from typing import Optional, Any
import logging
import os

import httpx

from .base import Provider
from ..errors import ProviderRequestError, ProviderUnavailableError
from ..models import Capability, GenerationOutput, GenerationRequest, ModelSpec, ProviderConfig

logger = logging.getLogger(__name__)


class HttpProvider(Provider):
    """
    Provider that POSTs generation requests to ``{base_url}/{endpoint}``.

    The endpoint comes from the model's provider config. The response body is
    normalized into a GenerationOutput; the common shapes are understood:
    ``{"images": [{"url": ...}]}``, ``{"image": {"url": ...}}``,
    ``{"video": {"url": ...}}``, ``{"url": ...}``, ``{"output": [...]}``, plus
    ``text`` and ``embedding`` fields for text and embedding backends.

    Configuration:
        base_url: Backend root URL (required)
        api_key: Literal API key
        api_key_env: Environment variable holding the API key
        auth_header: Header carrying the key (default "Authorization")
        auth_scheme: Prefix for the key (default "Key"; empty for none)
        require_api_key: Report unavailable without a key (default True)
        timeout: Request timeout in seconds (default 300)
        capabilities: Capabilities this backend serves (default all)
    """

    def __init__(
        self,
        provider_id: str,
        config: Optional[dict[str, Any]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(config)
        self.id = provider_id
        self.display_name = self.get_config("display_name", provider_id)
        self.base_url = str(self.get_config("base_url", "")).rstrip("/")
        self.timeout = float(self.get_config("timeout", 300))

        capabilities = self.get_config("capabilities")
        self.capabilities = (
            {Capability(c) for c in capabilities} if capabilities else set(Capability)
        )

        self._client = client
        self._owns_client = client is None

    @property
    def api_key(self) -> Optional[str]:
        key = self.get_config("api_key")
        if not key and self.get_config("api_key_env"):
            key = os.environ.get(self.get_config("api_key_env"))
        return key or None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def is_available(self) -> bool:
        if not self.base_url:
            return False
        if self.get_config("require_api_key", True) and not self.api_key:
            return False
        return True

    async def generate(
        self,
        model: ModelSpec,
        capability: Capability,
        request: GenerationRequest,
    ) -> GenerationOutput:
        if Capability(capability) not in self.capabilities:
            raise self._unsupported(Capability(capability))
        return await super().generate(model, capability, request)

    # All capabilities go through the same POST; the capability is sent along.

    async def generate_text(self, model, config, request) -> GenerationOutput:
        return await self._post(model, config, request, Capability.TEXT)

    async def generate_image(self, model, config, request) -> GenerationOutput:
        return await self._post(model, config, request, Capability.IMAGE)

    async def generate_video(self, model, config, request) -> GenerationOutput:
        return await self._post(model, config, request, Capability.VIDEO)

    async def synthesize_speech(self, model, config, request) -> GenerationOutput:
        return await self._post(model, config, request, Capability.SPEECH)

    async def embed(self, model, config, request) -> GenerationOutput:
        return await self._post(model, config, request, Capability.EMBEDDING)

    async def upscale_image(self, model, config, request) -> GenerationOutput:
        return await self._post(model, config, request, Capability.UPSCALE_IMAGE)

    async def upscale_video(self, model, config, request) -> GenerationOutput:
        return await self._post(model, config, request, Capability.UPSCALE_VIDEO)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        key = self.api_key
        if key:
            scheme = self.get_config("auth_scheme", "Key")
            header = self.get_config("auth_header", "Authorization")
            headers[header] = f"{scheme} {key}" if scheme else key
        return headers

    async def _post(
        self,
        model: ModelSpec,
        config: ProviderConfig,
        request: GenerationRequest,
        capability: Capability,
    ) -> GenerationOutput:
        endpoint = config.endpoint or config.checkpoint
        if not endpoint:
            raise ProviderUnavailableError(self.id, f"no endpoint configured for model '{model.id}'")

        payload = {
            "capability": capability.value,
            "prompt": request.prompt,
            "input_assets": request.input_assets,
            "options": {**config.options, **request.options},
        }
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        logger.info(f"[{self.id}] {capability.value} request: {endpoint}")

        try:
            response = await self.client.post(
                url, json=payload, headers=self._headers(), timeout=self.timeout
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderRequestError(
                self.id,
                f"{e.response.status_code} from {endpoint}: {e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise ProviderRequestError(self.id, f"request to {endpoint} failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderRequestError(self.id, f"invalid JSON from {endpoint}") from e

        return normalize_response(body)


def normalize_response(body: Any) -> GenerationOutput:
    """Normalize a backend JSON body into a GenerationOutput."""
    if not isinstance(body, dict):
        return GenerationOutput(metadata={"raw": body})

    assets: list[str] = []

    def _collect(value: Any) -> None:
        if isinstance(value, str):
            assets.append(value)
        elif isinstance(value, dict) and isinstance(value.get("url"), str):
            assets.append(value["url"])
        elif isinstance(value, list):
            for item in value:
                _collect(item)

    for key in ("images", "image", "video", "audio", "url", "urls", "output"):
        if key in body:
            _collect(body[key])

    skip = {"images", "image", "video", "audio", "url", "urls", "output"}
    metadata = {k: v for k, v in body.items() if k not in skip}

    return GenerationOutput(assets=assets, metadata=metadata)

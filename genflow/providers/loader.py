"""Provider loader - builds provider backends from YAML configuration."""

from pathlib import Path
from typing import Optional, Any
import importlib
import logging

import yaml

from .base import Provider
from .http import HttpProvider
from .registry import ProviderRegistry

logger = logging.getLogger(__name__)


def load_providers_from_yaml(config_path: Path, registry: ProviderRegistry) -> list[str]:
    """
    Load provider backends from a YAML file into a registry.

    Expected format:

    ```yaml
    providers:
      - id: fal
        type: http
        base_url: https://fal.run
        api_key_env: FAL_KEY

      - id: selfhosted
        type: http
        base_url: http://localhost:7860
        require_api_key: false
        capabilities: [image, upscale-image]

      - id: custom
        class: my_package.backends:CustomProvider
        config:
          region: eu
    ```

    ``type: http`` builds an HttpProvider with the remaining keys as config.
    ``class: module:ClassName`` imports a Provider subclass; it is constructed
    with ``config=`` and its id is set from the entry.

    Args:
        config_path: Path to the YAML file
        registry: Registry to populate

    Returns:
        Ids of the registered providers
    """
    if not config_path.exists():
        logger.warning(f"Provider config file not found: {config_path}")
        return []

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    loaded = []
    for entry in data.get("providers") or []:
        try:
            provider = build_provider(entry)
            if provider is None:
                continue
            registry.register(provider)
        except (ValueError, ImportError, AttributeError, TypeError) as e:
            logger.error(f"Failed to load provider from {entry!r}: {e}")
            continue

        loaded.append(provider.id)

    logger.info(f"Loaded {len(loaded)} providers from {config_path}: {loaded}")
    return loaded


def build_provider(entry: dict[str, Any]) -> Optional[Provider]:
    """Build a single provider from its config entry."""
    provider_id = entry.get("id")
    if not provider_id:
        logger.warning("Provider config missing required 'id' field")
        return None

    if entry.get("enabled", True) is False:
        logger.info(f"Provider '{provider_id}' disabled in config")
        return None

    if "class" in entry:
        provider_class = _import_provider_class(entry["class"])
        provider = provider_class(config=entry.get("config", {}))
        provider.id = provider_id
        return provider

    provider_type = entry.get("type", "http")
    if provider_type != "http":
        raise ValueError(f"Unknown provider type '{provider_type}' for '{provider_id}'")

    config = {k: v for k, v in entry.items() if k not in ("id", "type", "enabled")}
    return HttpProvider(provider_id, config)


def _import_provider_class(path: str) -> type[Provider]:
    """Import ``module:ClassName`` and check it is a Provider subclass."""
    module_name, _, class_name = path.partition(":")
    if not class_name:
        raise ValueError(f"Provider class must be 'module:ClassName', got '{path}'")

    module = importlib.import_module(module_name)
    provider_class = getattr(module, class_name)

    if not (isinstance(provider_class, type) and issubclass(provider_class, Provider)):
        raise TypeError(f"{path} is not a Provider subclass")

    return provider_class

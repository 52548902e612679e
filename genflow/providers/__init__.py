"""Provider capability interface and backends."""

from .base import Provider
from .registry import ProviderRegistry
from .http import HttpProvider
from .loader import load_providers_from_yaml, build_provider

__all__ = [
    "Provider",
    "ProviderRegistry",
    "HttpProvider",
    "load_providers_from_yaml",
    "build_provider",
]

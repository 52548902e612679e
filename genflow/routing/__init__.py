"""Provider routing with health tracking."""

from .health import BackoffPolicy, ProviderHealthTracker
from .router import ProviderRouter

__all__ = ["BackoffPolicy", "ProviderHealthTracker", "ProviderRouter"]

"""Settings for genflow, loaded from YAML."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class RouterSettings:
    """Provider health thresholds and cooldown curve.

    Attributes:
        failure_threshold: Consecutive failures before a provider is marked unavailable
        cooldown_base_seconds: Cooldown applied when the threshold is first crossed
        cooldown_factor: Growth factor for each further failure
        cooldown_max_seconds: Upper bound on a single cooldown
    """
    failure_threshold: int = 3
    cooldown_base_seconds: float = 300.0
    cooldown_factor: float = 2.0
    cooldown_max_seconds: float = 3600.0


@dataclass
class ExecutorSettings:
    """Workflow executor behaviour.

    Attributes:
        lease_timeout_seconds: How long advance/complete_task wait for a run lease
        default_max_attempts: Attempts for steps that don't declare a retry policy
        default_backoff_seconds: Base retry backoff for those steps
    """
    lease_timeout_seconds: float = 30.0
    default_max_attempts: int = 1
    default_backoff_seconds: float = 0.0


@dataclass
class Settings:
    """Top-level settings."""
    database_path: Path = Path("genflow.db")
    models_path: Optional[Path] = None
    workflows_path: Optional[Path] = None
    providers_path: Optional[Path] = None
    log_level: str = "INFO"
    router: RouterSettings = field(default_factory=RouterSettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)


def _expand_path(value: Any) -> Optional[Path]:
    if value is None:
        return None
    return Path(os.path.expandvars(str(Path(str(value)).expanduser())))


def load_settings(config_path: Optional[Path | str] = None) -> Settings:
    """
    Load settings from a YAML file.

    Expected format:

    ```yaml
    database_path: ~/.genflow/genflow.db
    models_path: config/models.yaml
    workflows_path: config/workflows.yaml
    providers_path: config/providers.yaml
    log_level: INFO
    router:
      failure_threshold: 3
      cooldown_base_seconds: 300
    executor:
      lease_timeout_seconds: 30
    ```

    Args:
        config_path: Path to the YAML file; None or a missing file gives defaults

    Returns:
        The loaded settings
    """
    if config_path is None:
        return Settings()

    config_path = Path(config_path)
    if not config_path.exists():
        logger.warning(f"Settings file not found, using defaults: {config_path}")
        return Settings()

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    settings = Settings(
        router=RouterSettings(**(data.get("router") or {})),
        executor=ExecutorSettings(**(data.get("executor") or {})),
        log_level=data.get("log_level", "INFO"),
    )

    if "database_path" in data:
        settings.database_path = _expand_path(data["database_path"])
    settings.models_path = _expand_path(data.get("models_path"))
    settings.workflows_path = _expand_path(data.get("workflows_path"))
    settings.providers_path = _expand_path(data.get("providers_path"))

    logger.info(f"Loaded settings from {config_path}")
    return settings


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for command-line use."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=LOG_FORMAT,
    )

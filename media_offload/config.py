"""
Configuration for the offload orchestrator.

Every section is a dataclass with a ``from_env()`` constructor. A single YAML
file can provide all sections at once:

```yaml
storage:
  api_key: "..."
  storage_zone: "my-zone"
  custom_hostname: "cdn.example.com"   # optional
optimizer:
  api_key: "..."
  region: "eu"
criteria:
  max_file_size_kb: 50
orchestrator:
  migration_batch_size: 20
  delete_local: false
```

Credentials are only read here; how they get into the environment or file is
the deployer's concern.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError

ENV_PREFIX = "MEDIA_OFFLOAD_"

HOUR_SECONDS = 60 * 60

OPTIMIZER_REGIONS = {
    "us": "https://api-us.bmo.nexwinds.com/v1/images/wp/optimize",
    "eu": "https://api-eu.bmo.nexwinds.com/v1/images/wp/optimize",
}


def _env(name: str, default: str | None = None) -> str | None:
    return os.environ.get(f"{ENV_PREFIX}{name}", default)


def _env_bool(name: str, default: bool) -> bool:
    value = _env(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _from_mapping(cls: type, data: dict[str, Any] | None) -> Any:
    """Build a config dataclass from a mapping, ignoring unknown keys."""
    if not data:
        return cls()
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class StorageClientConfig:
    """Configuration for the CDN object storage API."""

    api_key: str | None = None
    storage_zone: str | None = None
    custom_hostname: str | None = None
    base_url: str = "https://storage.bunnycdn.com"
    timeout: float = 120.0

    @classmethod
    def from_env(cls) -> StorageClientConfig:
        """Create config from environment variables."""
        return cls(
            api_key=_env("STORAGE_API_KEY"),
            storage_zone=_env("STORAGE_ZONE"),
            custom_hostname=_env("STORAGE_CUSTOM_HOSTNAME"),
            base_url=_env("STORAGE_BASE_URL", "https://storage.bunnycdn.com") or "",
            timeout=float(_env("STORAGE_TIMEOUT", "120") or 120),
        )

    def validate(self) -> list[str]:
        """Return human readable configuration errors (empty when usable)."""
        errors = []
        if not self.api_key:
            errors.append("storage API key is required")
        if not self.storage_zone:
            errors.append("storage zone is required")
        return errors

    def require_valid(self) -> None:
        errors = self.validate()
        if errors:
            raise ConfigurationError("remote storage", errors)


@dataclass
class OptimizerClientConfig:
    """Configuration for the external image optimization API."""

    api_key: str | None = None
    region: str = "us"
    quality: int = 85
    format: str = "auto"
    max_batch_size: int = 3
    threshold_kb: int = 150
    timeout: float = 120.0

    @classmethod
    def from_env(cls) -> OptimizerClientConfig:
        """Create config from environment variables."""
        return cls(
            api_key=_env("OPTIMIZER_API_KEY"),
            region=_env("OPTIMIZER_REGION", "us") or "us",
            quality=int(_env("OPTIMIZER_QUALITY", "85") or 85),
            format=_env("OPTIMIZER_FORMAT", "auto") or "auto",
            max_batch_size=int(_env("OPTIMIZER_MAX_BATCH_SIZE", "3") or 3),
            timeout=float(_env("OPTIMIZER_TIMEOUT", "120") or 120),
        )

    @property
    def endpoint(self) -> str:
        return OPTIMIZER_REGIONS.get(self.region, OPTIMIZER_REGIONS["us"])

    def validate(self) -> list[str]:
        """Return human readable configuration errors (empty when usable)."""
        errors = []
        if not self.api_key:
            errors.append("optimizer API key is required")
        if self.region not in OPTIMIZER_REGIONS:
            errors.append(f"optimizer region must be one of {sorted(OPTIMIZER_REGIONS)}")
        if self.max_batch_size < 1:
            errors.append("optimizer max_batch_size must be >= 1")
        return errors

    def require_valid(self) -> None:
        errors = self.validate()
        if errors:
            raise ConfigurationError("image optimizer", errors)


@dataclass
class CriteriaConfig:
    """Size and cooldown thresholds used by the eligibility filter."""

    max_file_size_kb: int = 50
    optimization_ceiling_bytes: int = 9 * 1024 * 1024
    cooldown_hours: float = 24.0

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_kb * 1024

    @property
    def cooldown_seconds(self) -> float:
        return self.cooldown_hours * HOUR_SECONDS

    @classmethod
    def from_env(cls) -> CriteriaConfig:
        """Create config from environment variables."""
        return cls(
            max_file_size_kb=int(_env("MAX_FILE_SIZE_KB", "50") or 50),
            optimization_ceiling_bytes=int(
                _env("OPTIMIZATION_CEILING_BYTES", str(9 * 1024 * 1024)) or 9 * 1024 * 1024
            ),
            cooldown_hours=float(_env("COOLDOWN_HOURS", "24") or 24),
        )


@dataclass
class OrchestratorConfig:
    """Batch sizing, concurrency, retry, and session lifetime settings."""

    migration_batch_size: int = 20
    migration_concurrency: int = 4
    optimization_batch_size: int = 9
    optimization_concurrency: int = 3
    max_retries: int = 2
    retry_delay: float = 2.0
    migration_ttl_seconds: int = 24 * HOUR_SECONDS
    optimization_ttl_seconds: int = 2 * HOUR_SECONDS
    file_versioning: bool = True
    delete_local: bool = False

    @classmethod
    def from_env(cls) -> OrchestratorConfig:
        """Create config from environment variables."""
        return cls(
            migration_batch_size=int(_env("MIGRATION_BATCH_SIZE", "20") or 20),
            migration_concurrency=int(_env("MIGRATION_CONCURRENCY", "4") or 4),
            optimization_batch_size=int(_env("OPTIMIZATION_BATCH_SIZE", "9") or 9),
            optimization_concurrency=int(_env("OPTIMIZATION_CONCURRENCY", "3") or 3),
            max_retries=int(_env("MAX_RETRIES", "2") or 2),
            retry_delay=float(_env("RETRY_DELAY", "2.0") or 2.0),
            file_versioning=_env_bool("FILE_VERSIONING", True),
            delete_local=_env_bool("DELETE_LOCAL", False),
        )


@dataclass
class OffloadConfig:
    """Top-level configuration bundle."""

    storage: StorageClientConfig = field(default_factory=StorageClientConfig)
    optimizer: OptimizerClientConfig = field(default_factory=OptimizerClientConfig)
    criteria: CriteriaConfig = field(default_factory=CriteriaConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)

    @classmethod
    def from_env(cls) -> OffloadConfig:
        """Create config from environment variables."""
        return cls(
            storage=StorageClientConfig.from_env(),
            optimizer=OptimizerClientConfig.from_env(),
            criteria=CriteriaConfig.from_env(),
            orchestrator=OrchestratorConfig.from_env(),
        )

    @classmethod
    def from_file(cls, path: Path) -> OffloadConfig:
        """Load config from a YAML file.

        Missing sections fall back to defaults. Raises ConfigurationError if
        the file cannot be parsed.
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError("config file", [f"{path}: {e}"]) from e

        if not isinstance(data, dict):
            raise ConfigurationError("config file", [f"{path}: expected a mapping"])

        return cls(
            storage=_from_mapping(StorageClientConfig, data.get("storage")),
            optimizer=_from_mapping(OptimizerClientConfig, data.get("optimizer")),
            criteria=_from_mapping(CriteriaConfig, data.get("criteria")),
            orchestrator=_from_mapping(OrchestratorConfig, data.get("orchestrator")),
        )

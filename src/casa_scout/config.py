"""YAML configuration loader."""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from casa_scout.models.pydantic_models import RateLimitPolicy, Source

CONFIG_ENV_VAR = "CASA_SCOUT_CONFIG"
CRON_ENV_VAR = "CASA_SCOUT_CRON_SCHEDULE"
RUN_ON_START_ENV_VAR = "CASA_SCOUT_RUN_ON_START"

PROJECT_ROOT = Path(__file__).parent.parent.parent


class CrawlSettings(BaseModel):
    """Crawl run behavior."""

    source: Source = Source.MERCADOLIBRE
    max_searches: int = Field(50, ge=1)
    shuffle: bool = True
    pages_per_search: int = Field(5, ge=1)
    page_delay_seconds: float = Field(1.0, ge=0)
    descriptor_delay_seconds: float = Field(2.0, ge=0)
    rate_limit_cooldown_seconds: float = Field(10.0, ge=0)
    rate_limit_policy: RateLimitPolicy = RateLimitPolicy.SKIP
    max_rate_limit_retries: int = Field(1, ge=0)
    timeout_seconds: float = Field(45.0, gt=0)
    headless: bool = True

    model_config = ConfigDict(frozen=True)


class EnrichmentSettings(BaseModel):
    """Enrichment cycle behavior."""

    limit: int = Field(30, ge=1)
    batch_size: int = Field(10, ge=1)
    batch_delay_seconds: float = Field(5.0, ge=0)
    item_delay_seconds: float = Field(2.0, ge=0)
    only_recent: bool = True
    recent_days: int = Field(7, ge=1)
    min_interval_hours: float = Field(1.0, ge=0)

    model_config = ConfigDict(frozen=True)


class SchedulerSettings(BaseModel):
    """Triggers for scheduled runs."""

    crawl_cron: str = "0 2 * * *"
    enrichment_interval_minutes: int = Field(60, ge=1)
    run_on_start: bool = False

    model_config = ConfigDict(frozen=True)


class StateSettings(BaseModel):
    """Location and size of the run-state files."""

    crawl_state_path: Path = Path("data/crawl-state.json")
    enrichment_state_path: Path = Path("data/enrichment-state.json")
    crawl_history_limit: int = Field(30, ge=1)
    enrichment_history_limit: int = Field(100, ge=1)

    model_config = ConfigDict(frozen=True)


class HealthSettings(BaseModel):
    """Thresholds for the derived health signal."""

    stale_after_hours: float = Field(2.0, gt=0)

    model_config = ConfigDict(frozen=True)


class ScoutConfig(BaseModel):
    """Complete application configuration."""

    crawl: CrawlSettings = Field(default_factory=CrawlSettings)
    enrichment: EnrichmentSettings = Field(default_factory=EnrichmentSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    state: StateSettings = Field(default_factory=StateSettings)
    health: HealthSettings = Field(default_factory=HealthSettings)

    model_config = ConfigDict(frozen=True)


def _get_default_config_path() -> Path:
    """Get the default config path relative to project root."""
    return PROJECT_ROOT / "config" / "scout.yaml"


def _load_raw_config(path: Path | None = None) -> dict[str, Any]:
    """Load raw YAML config.

    Args:
        path: Explicit config path. If None, CASA_SCOUT_CONFIG or the default
            config/scout.yaml is used.

    Returns:
        Raw config dictionary (empty if the default file is absent).

    Raises:
        FileNotFoundError: If an explicitly requested file doesn't exist.
        yaml.YAMLError: If YAML parsing fails.
    """
    if path is None and (env_path := os.environ.get(CONFIG_ENV_VAR)):
        path = Path(env_path)

    if path is None:
        path = _get_default_config_path()
        if not path.exists():
            return {}
    elif not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        raw_config: dict[str, Any] | None = yaml.safe_load(f)

    return raw_config if raw_config is not None else {}


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def apply_env_overrides(
    config: ScoutConfig, environ: Mapping[str, str] | None = None
) -> ScoutConfig:
    """Apply scheduler overrides from environment variables.

    Args:
        config: Base configuration.
        environ: Environment mapping. Defaults to os.environ.

    Returns:
        New ScoutConfig with overrides applied.
    """
    env = os.environ if environ is None else environ
    scheduler_updates: dict[str, Any] = {}

    if cron := env.get(CRON_ENV_VAR):
        scheduler_updates["crawl_cron"] = cron
    if (run_on_start := env.get(RUN_ON_START_ENV_VAR)) is not None:
        scheduler_updates["run_on_start"] = _parse_bool(run_on_start)

    if not scheduler_updates:
        return config

    scheduler = config.scheduler.model_copy(update=scheduler_updates)
    return config.model_copy(update={"scheduler": scheduler})


def load_config(path: Path | None = None) -> ScoutConfig:
    """Load and validate configuration from YAML.

    Args:
        path: Path to YAML config file. If None, uses CASA_SCOUT_CONFIG or
            config/scout.yaml; a missing default file yields defaults.

    Returns:
        Validated ScoutConfig with environment overrides applied.

    Raises:
        FileNotFoundError: If an explicit config file doesn't exist.
        yaml.YAMLError: If YAML parsing fails.
        ValidationError: If config doesn't match expected schema.
    """
    raw_config = _load_raw_config(path)
    config = ScoutConfig.model_validate(raw_config)
    return apply_env_overrides(config)


def merge_crawl_overrides(
    settings: CrawlSettings,
    overrides: dict[str, Any],
) -> CrawlSettings:
    """Merge CLI/API overrides with crawl settings.

    Overrides whose value is None are ignored.

    Args:
        settings: Base crawl settings from config.
        overrides: Dict with override values keyed by CrawlSettings field name.

    Returns:
        New, validated CrawlSettings.
    """
    updates = {key: value for key, value in overrides.items() if value is not None}
    if not updates:
        return settings
    return CrawlSettings.model_validate({**settings.model_dump(), **updates})

"""Configuration management for the site detective daemon."""

from pathlib import Path
from typing import Optional, Literal

import yaml
from loguru import logger
from pydantic import BaseModel, Field, field_validator


class ScanConfig(BaseModel):
    quick_budget_seconds: float = 5.0
    batch_time_limit_seconds: float = 30.0
    deep_batch_size: int = 50
    max_concurrent_jobs: int = 3
    job_ttl_seconds: int = 3600
    stale_after_seconds: float = 5.0
    inter_batch_delay_seconds: float = 5.0
    quick_analysis: bool = False

    @field_validator('quick_budget_seconds', 'batch_time_limit_seconds')
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("scan time limits must be positive")
        return v

    @field_validator('deep_batch_size', 'max_concurrent_jobs')
    @classmethod
    def validate_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("batch size and job ceiling must be at least 1")
        return v


class CacheConfig(BaseModel):
    compress_threshold_bytes: int = 50_000
    default_ttl_seconds: int = 3600
    file_list_ttl_seconds: int = 1800
    sweep_interval_seconds: int = 300


class ThrottleConfig(BaseModel):
    memory_limit_mb: Optional[float] = None
    memory_threshold: float = 0.8
    max_active_jobs: int = 3
    soft_time_ceiling_seconds: float = 25.0
    quick_batch_size: int = 20
    deep_batch_size: int = 10

    @field_validator('memory_threshold')
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("memory_threshold must be in (0, 1]")
        return v


class ScoringConfig(BaseModel):
    top_n: int = 20


class ExplainerConfig(BaseModel):
    provider: Literal["none", "openai", "ollama"] = "none"
    base_url: Optional[str] = None
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    timeout_ms: int = 45_000
    max_tokens: int = 1500
    temperature: float = 0.3
    failure_threshold: int = 3
    recovery_timeout_seconds: int = 60

    @property
    def resolved_base_url(self) -> str:
        if self.base_url:
            return self.base_url.rstrip("/")
        if self.provider == "ollama":
            return "http://localhost:11434/v1"
        return "https://api.openai.com/v1"


class ExportConfig(BaseModel):
    directory: Path = Field(
        default_factory=lambda: Path.home() / ".local" / "share" / "sitedetective" / "exports"
    )


class ApiConfig(BaseModel):
    host: str = "localhost"
    port: int = 8766


class SiteConfig(BaseModel):
    snapshot_path: Optional[Path] = None


class Config(BaseModel):
    """Main configuration for the site detective daemon."""

    scan: ScanConfig = Field(default_factory=ScanConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    throttle: ThrottleConfig = Field(default_factory=ThrottleConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    explainer: ExplainerConfig = Field(default_factory=ExplainerConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    site: SiteConfig = Field(default_factory=SiteConfig)

    @field_validator('export')
    @classmethod
    def expand_export_dir(cls, v: ExportConfig) -> ExportConfig:
        v.directory = Path(v.directory).expanduser()
        return v

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from YAML file."""
        if config_path is None:
            candidates = [
                Path("sitedetective.yaml"),
                Path.home() / ".config" / "sitedetective" / "config.yaml",
                Path("/etc/sitedetective/config.yaml"),
            ]
            for candidate in candidates:
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                logger.info("No config file found, using defaults")
                return cls()

        logger.info(f"Loading config from: {config_path}")
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False)

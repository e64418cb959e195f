"""
Configuration Management
Loads settings from environment variables and optional YAML overlays
"""
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_DIR = Path(__file__).parent.parent.parent / "config"

_ENV_VAR_PATTERN = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")


class SMSSettings(BaseModel):
    provider: str = Field(default="mock", description="SMS provider name (mock, vonage)")
    from_number: str = Field(default="+1234567890", description="Default sender number")
    company_name: str = Field(default="Solar Solutions", description="Sender name used in templates")
    vonage_api_key: Optional[str] = None
    vonage_api_secret: Optional[str] = None


class CalendarSettings(BaseModel):
    provider: str = Field(default="mock", description="Calendar provider name")
    default_duration_minutes: int = Field(default=60, ge=15)
    buffer_minutes: int = Field(default=15, ge=0)
    available_hours_start: str = Field(default="09:00", description="First slot start (HH:MM)")
    available_hours_end: str = Field(default="17:00", description="Last slot must end by (HH:MM)")
    available_days: List[int] = Field(
        default=[0, 1, 2, 3, 4],
        description="Days with slots (0=Monday, 6=Sunday)"
    )
    timezone: str = Field(default="America/New_York")
    horizon_days: int = Field(default=14, ge=1, description="How far ahead slots are generated")
    prebooked_ratio: float = Field(default=0.0, ge=0.0, le=1.0, description="Share of mock slots pre-booked")
    seed: Optional[int] = Field(default=None, description="Random seed for mock pre-booking")


class LanguageSettings(BaseModel):
    provider: str = Field(default="rule_based", description="Language provider (rule_based, groq)")
    api_key: Optional[str] = None
    model: str = Field(default="llama-3.1-8b-instant")
    max_tokens: int = Field(default=150, ge=1)
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    min_confidence: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="Classifications below this confidence are treated as unknown"
    )


class RetryPolicy(BaseModel):
    """
    Backoff applied to re-contact after a provider failure.

    delay(k) = initial_delay * multiplier ** (k - 1), capped at max_delay,
    where k is the number of consecutive failed outbound attempts.
    """
    max_attempts: int = Field(default=3, ge=1)
    initial_delay_seconds: int = Field(default=60, ge=1)
    max_delay_seconds: int = Field(default=3600, ge=1)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    retryable_errors: List[str] = Field(default_factory=lambda: ["TIMEOUT", "RATE_LIMIT"])

    def is_retryable(self, error: Optional[str]) -> bool:
        if not error:
            return False
        upper = error.upper()
        return any(token.upper() in upper for token in self.retryable_errors)

    def delay_for(self, consecutive_failures: int) -> int:
        """Seconds to wait after `consecutive_failures` failed sends in a row."""
        k = max(1, consecutive_failures)
        delay = self.initial_delay_seconds * (self.backoff_multiplier ** (k - 1))
        return int(min(delay, self.max_delay_seconds))


class ContactSettings(BaseModel):
    max_attempts_per_lead: int = Field(default=5, ge=1)
    follow_up_delay_hours: float = Field(default=24, gt=0)
    quiet_hours_start: str = Field(default="21:00")
    quiet_hours_end: str = Field(default="09:00")
    timezone: str = Field(default="America/New_York")
    slots_per_proposal: int = Field(default=3, ge=1, le=5)


class WorkflowSettings(BaseModel):
    scheduler_interval_seconds: float = Field(default=60, gt=0)
    collaborator_timeout_seconds: float = Field(default=15, gt=0)
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)


class Settings(BaseSettings):
    """Runtime settings loaded from environment"""

    model_config = SettingsConfigDict(
        env_prefix="AGENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: str = "development"
    debug: bool = False

    # Durable lead storage; unset keeps leads in memory
    database_url: Optional[str] = None

    sms: SMSSettings = Field(default_factory=SMSSettings)
    calendar: CalendarSettings = Field(default_factory=CalendarSettings)
    language: LanguageSettings = Field(default_factory=LanguageSettings)
    contact: ContactSettings = Field(default_factory=ContactSettings)
    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)

    @field_validator("environment")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_yaml(cls, path: Union[str, Path], **overrides: Any) -> "Settings":
        """
        Build settings from a YAML file layered over environment values.

        `${VAR}` string values are substituted from the environment.
        Keyword overrides win over both.
        """
        data = load_yaml(Path(path))
        substitute_env_vars(data)
        deep_merge(data, overrides)
        return cls(**data)


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file"""
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def substitute_env_vars(config: Dict[str, Any]) -> None:
    """Replace ${VAR_NAME} with environment variable values (None when unset)"""
    for key, value in config.items():
        if isinstance(value, dict):
            substitute_env_vars(value)
        elif isinstance(value, str):
            match = _ENV_VAR_PATTERN.match(value)
            if match:
                config[key] = os.getenv(match.group(1))


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Recursively merge override into base"""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            deep_merge(base[key], value)
        else:
            base[key] = value


def load_settings(env: Optional[str] = None, config_dir: Optional[Path] = None) -> Settings:
    """
    Load settings the way deployments do.

    Reads `default.yaml` then `<env>.yaml` from the config directory when
    present, and falls back to environment-only settings otherwise.
    """
    config_dir = config_dir or DEFAULT_CONFIG_DIR
    env = env or os.getenv("AGENT_ENVIRONMENT", "development")

    data: Dict[str, Any] = {}
    for name in ("default.yaml", f"{env}.yaml"):
        path = config_dir / name
        if path.exists():
            deep_merge(data, load_yaml(path))

    substitute_env_vars(data)
    data.setdefault("environment", env)
    return Settings(**data)

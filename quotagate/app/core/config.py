import json
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from quotagate.app.exceptions import InvalidConfigurationError
from quotagate.app.services.rate_limit.models import FailurePolicy, PolicySet, Rule


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    Rules are supplied as JSON, e.g.
    RATE_LIMIT_RULES='[{"path": "/api/login", "limit_per_second": 1}]'.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Redis settings
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout: float = 0.5  # Per-command read/write timeout
    redis_connect_timeout: float = 1.0
    redis_max_connections: int = 50

    # Rate limiting settings
    rate_limit_enabled: bool = True
    rate_limit_rules: list[Rule] = Field(default_factory=list)
    rate_limit_default_rule: Rule | None = None
    rate_limit_policy_file: str = ""  # JSON policy document, overrides the fields above
    rate_limit_store_timeout: float = 1.0  # Upper bound for one bucket check
    # Behaviour when Redis is unavailable: open admits, closed and raise reject with 503
    rate_limit_failure_policy: FailurePolicy = FailurePolicy.OPEN

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Secret decryption (values prefixed with secret_prefix are Fernet tokens)
    secret_encryption_key: str = ""
    secret_prefix: str = "enc://"

    @field_validator(
        "redis_socket_timeout", "redis_connect_timeout", "rate_limit_store_timeout"
    )
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @field_validator("redis_max_connections")
    @classmethod
    def validate_pool_size_positive(cls, v: int) -> int:
        """Validate pool size is positive."""
        if v < 1:
            raise ValueError("redis_max_connections must be at least 1")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


def load_policy_file(path: str | Path) -> PolicySet:
    """Load a policy set from a JSON document.

    The document mirrors the deployment config layout::

        {
            "enabled": true,
            "rules": [{"path": "/api/login", "limit_per_second": 1}],
            "default_rule": {"path": "*", "limit_per_minute": 600}
        }

    Raises:
        InvalidConfigurationError: If the file is unreadable or a rule is invalid.
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise InvalidConfigurationError(f"Cannot read policy file {path}: {e}") from e
    try:
        return PolicySet.model_validate_json(raw)
    except ValidationError as e:
        raise InvalidConfigurationError(f"Invalid policy file {path}: {e}") from e


def load_policy_set(settings: "Settings") -> PolicySet:
    """Build the policy set described by settings.

    A configured policy file takes priority over the inline RATE_LIMIT_* rules.
    """
    if settings.rate_limit_policy_file:
        return load_policy_file(settings.rate_limit_policy_file)
    try:
        return PolicySet(
            enabled=settings.rate_limit_enabled,
            rules=settings.rate_limit_rules,
            default_rule=settings.rate_limit_default_rule,
        )
    except ValidationError as e:
        raise InvalidConfigurationError(f"Invalid rate limit settings: {e}") from e


def policy_to_json(policy: PolicySet) -> str:
    """Serialize a policy set in the same layout load_policy_file reads."""
    data: dict[str, Any] = policy.model_dump(by_alias=True, exclude_none=True)
    return json.dumps(data, ensure_ascii=False, indent=2)


# Global settings instance
settings = Settings()

# src/safefetch/core/config.py
"""
Configuration schema and loading for safefetch.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from safefetch.core.security.rules import Dimension, parse_rules


class RuleListSettings(BaseModel):
    """Allow/deny lists for one policy dimension.

    ``None`` keeps the built-in default for that list; an explicit empty
    list clears it.

    Example YAML:
        port:
          allow: [80, 443, "8000-8100"]
          deny: [8080]
    """

    model_config = {"frozen": True, "extra": "forbid"}

    allow: list[Any] | None = Field(default=None, description="Rules that permit a value")
    deny: list[Any] | None = Field(default=None, description="Rules that reject a value (deny wins)")


class PolicySettings(BaseModel):
    """Options object accepted by PolicyConfig.

    Example YAML:
        policy:
          scheme: {allow: [https]}
          ip: {deny: ["10.0.0.0/8"]}
          send_credentials: false
          redirect_limit: 3
          headers: {User-Agent: safefetch}
    """

    model_config = {"frozen": True, "extra": "forbid"}

    scheme: RuleListSettings = Field(default_factory=RuleListSettings)
    port: RuleListSettings = Field(default_factory=RuleListSettings)
    domain: RuleListSettings = Field(default_factory=RuleListSettings)
    ip: RuleListSettings = Field(default_factory=RuleListSettings)
    send_credentials: bool = Field(default=False, description="Permit and forward user:password@ in URLs")
    pin_dns: bool = Field(default=True, description="Connect only to the IPs validated for the hop")
    follow_redirects: bool = Field(default=True, description="Follow redirects with per-hop validation")
    redirect_limit: int = Field(default=5, ge=0, description="Hop limit; 0 means unlimited")
    headers: dict[str, str] | None = Field(default=None, description="Fixed headers for every request")
    timeout: float = Field(default=30.0, gt=0, description="Transport timeout in seconds")
    dns_timeout: float = Field(default=5.0, gt=0, description="DNS resolution timeout in seconds")

    @model_validator(mode="after")
    def validate_rules(self) -> "PolicySettings":
        """Parse every rule at config time so bad rules fail on load, not on first fetch."""
        for dimension in Dimension:
            lists: RuleListSettings = getattr(self, dimension.value)
            for kind in ("allow", "deny"):
                values = getattr(lists, kind)
                if values is None:
                    continue
                try:
                    parse_rules(dimension, values)
                except ValueError as e:
                    raise ValueError(f"{dimension.value}.{kind}: {e}") from e
        return self


class LoggingSettings(BaseModel):
    """Logging output configuration."""

    model_config = {"frozen": True, "extra": "forbid"}

    level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    json_output: bool = Field(default=False, description="Emit JSON lines instead of console output")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v!r}")
        return level


class SafeFetchSettings(BaseModel):
    """Top-level settings file."""

    model_config = {"frozen": True, "extra": "forbid"}

    policy: PolicySettings = Field(default_factory=PolicySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def _lower_keys(value: Any) -> Any:
    """Lower-case mapping keys from Dynaconf, except inside ``headers``."""
    if isinstance(value, dict):
        result: dict[str, Any] = {}
        for k, v in value.items():
            key = k.lower() if isinstance(k, str) else k
            result[key] = v if key == "headers" else _lower_keys(v)
        return result
    if isinstance(value, list):
        return [_lower_keys(v) for v in value]
    return value


def load_settings(config_path: Path) -> SafeFetchSettings:
    """Load settings from YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (SAFEFETCH_*) - highest priority
    2. Config file (settings.yaml)
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: SAFEFETCH_POLICY__REDIRECT_LIMIT for nested keys.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated SafeFetchSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Explicit check for file existence (Dynaconf silently accepts missing files)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="SAFEFETCH",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; filter out its internal settings
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k: v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}

    return SafeFetchSettings(**_lower_keys(raw_config))

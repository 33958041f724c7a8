"""
Configuration Validation Module

Validates app.yaml against Pydantic schemas and applies environment
overrides before the daemon starts.

Usage:
    from tools.config_validator import validate_all_configs, load_app_config

    errors = validate_all_configs("config")
    if errors:
        for error in errors:
            print(f"ERROR: {error}")
        sys.exit(1)

    config = load_app_config("config")
"""
import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from infra.contracts import (
    BASE_CHAIN_ID,
    BASE_RPC_URL,
    CHAINLINK_ETH_USD,
    FEE_LOCKER,
    UPSKILL_TOKEN,
    WETH,
)

logger = logging.getLogger(__name__)

APP_CONFIG_FILE = "app.yaml"

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "MIN_CREDITS": ("autonomy", "min_credits"),
    "CREDIT_PURCHASE_AMOUNT": ("autonomy", "credit_purchase_amount"),
    "MIN_WETH_FOR_TOPUP": ("autonomy", "min_claim_amount"),
    "CHECK_INTERVAL_SECONDS": ("autonomy", "interval_seconds"),
    "MAX_GAS_PRICE_GWEI": ("safety", "max_fee_price_gwei"),
    "UPSKILL_GATEWAY_URL": ("services", "gateway_url"),
    "BASE_RPC_URL": ("chain", "rpc_url"),
    "HEALTH_PORT": ("monitoring", "health_port"),
    "LOG_LEVEL": ("logging", "level"),
}


# ===== Schema =====
class AppSection(BaseModel):
    mode: str = Field(default="LIVE", pattern="^(LIVE|DRY_RUN)$", description="LIVE submits transactions")


class ChainSettings(BaseModel):
    rpc_url: str = Field(default=BASE_RPC_URL, min_length=1)
    chain_id: int = Field(default=BASE_CHAIN_ID, gt=0)
    token: str = Field(default=UPSKILL_TOKEN, pattern=r"^0x[a-fA-F0-9]{40}$")
    weth: str = Field(default=WETH, pattern=r"^0x[a-fA-F0-9]{40}$")
    fee_locker: str = Field(default=FEE_LOCKER, pattern=r"^0x[a-fA-F0-9]{40}$")
    price_feed: str = Field(default=CHAINLINK_ETH_USD, pattern=r"^0x[a-fA-F0-9]{40}$")
    confirmation_timeout_seconds: float = Field(default=120.0, gt=0)


class AutonomySettings(BaseModel):
    """Thresholds that drive the claim and fund decisions."""
    min_credits: Decimal = Field(default=Decimal("5"), ge=0, description="Top up below this USD balance")
    credit_purchase_amount: Decimal = Field(default=Decimal("10"), gt=0, description="USD per top-up")
    min_claim_amount: Decimal = Field(default=Decimal("0.002"), ge=0, description="Minimum WETH worth claiming")
    interval_seconds: float = Field(default=300.0, gt=0, description="Seconds between cycle starts")
    max_consecutive_failures: int = Field(default=5, gt=0)
    gather_timeout_seconds: Optional[float] = Field(default=None, gt=0)


class SafetySettings(BaseModel):
    safety_multiplier: Decimal = Field(default=Decimal("1.2"), ge=1)
    funding_buffer_pct: Decimal = Field(default=Decimal("20"), ge=0, le=100)
    max_fee_price_gwei: Decimal = Field(default=Decimal("50"), gt=0)
    # Action units: ether for claims, USD for purchases
    min_amount_to_act: Decimal = Field(default=Decimal("0"), ge=0)


class PriceSettings(BaseModel):
    cache_ttl_seconds: float = Field(default=60.0, ge=0)
    staleness_seconds: float = Field(default=3600.0, gt=0)


class RetrySettings(BaseModel):
    max_retries: int = Field(default=2, ge=0)
    initial_delay: float = Field(default=1.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=30.0, ge=0)


class ServicesSettings(BaseModel):
    credits_base_url: str = Field(default="https://openrouter.ai/api/v1", min_length=1)
    gateway_url: str = Field(default="https://upskill-gateway-production.up.railway.app", min_length=1)

    @field_validator("credits_base_url", "gateway_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"URL must start with http:// or https://, got {v}")
        return v.rstrip("/")


class MonitoringSettings(BaseModel):
    health_enabled: bool = False
    health_port: int = Field(default=8080, gt=0, lt=65536)
    metrics_enabled: bool = False
    metrics_port: int = Field(default=9100, gt=0, lt=65536)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO")
    file: Optional[str] = Field(default="logs/autonomy.log")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        normalized = v.upper()
        if normalized not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level {v}")
        return normalized


class AppConfig(BaseModel):
    """Complete app.yaml schema"""
    app: AppSection = Field(default_factory=AppSection)
    chain: ChainSettings = Field(default_factory=ChainSettings)
    autonomy: AutonomySettings = Field(default_factory=AutonomySettings)
    safety: SafetySettings = Field(default_factory=SafetySettings)
    price: PriceSettings = Field(default_factory=PriceSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    http_retry: RetrySettings = Field(default_factory=lambda: RetrySettings(max_retries=3))
    services: ServicesSettings = Field(default_factory=ServicesSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def dry_run(self) -> bool:
        return self.app.mode == "DRY_RUN"


# ===== Loading =====
def _format_yaml_error(file_path: Path, error: yaml.YAMLError) -> str:
    """Return enriched message with line/column context for YAML errors."""
    message = f"Malformed YAML in {file_path}: {error}"
    mark = getattr(error, "problem_mark", None)
    if mark is None:
        return message

    problem = getattr(error, "problem", str(error))
    return f"Malformed YAML in {file_path}: line {mark.line + 1}, column {mark.column + 1}: {problem}"


def load_yaml_file(file_path: Path) -> Dict[str, Any]:
    """
    Load YAML file and return as dict.

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If YAML is malformed
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {file_path}")

    with open(file_path, 'r') as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise yaml.YAMLError(_format_yaml_error(file_path, e))


def apply_env_overrides(raw: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Overlay recognised environment variables onto the raw config dict."""
    env = os.environ if environ is None else environ
    merged = {section: dict(values or {}) for section, values in (raw or {}).items()}
    for env_key, (section, key) in ENV_OVERRIDES.items():
        value = env.get(env_key)
        if value is None or value == "":
            continue
        merged.setdefault(section, {})[key] = value
        logger.debug(f"Config override from {env_key}: {section}.{key}={value}")
    return merged


def validate_sanity_checks(config: AppConfig) -> List[str]:
    """Logical consistency checks that a schema cannot express."""
    errors = []
    if config.price.cache_ttl_seconds > config.price.staleness_seconds:
        errors.append(
            f"price: cache_ttl_seconds ({config.price.cache_ttl_seconds}) must not exceed "
            f"staleness_seconds ({config.price.staleness_seconds})"
        )
    for name in ("retry", "http_retry"):
        settings: RetrySettings = getattr(config, name)
        if settings.max_delay < settings.initial_delay:
            errors.append(f"{name}: max_delay ({settings.max_delay}) is below initial_delay ({settings.initial_delay})")
    if config.monitoring.health_enabled and config.monitoring.metrics_enabled \
            and config.monitoring.health_port == config.monitoring.metrics_port:
        errors.append("monitoring: health_port and metrics_port must differ")
    return errors


def _parse(config_dir: Path, environ: Optional[Dict[str, str]]) -> AppConfig:
    path = config_dir / APP_CONFIG_FILE
    raw = load_yaml_file(path) if path.exists() else {}
    return AppConfig(**apply_env_overrides(raw, environ))


def validate_all_configs(config_dir: str = "config", environ: Optional[Dict[str, str]] = None) -> List[str]:
    """
    Validate app.yaml (schema + sanity checks).

    A missing app.yaml is valid: every setting has a default.

    Returns:
        List of error messages (empty if valid)
    """
    errors: List[str] = []
    try:
        config = _parse(Path(config_dir), environ)
    except yaml.YAMLError as e:
        return [f"{APP_CONFIG_FILE}: Invalid YAML - {e}"]
    except ValidationError as e:
        for error in e.errors():
            field = " -> ".join(str(loc) for loc in error['loc'])
            errors.append(f"{APP_CONFIG_FILE}: {field}: {error['msg']}")
        return errors

    errors.extend(validate_sanity_checks(config))
    if not errors:
        logger.info(f"{APP_CONFIG_FILE} validation passed")
    return errors


def load_app_config(config_dir: str = "config", environ: Optional[Dict[str, str]] = None) -> AppConfig:
    """Validated config; raises ValueError listing every problem found."""
    errors = validate_all_configs(config_dir, environ)
    if errors:
        raise ValueError(f"Invalid configuration: {len(errors)} error(s) found\n" + "\n".join(errors))
    return _parse(Path(config_dir), environ)

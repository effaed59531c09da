"""
Configuration management for the tiered application infrastructure.

Loads the base configuration, merges the environment overlay on top of it,
validates the result and resolves the account/region context.
"""

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import jsonschema
import yaml

from .schema import CONFIG_SCHEMA

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT = "423014875142"
DEFAULT_REGION = "ap-northeast-1"

ACCOUNT_ENV_VAR = "CDK_DEFAULT_ACCOUNT"
REGION_ENV_VAR = "CDK_DEFAULT_REGION"


class ConfigurationError(ValueError):
    """Raised when a configuration file is missing or invalid."""


DEFAULT_CONFIG: Dict[str, Any] = {
    "project": "tiered-app",
    "environment": "dev",
    "account": DEFAULT_ACCOUNT,
    "region": DEFAULT_REGION,
    "stack_name_pattern": "{project}-{environment}-{group}",
    "frontend_needs_backend_url": False,
    "tags": {},
    "network": {
        "cidr": "10.0.0.0/16",
        "max_azs": 2,
        "nat_gateways": 2,
        "enable_dns": True,
        "enable_dns_hostnames": True,
        "subnets": [
            {"name": "Public", "type": "public", "cidr_mask": 24},
            {"name": "PrivateFE", "type": "private", "cidr_mask": 24},
            {"name": "PrivateBE", "type": "private", "cidr_mask": 24},
        ],
    },
    "frontend": {
        "image": "nginx:alpine",
        "registry": "public",
        "container_port": 80,
        "cpu": 256,
        "memory_mib": 512,
        "desired_count": 2,
        "health_check_path": "/",
        "load_balancer": "public",
        "listener_port": 80,
        "subnet_tier": "PrivateFE",
        "log_retention_days": 30,
        "environment_variables": {},
    },
    "backend": {
        "image": "nmatsui/hello-world-api",
        "registry": "public",
        "image_tag": "latest",
        "container_port": 8080,
        "cpu": 256,
        "memory_mib": 512,
        "desired_count": 2,
        "health_check_path": "/",
        "load_balancer": "internal",
        "listener_port": 80,
        "subnet_tier": "PrivateBE",
        "log_retention_days": 30,
        "environment_variables": {},
    },
    "static_assets": {
        "bucket_name_pattern": "static-assets-{environment}-{account_id}-{region}",
        "enforce_ssl": True,
        "versioning": False,
        "block_public_access": True,
        "comment": "CloudFront Distribution for Static Assets",
        "viewer_protocol_policy": "redirect-to-https",
        "allowed_methods": ["GET", "HEAD", "OPTIONS"],
        "price_class": "PriceClass_100",
        "default_root_object": "index.html",
    },
}


def merge_config(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge override configuration into base configuration."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_config(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


@dataclass
class AppConfig:
    """Configuration for one deployment of the tiered application."""

    project: str = DEFAULT_CONFIG["project"]
    environment: str = DEFAULT_CONFIG["environment"]
    account: str = DEFAULT_ACCOUNT
    region: str = DEFAULT_REGION
    stack_name_pattern: str = DEFAULT_CONFIG["stack_name_pattern"]

    # Backend stack is declared first and its DNS name injected into the frontend
    frontend_needs_backend_url: bool = False

    tags: Dict[str, str] = field(default_factory=dict)
    network: Dict[str, Any] = field(
        default_factory=lambda: copy.deepcopy(DEFAULT_CONFIG["network"])
    )
    frontend: Dict[str, Any] = field(
        default_factory=lambda: copy.deepcopy(DEFAULT_CONFIG["frontend"])
    )
    backend: Dict[str, Any] = field(
        default_factory=lambda: copy.deepcopy(DEFAULT_CONFIG["backend"])
    )
    static_assets: Dict[str, Any] = field(
        default_factory=lambda: copy.deepcopy(DEFAULT_CONFIG["static_assets"])
    )

    def format_name(self, pattern: str, **kwargs) -> str:
        """Format a naming pattern with project variables."""
        variables = {
            "project": self.project,
            "environment": self.environment,
            "account_id": self.account,
            "region": self.region,
            **kwargs,
        }
        return pattern.format(**variables)

    def get_stack_name(self, group: str) -> str:
        """Get the CloudFormation stack name for a configuration group."""
        return self.format_name(self.stack_name_pattern, group=group)

    def get_bucket_name(self) -> Optional[str]:
        pattern = self.static_assets.get("bucket_name_pattern")
        if not pattern:
            return None
        return self.format_name(pattern)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {k: copy.deepcopy(v) for k, v in self.__dict__.items() if not k.startswith("_")}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        """Create config from a (partial) dictionary merged over the defaults."""
        merged = merge_config(DEFAULT_CONFIG, data)
        validate_config(merged)
        known = {name for name in cls.__dataclass_fields__}
        unknown = set(merged) - known
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**merged)


def validate_config(config: Dict[str, Any]) -> None:
    """Validate a merged configuration against the schema and semantic rules."""
    try:
        jsonschema.validate(config, CONFIG_SCHEMA)
    except jsonschema.ValidationError as e:
        path = " -> ".join(str(x) for x in e.absolute_path) or "<root>"
        raise ConfigurationError(
            f"Configuration validation failed at {path}: {e.message}"
        ) from e

    tier_names = [tier["name"] for tier in config["network"]["subnets"]]
    if len(set(tier_names)) != len(tier_names):
        raise ConfigurationError(f"Duplicate subnet tier names: {tier_names}")
    if not any(tier["type"] == "public" for tier in config["network"]["subnets"]):
        raise ConfigurationError("At least one public subnet tier is required")

    for service in ("frontend", "backend"):
        service_config = config[service]
        if service_config["subnet_tier"] not in tier_names:
            raise ConfigurationError(
                f"{service}.subnet_tier '{service_config['subnet_tier']}' "
                f"is not one of {tier_names}"
            )
        health_port = service_config.get("health_check_port")
        if health_port is not None and health_port != service_config["container_port"]:
            raise ConfigurationError(
                f"{service}.health_check_port ({health_port}) must equal "
                f"container_port ({service_config['container_port']})"
            )

    if config["frontend"]["load_balancer"] != "public":
        raise ConfigurationError("frontend.load_balancer must be 'public'")
    # The public load balancer group only admits tcp/80 and tcp/443 and the
    # listener is plain HTTP
    if config["frontend"].get("listener_port", 80) != 80:
        raise ConfigurationError(
            f"frontend.listener_port ({config['frontend']['listener_port']}) must be 80"
        )
    if config["backend"]["load_balancer"] == "public":
        raise ConfigurationError(
            "backend.load_balancer must be 'internal' or 'none'"
        )

    if config["frontend_needs_backend_url"] and config["backend"]["load_balancer"] == "none":
        raise ConfigurationError(
            "frontend_needs_backend_url requires the backend to have a load balancer"
        )

    if not config["static_assets"].get("block_public_access", True):
        raise ConfigurationError(
            "static_assets.block_public_access cannot be disabled"
        )


def resolve_environment_context(
    account: Optional[str] = None, region: Optional[str] = None
) -> Dict[str, str]:
    """
    Resolve account and region.

    Explicit values win, then the CDK_DEFAULT_* environment variables, then
    the fixed defaults.
    """
    return {
        "account": account or os.environ.get(ACCOUNT_ENV_VAR) or DEFAULT_ACCOUNT,
        "region": region or os.environ.get(REGION_ENV_VAR) or DEFAULT_REGION,
    }


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    return data


def load_config(
    environment: str = "dev",
    config_dir: Optional[Union[str, Path]] = None,
    account: Optional[str] = None,
    region: Optional[str] = None,
) -> AppConfig:
    """
    Load configuration for an environment.

    Reads ``base.yaml`` and ``environments/<environment>.yaml`` from the config
    directory when present, merges them over the defaults and validates the
    result.

    Args:
        environment: Deployment environment (dev/staging/prod)
        config_dir: Directory holding the YAML files (defaults to ./config)
        account: AWS account override
        region: AWS region override

    Returns:
        Validated AppConfig
    """
    config_dir = Path(config_dir) if config_dir else Path.cwd() / "config"
    data: Dict[str, Any] = {}

    base_path = config_dir / "base.yaml"
    if base_path.exists():
        logger.info(f"Loading base configuration: {base_path}")
        data = merge_config(data, _read_yaml(base_path))
    else:
        logger.warning(f"No base configuration at {base_path}, using defaults")

    env_path = config_dir / "environments" / f"{environment}.yaml"
    if env_path.exists():
        logger.info(f"Loading environment configuration: {env_path}")
        data = merge_config(data, _read_yaml(env_path))

    data["environment"] = environment
    context = resolve_environment_context(
        account or data.get("account"), region or data.get("region")
    )
    data.update(context)

    return AppConfig.from_dict(data)

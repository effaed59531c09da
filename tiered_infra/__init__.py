"""
Tiered Infra - CloudFormation synthesis for a two-tier container application
with a static asset CDN.
"""

__version__ = "1.0.0"

from .config import AppConfig, ConfigurationError, load_config

__all__ = ["AppConfig", "ConfigurationError", "load_config"]

"""Configuration module for the GDP back office."""

from gdp_backoffice.config.logging import configure_logging
from gdp_backoffice.config.policy_loader import BusinessPolicy, load_business_policy
from gdp_backoffice.config.settings import FlatSettings, get_settings

__all__ = [
    "BusinessPolicy",
    "FlatSettings",
    "configure_logging",
    "get_settings",
    "load_business_policy",
]

"""Configuration module for fixture provisioning."""
from .settings import ProvisioningConfig, load_settings

__all__ = ["ProvisioningConfig", "load_settings"]

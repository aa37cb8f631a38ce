"""Configuration module for adgroupsync.

Usage:
    from adgroupsync.core.config import Settings, ServerConfig

    settings = Settings()
    for server in settings.servers:
        user, password = settings.credentials_for(server)
"""

from adgroupsync.core.config.enums import TransportMethod
from adgroupsync.core.config.settings import LocalizedNames, ServerConfig, Settings

__all__ = [
    "LocalizedNames",
    "ServerConfig",
    "Settings",
    "TransportMethod",
]

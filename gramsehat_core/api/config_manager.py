"""
Remote Endpoint Configuration Manager
Maps the configured provider to a connector instance
"""
import logging
from typing import Dict, Optional, Type

from gramsehat_core.config import AppConfig
from gramsehat_core.errors import ConfigurationError

from .base_connector import HttpRemoteEndpoint, RemoteConfig, RemoteEndpoint
from .mock_connector import MockRemoteEndpoint
from .supabase_connector import SupabaseRemoteEndpoint

logger = logging.getLogger(__name__)


class RemoteConfigManager:
    """
    Creates the remote endpoint connector described by an AppConfig

    Usage:
        manager = RemoteConfigManager(load_config())
        endpoint = manager.get_endpoint()
    """

    # Registry of available connectors
    CONNECTORS: Dict[str, Type[RemoteEndpoint]] = {
        "mock": MockRemoteEndpoint,
        "http": HttpRemoteEndpoint,
        "supabase": SupabaseRemoteEndpoint,
    }

    def __init__(self, config: AppConfig):
        self.config = config

    def build_remote_config(self, provider: Optional[str] = None) -> RemoteConfig:
        """Translate application settings into connector settings"""
        provider = provider or self.config.remote_provider

        if provider == "supabase":
            return RemoteConfig(
                provider=provider,
                base_url=self.config.supabase_url or "",
                api_key=self.config.supabase_key,
                timeout=self.config.batch_timeout,
            )
        return RemoteConfig(
            provider=provider,
            base_url=self.config.remote_url,
            api_key=self.config.api_key,
            timeout=self.config.batch_timeout,
            headers={"Accept": "application/json"},
        )

    def get_endpoint(self, provider: Optional[str] = None) -> RemoteEndpoint:
        """
        Get the remote endpoint connector

        Args:
            provider: Connector type ('mock', 'http', 'supabase'); defaults to config,
                which is validated first

        Returns:
            Configured connector instance
        """
        if provider is None:
            self.config.validate()
            provider = self.config.remote_provider
        connector_class = self.CONNECTORS.get(provider)
        if not connector_class:
            raise ConfigurationError(f"Unknown remote connector: {provider}", config_key="remote_provider")
        if connector_class is MockRemoteEndpoint:
            logger.warning("Using the in-memory mock server; synced data is lost on exit")
        return connector_class(self.build_remote_config(provider))

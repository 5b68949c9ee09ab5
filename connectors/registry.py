"""
ConnectorRegistry — one instance of every provider connector, by slug.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from connectors.base import BaseConnector
from connectors.figma import FigmaConnector
from connectors.github import GitHubConnector
from connectors.google import GoogleConnector
from connectors.slack import SlackConnector

logger = logging.getLogger(__name__)

_ALL_CONNECTORS: List[BaseConnector] = [
    GoogleConnector(),
    GitHubConnector(),
    SlackConnector(),
    FigmaConnector(),
]


class ConnectorRegistry:
    """Singleton registry for all provider connectors.

    Every connector is registered whether or not its credentials are set;
    an unconfigured one answers its config request with a configuration
    error instead of disappearing.
    """

    _instance: Optional["ConnectorRegistry"] = None

    def __new__(cls) -> "ConnectorRegistry":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._connectors = {c.provider_name: c for c in _ALL_CONNECTORS}
            cls._instance._discovered = False
        return cls._instance

    def discover(self) -> None:
        """Log which connectors have credentials."""
        if self._discovered:
            return
        for conn in self._connectors.values():
            if conn.is_configured():
                logger.info("Connector ready: %s (%s)", conn.display_name, conn.provider_name)
            else:
                logger.warning(
                    "Connector %s has no credentials; config requests will fail",
                    conn.provider_name,
                )
        self._discovered = True

    def get(self, provider: str) -> Optional[BaseConnector]:
        return self._connectors.get(provider)

    def list_providers(self) -> List[Dict[str, Any]]:
        return [
            {
                "provider": c.provider_name,
                "display_name": c.display_name,
                "scopes": c.scopes,
                "supports_refresh": c.supports_refresh,
                "configured": c.is_configured(),
            }
            for c in self._connectors.values()
        ]

    def list_configured(self) -> List[str]:
        return [name for name, c in self._connectors.items() if c.is_configured()]

"""
Connectors bundled with the engine.

Bundled configs are read-only: they cannot be updated or removed through
the catalog. Their loaders need code-level fetch hooks, which is why they
live here rather than in the config table.
"""

from typing import Dict

from connectors.configs import gmail, google_calendar, plaid, youtube
from schemas.connector import ConnectorConfig

BUNDLED_CONFIGS = [google_calendar.config, gmail.config, plaid.config, youtube.config]


def get_bundled_configs() -> Dict[str, ConnectorConfig]:
    return {config.id: config for config in BUNDLED_CONFIGS}


__all__ = ["BUNDLED_CONFIGS", "get_bundled_configs"]

"""Dashboard configuration loader."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from cascade.config import DEFAULT_CONFIG_PATH, cascade_settings

logger = logging.getLogger(__name__)

DEFAULT_DASHBOARD_CONFIG: Dict[str, Any] = {
    "host": "0.0.0.0",
    "port": 8080,
    "refresh_interval_ms": 2000,
}


class DashboardConfig:
    """Reads config.json, extracts the dashboard and cascade detector settings."""

    def __init__(self, config_path: Optional[str] = None) -> None:
        self._path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self._raw: Dict[str, Any] = {}
        self.dashboard: Dict[str, Any] = dict(DEFAULT_DASHBOARD_CONFIG)
        self.cascade: Dict[str, Any] = cascade_settings()
        self.reload()

    def reload(self) -> None:
        try:
            with self._path.open("r", encoding="utf-8") as f:
                self._raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not load config from %s: %s", self._path, e)
            self._raw = {}

        dc = self._raw.get("dashboard_config", {})
        self.dashboard = {**DEFAULT_DASHBOARD_CONFIG, **dc}
        self.cascade = cascade_settings(self._raw)

    @property
    def symbols(self) -> List[str]:
        return list(self.cascade["symbols"])

    @property
    def auto_enabled(self) -> bool:
        return bool(self.cascade["auto_enabled"])

    @property
    def broadcast_channel(self) -> str:
        return str(self.cascade["broadcast_channel"])

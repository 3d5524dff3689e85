"""Cascade detector configuration loader.

Reads the ``cascade_detector`` section of ``config/config.json`` and merges
it over :data:`_DEFAULT_CONFIG`.  Unknown keys are kept but ignored so the
section can live in a larger config tree.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "config.json"

_DEFAULT_CONFIG: Dict[str, Any] = {
    "symbols": ["BTCUSDT", "ETHUSDT", "SOLUSDT"],
    "auto_enabled": True,
    "tick_interval_seconds": 1.0,
    "queue_maxsize": 1000,
    "broadcast_channel": "cascade_status",
    "market_data": {
        "base_url": "https://fapi.binance.com",
        "ws_url": "wss://fstream.binance.com",
        "request_timeout_seconds": 10,
    },
    "alerts": {
        "enabled": True,
        "bot_token": None,
        "chat_id": None,
    },
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Return the whole config file as a dict, or ``{}`` when unreadable."""
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Could not load config %s: %s -- using defaults", path, exc)
        return {}


def merge_settings(section: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Merge a ``cascade_detector`` section over the defaults."""
    section = section or {}
    merged = {**_DEFAULT_CONFIG, **section}
    # Nested sections merge one level deep.
    for key in ("market_data", "alerts"):
        merged[key] = {**_DEFAULT_CONFIG[key], **(section.get(key) or {})}
    return merged


def cascade_settings(raw: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Settings for the ``cascade_detector`` section of a full config dict."""
    return merge_settings((raw or {}).get("cascade_detector"))

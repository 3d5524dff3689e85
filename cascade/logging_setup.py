"""
Logging setup for the cascade detector process.

Console output uses the bot's pipe-separated format; an optional rotating
JSON-lines file carries the structured ``symbol`` / ``status`` extras that
level transitions attach to their records.
"""

import json
import logging
import logging.handlers
import socket
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

SIGNAL_LEVEL = 25
logging.addLevelName(SIGNAL_LEVEL, "SIGNAL")

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s"


class CascadeJSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self) -> None:
        super().__init__()
        self.hostname = socket.gethostname()

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "hostname": self.hostname,
        }
        if hasattr(record, "symbol"):
            log_data["symbol"] = record.symbol
        if hasattr(record, "status"):
            log_data["status"] = record.status
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


def configure_logging(
    level: Union[str, int] = "INFO",
    json_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """Install console (and optional JSON file) handlers on the root logger."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    if json_file:
        path = Path(json_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            path, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(CascadeJSONFormatter())
        root.addHandler(file_handler)

    return root

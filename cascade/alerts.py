"""
Cascade level-change alerts.

Delivers a Telegram message when a symbol's alert light changes, with rate
limiting, duplicate suppression, and a console fallback when no bot token /
chat id is configured.

  escalation to red    -> CRITICAL (bypasses rate limit and dedup)
  escalation to orange -> WARNING
  any other change     -> INFO

All public methods catch exceptions internally; alerting failures never
reach the detector service.
"""

import asyncio
import hashlib
import logging
import os
import re
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional

import aiohttp

from cascade.detector import CascadeStatus
from cascade.hysteresis import AlertLevel

logger = logging.getLogger(__name__)

MAX_MESSAGES_PER_MINUTE: int = 10
DUPLICATE_WINDOW_SECONDS: float = 60.0
TELEGRAM_API_BASE: str = "https://api.telegram.org"


class CascadeAlerter:
    """Routes level-change notifications to Telegram or the console.

    Args:
        config: The ``alerts`` section: ``enabled``, ``bot_token``,
                ``chat_id``.  Token and chat id fall back to the
                ``TELEGRAM_BOT_TOKEN`` / ``TELEGRAM_CHAT_ID`` environment
                variables.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        config = config or {}
        self._enabled: bool = bool(config.get("enabled", True))
        self._bot_token: Optional[str] = (
            config.get("bot_token") or os.environ.get("TELEGRAM_BOT_TOKEN") or None
        )
        self._chat_id: Optional[str] = (
            config.get("chat_id") or os.environ.get("TELEGRAM_CHAT_ID") or None
        )
        self._console_only: bool = not (self._bot_token and self._chat_id)

        self._send_timestamps: Deque[float] = deque()
        self._recent_hashes: Dict[str, float] = {}

        if not self._enabled:
            logger.info("CascadeAlerter disabled")
        elif self._console_only:
            logger.info("CascadeAlerter running in CONSOLE-ONLY mode")
        else:
            logger.info("CascadeAlerter configured for Telegram delivery")

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def console_only(self) -> bool:
        return self._console_only

    async def notify_level_change(
        self, symbol: str, previous: AlertLevel, status: CascadeStatus
    ) -> None:
        """Send one message describing a light change on *symbol*."""
        if not self._enabled:
            return
        try:
            current = status.light
            escalated = current.severity > previous.severity
            if escalated and current == AlertLevel.RED:
                level = "CRITICAL"
            elif escalated and current == AlertLevel.ORANGE:
                level = "WARNING"
            else:
                level = "INFO"

            verb = "escalated" if escalated else "cooled"
            text = (
                f"<b>Cascade {verb}: {symbol}</b>\n"
                f"Light: {previous.value} -> <b>{current.value}</b>\n"
                f"Score: {status.score}/6 (LQ {status.lq:.1f}, RET {status.ret:.1f}, "
                f"OI {status.oi:.1f}%)\n"
                f"Reversal quality: {status.reversal_quality} ({status.rq_bucket.value}), "
                f"need {status.rq_threshold_adjusted} in "
                f"{status.volatility_regime.value} volatility\n"
                f"Auto-block: {'ON' if status.auto_block else 'off'}"
            )
            await self._send(level, text)
        except Exception:
            logger.exception("Failed to send level change alert for %s", symbol)

    # ------------------------------------------------------------------
    # Internal delivery logic
    # ------------------------------------------------------------------

    async def _send(self, level: str, html_text: str) -> None:
        is_critical = level == "CRITICAL"

        if not is_critical:
            content_hash = self._hash(html_text)
            now = time.monotonic()
            last_sent = self._recent_hashes.get(content_hash)
            if last_sent is not None and (now - last_sent) < DUPLICATE_WINDOW_SECONDS:
                logger.debug("Duplicate alert suppressed (hash=%s)", content_hash[:8])
                return
            self._recent_hashes[content_hash] = now
            self._evict_old_hashes(now)

        if not is_critical and not self._check_rate_limit():
            logger.warning("Alert rate-limited (level=%s)", level)
            return

        if self._console_only:
            self._log_to_console(level, html_text)
        else:
            await self._send_telegram(html_text)

    def _check_rate_limit(self) -> bool:
        now = time.monotonic()
        while self._send_timestamps and (now - self._send_timestamps[0]) > 60.0:
            self._send_timestamps.popleft()
        if len(self._send_timestamps) >= MAX_MESSAGES_PER_MINUTE:
            return False
        self._send_timestamps.append(now)
        return True

    @staticmethod
    def _hash(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8", errors="replace")).hexdigest()

    def _evict_old_hashes(self, now: float) -> None:
        expired = [
            h for h, ts in self._recent_hashes.items()
            if (now - ts) > DUPLICATE_WINDOW_SECONDS
        ]
        for h in expired:
            del self._recent_hashes[h]

    @staticmethod
    def _log_to_console(level: str, html_text: str) -> None:
        plain = re.sub(r"<[^>]+>", "", html_text)
        ts = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        log_fn = logger.warning if level in ("WARNING", "CRITICAL") else logger.info
        log_fn("[ALERT %s] %s\n%s", level, ts, plain)

    async def _send_telegram(self, html_text: str) -> None:
        url = f"{TELEGRAM_API_BASE}/bot{self._bot_token}/sendMessage"
        payload = {
            "chat_id": self._chat_id,
            "text": html_text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=10),
                ) as resp:
                    if resp.status != 200:
                        body = await resp.text()
                        logger.warning(
                            "Telegram API returned %s: %s", resp.status, body[:200]
                        )
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Failed to deliver Telegram message")

# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2026 The Bedrock Manager Authors

"""
Webhook notifications for update events (Discord-style {"content": ...}).
"""

import logging
from typing import Optional

import aiohttp

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """Posts plain-text notifications to an optional webhook URL."""

    def __init__(self, url: Optional[str], timeout: int = 30):
        self.url = url
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def send(self, message: str) -> bool:
        """Send one notification. Best effort: failures are logged, never raised.

        Returns:
            True if the webhook accepted the message.
        """
        if not self.url:
            logger.debug("Webhook URL is not configured. Skipping notification.")
            return False
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.url,
                    json={"content": message},
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as resp:
                    if 200 <= resp.status < 300:
                        logger.info("Webhook notification sent successfully.")
                        return True
                    body = await resp.text()
                    logger.error("Webhook notification failed: %d - %s", resp.status, body[:500])
                    return False
        except Exception as e:
            logger.error("Error sending webhook notification: %s", e)
            return False

# SPDX-License-Identifier: GPL-3.0-only
# Copyright (C) 2026 The Bedrock Manager Authors

"""
Bedrock Manager Webhook Tests

Run with: pytest tests/test_notifier.py -v
"""

import asyncio
from unittest.mock import patch

import aiohttp


class FakeResponse:
    def __init__(self, status):
        self.status = status

    async def text(self):
        return "rate limited"

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, status=204, error=None):
        self.status = status
        self.error = error
        self.posted = []

    def post(self, url, json=None, **kwargs):
        if self.error:
            raise self.error
        self.posted.append((url, json))
        return FakeResponse(self.status)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def _send(notifier, session):
    with patch("bedrock_manager.notifier.aiohttp.ClientSession", return_value=session):
        return asyncio.run(notifier.send("Server restarting..."))


def test_posts_content_body():
    from bedrock_manager.notifier import WebhookNotifier

    session = FakeSession()
    assert _send(WebhookNotifier("https://hooks.invalid/x"), session) is True
    assert session.posted == [("https://hooks.invalid/x", {"content": "Server restarting..."})]


def test_disabled_without_url():
    from bedrock_manager.notifier import WebhookNotifier

    notifier = WebhookNotifier(None)
    session = FakeSession()

    assert notifier.enabled is False
    assert _send(notifier, session) is False
    assert session.posted == []


def test_failures_are_swallowed():
    from bedrock_manager.notifier import WebhookNotifier

    notifier = WebhookNotifier("https://hooks.invalid/x")

    assert _send(notifier, FakeSession(status=429)) is False
    assert _send(notifier, FakeSession(error=aiohttp.ClientConnectionError("down"))) is False

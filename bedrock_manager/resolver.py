# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2026 The Bedrock Manager Authors

"""
Bedrock Manager Release Resolver

Asks the upstream download-links endpoint for the current dedicated
server archive and derives the version from the archive filename
(bedrock-server-1.21.0.zip -> 1.21.0).
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import aiohttp

from . import __version__
from .errors import NetworkError, ParseError

logger = logging.getLogger(__name__)

VERSION_PATTERN = re.compile(r"bedrock-server-([\d.]+)\.zip")


@dataclass
class ReleaseInfo:
    """Latest server build advertised upstream."""
    version: str
    download_url: str


def parse_version(version_str: str) -> Tuple[int, ...]:
    """Parse a dotted version string into a comparable tuple."""
    parts = []
    for part in version_str.strip().split("."):
        try:
            parts.append(int(part))
        except ValueError:
            parts.append(0)
    return tuple(parts)


def version_from_url(download_url: str) -> Optional[str]:
    """Extract the version embedded in an archive name, or None."""
    match = VERSION_PATTERN.search(download_url)
    if not match:
        return None
    version = match.group(1).strip().strip(".")
    return version or None


class VersionResolver:
    """Queries the download-links API for the latest server archive.

    Usage:
        resolver = VersionResolver(api_url, "serverBedrockLinux")
        release = await resolver.resolve()
        if release is not None:
            print(release.version, release.download_url)
    """

    def __init__(self, api_url: str, download_type: str, timeout: int = 30):
        self.api_url = api_url
        self.download_type = download_type
        self.timeout = timeout

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Accept-Language": "en-US,en;q=0.5",
            "User-Agent": f"bedrock-manager/{__version__}",
        }

    async def resolve(self) -> Optional[ReleaseInfo]:
        """Fetch the latest release.

        Returns:
            ReleaseInfo, or None when the archive name carries no
            recognisable version (treated by callers as "no update").

        Raises:
            NetworkError: On transport failure or a non-2xx response.
            ParseError: If the body is not JSON or lacks the expected link.
        """
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    self.api_url,
                    headers=self._get_headers(),
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as resp:
                    if resp.status < 200 or resp.status >= 300:
                        body = await resp.text()
                        logger.error(
                            "Failed to fetch download links. Status: %d. Response: %s",
                            resp.status, body[:500],
                        )
                        raise NetworkError(f"Download API returned status {resp.status}")
                    try:
                        data = await resp.json(content_type=None)
                    except ValueError as e:
                        raise ParseError(f"Download API returned invalid JSON: {e}") from e
        except aiohttp.ClientError as e:
            logger.error("Error fetching data from download API: %s", e)
            raise NetworkError(f"Failed to reach download API: {e}") from e

        return self.parse_links(data)

    def parse_links(self, data: Any) -> Optional[ReleaseInfo]:
        """Pick this platform's link out of an API response body."""
        links = None
        if isinstance(data, dict) and isinstance(data.get("result"), dict):
            links = data["result"].get("links")
        if not isinstance(links, list):
            raise ParseError("Download API response has no result.links list")

        link = next(
            (item for item in links
             if isinstance(item, dict) and item.get("downloadType") == self.download_type),
            None,
        )
        if link is None or not link.get("downloadUrl"):
            raise ParseError(f"No download link for '{self.download_type}' in API response")

        download_url = link["downloadUrl"]
        logger.debug("Found download URL via API: %s", download_url)

        version = version_from_url(download_url)
        if version is None:
            logger.warning("Could not extract version from API download URL: %s", download_url)
            return None
        return ReleaseInfo(version=version, download_url=download_url)

# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2026 The Bedrock Manager Authors

"""
Bedrock Manager Archive Fetch & Extract

Streams the server zip to local storage and unpacks it into a staging
directory. Both steps poll a CancellationToken so a shutdown can stop
them between chunks/entries.
"""

import asyncio
import logging
import zipfile
from pathlib import Path, PurePosixPath
from typing import Optional

import aiohttp

from . import __version__
from .cancellation import CancellationToken
from .errors import FilesystemError, NetworkError

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 65536  # 64KB chunks


def safe_member_path(name: str) -> PurePosixPath:
    """Validate an archive member name and return it as a relative path.

    Raises:
        FilesystemError: For absolute names or names escaping the target.
    """
    member = PurePosixPath(name.replace("\\", "/"))
    if member.is_absolute() or ".." in member.parts or (member.parts and member.parts[0].endswith(":")):
        raise FilesystemError(f"Unsafe path in archive: {name}")
    return member


async def fetch_archive(
    url: str,
    dest: Path,
    timeout: int = 600,
    token: Optional[CancellationToken] = None,
) -> Path:
    """Download url to dest.

    A partially written file is removed if the transfer fails or is
    cancelled.

    Raises:
        NetworkError: On transport failure or a non-2xx status.
        CancellationError: If token is cancelled mid-transfer.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    headers = {"User-Agent": f"bedrock-manager/{__version__}"}
    downloaded = 0
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(
                url,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as resp:
                if resp.status < 200 or resp.status >= 300:
                    raise NetworkError(f"Failed to download file: {resp.status} {resp.reason}")
                with open(dest, "wb") as f:
                    async for chunk in resp.content.iter_chunked(DOWNLOAD_CHUNK_SIZE):
                        if token is not None:
                            token.check_cancelled()
                        f.write(chunk)
                        downloaded += len(chunk)
    except aiohttp.ClientError as e:
        dest.unlink(missing_ok=True)
        logger.error("Download failed: %s", e)
        raise NetworkError(f"Error during download: {e}") from e
    except BaseException:
        dest.unlink(missing_ok=True)
        raise

    logger.info("Downloaded %s (%.1f MB)", dest.name, downloaded / (1024 * 1024))
    return dest


def _extract(zip_path: Path, extract_to: Path, token: Optional[CancellationToken]) -> int:
    extract_to.mkdir(parents=True, exist_ok=True)
    count = 0
    try:
        with zipfile.ZipFile(zip_path) as archive:
            members = archive.infolist()
            # Validate every name before writing anything
            for info in members:
                safe_member_path(info.filename)
            for info in members:
                if token is not None:
                    token.check_cancelled()
                archive.extract(info, extract_to)
                mode = (info.external_attr >> 16) & 0o777
                if mode and not info.is_dir():
                    (extract_to / safe_member_path(info.filename)).chmod(mode)
                count += 1
    except zipfile.BadZipFile as e:
        raise FilesystemError(f"Extraction failed for {zip_path}: {e}") from e
    except OSError as e:
        raise FilesystemError(f"Extraction failed for {zip_path}: {e}") from e
    return count


async def extract_archive(
    zip_path: Path,
    extract_to: Path,
    token: Optional[CancellationToken] = None,
) -> None:
    """Unpack a zip archive into extract_to (run in a worker thread).

    File permission bits stored in the archive are restored so the
    server binary stays executable.
    """
    count = await asyncio.to_thread(_extract, zip_path, extract_to, token)
    logger.info("Extraction completed successfully for %s to %s (%d entries)", zip_path, extract_to, count)

# SPDX-License-Identifier: GPL-3.0-only
# Copyright (C) 2026 The Bedrock Manager Authors

"""
Bedrock Manager Fetch & Extract Tests

Run with: pytest tests/test_downloader.py -v
"""

import asyncio
import os
import stat
import zipfile
import pytest
from unittest.mock import patch


class FakeContent:
    def __init__(self, chunks):
        self._chunks = chunks

    async def iter_chunked(self, size):
        for chunk in self._chunks:
            yield chunk


class FakeResponse:
    def __init__(self, status=200, chunks=(), reason="OK"):
        self.status = status
        self.reason = reason
        self.content = FakeContent(list(chunks))

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, response):
        self.response = response

    def get(self, url, **kwargs):
        return self.response

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def _fetch(tmp_path, response, token=None):
    from bedrock_manager.downloader import fetch_archive

    dest = tmp_path / "bedrock-server-1.21.0.zip"
    with patch("bedrock_manager.downloader.aiohttp.ClientSession", return_value=FakeSession(response)):
        asyncio.run(fetch_archive("https://example.invalid/a.zip", dest, token=token))
    return dest


def test_fetch_writes_all_chunks(tmp_path):
    dest = _fetch(tmp_path, FakeResponse(chunks=[b"abc", b"def"]))

    assert dest.read_bytes() == b"abcdef"


def test_fetch_http_error_leaves_no_file(tmp_path):
    from bedrock_manager.errors import NetworkError

    with pytest.raises(NetworkError):
        _fetch(tmp_path, FakeResponse(status=404, reason="Not Found"))
    assert not (tmp_path / "bedrock-server-1.21.0.zip").exists()


def test_fetch_cancellation_removes_partial_file(tmp_path):
    from bedrock_manager.cancellation import CancellationError, CancellationToken

    token = CancellationToken(operation="test download")
    token.cancel()

    with pytest.raises(CancellationError):
        _fetch(tmp_path, FakeResponse(chunks=[b"abc"]), token=token)
    assert not (tmp_path / "bedrock-server-1.21.0.zip").exists()


def _make_zip(path, entries, modes=None):
    with zipfile.ZipFile(path, "w") as archive:
        for name, data in entries.items():
            info = zipfile.ZipInfo(name)
            if modes and name in modes:
                info.external_attr = (stat.S_IFREG | modes[name]) << 16
            archive.writestr(info, data)
    return path


def test_extract_restores_executable_bit(tmp_path):
    from bedrock_manager.downloader import extract_archive

    archive = _make_zip(
        tmp_path / "server.zip",
        {"bedrock_server": "bin", "behavior_packs/vanilla/manifest.json": "{}"},
        modes={"bedrock_server": 0o755},
    )
    target = tmp_path / "out"

    asyncio.run(extract_archive(archive, target))

    assert (target / "behavior_packs" / "vanilla" / "manifest.json").read_text() == "{}"
    if os.name == "posix":
        assert os.stat(target / "bedrock_server").st_mode & 0o111


@pytest.mark.parametrize("name", ["../escape.txt", "C:/windows/evil.dll", "a/../../b"])
def test_extract_rejects_unsafe_members(tmp_path, name):
    from bedrock_manager.downloader import extract_archive
    from bedrock_manager.errors import FilesystemError

    archive = _make_zip(tmp_path / "evil.zip", {"ok.txt": "fine", name: "bad"})
    target = tmp_path / "out"

    with pytest.raises(FilesystemError):
        asyncio.run(extract_archive(archive, target))
    # Validation happens before anything is written
    assert not (target / "ok.txt").exists()


def test_extract_corrupt_archive(tmp_path):
    from bedrock_manager.downloader import extract_archive
    from bedrock_manager.errors import FilesystemError

    bogus = tmp_path / "bogus.zip"
    bogus.write_bytes(b"not a zip")

    with pytest.raises(FilesystemError):
        asyncio.run(extract_archive(bogus, tmp_path / "out"))

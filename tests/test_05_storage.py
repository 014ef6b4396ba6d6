"""
Tests for the local disk blob store.

Tests cover:
- Sharded layout and atomic writes
- No object (and no temp file) when the source stream fails
- Signed URL format, signature verification and expiry
- Object name validation
"""
from __future__ import annotations

import asyncio
import time
from urllib.parse import parse_qs, urlsplit

import pytest

KEY = "ab12cd34ef56ab12cd34ef56ab12cd34"
NAME = f"{KEY}.mp3"


async def _chunks(parts, error: Exception | None = None):
    for part in parts:
        await asyncio.sleep(0)
        yield part
    if error is not None:
        raise error


@pytest.fixture
def file_store(tmp_path):
    from tts_relay.tts.storage import FileBlobStore
    return FileBlobStore(str(tmp_path), "http://relay.test/", signing_secret="s3cret")


class TestFileBlobStoreWrites:
    """Uploads land atomically in the sharded layout."""

    def test_upload_writes_sharded_file(self, file_store, tmp_path):
        result = asyncio.run(file_store.upload(NAME, _chunks([b"ID3", b"data"])))

        assert result.ok
        assert result.data["size"] == 7
        path = tmp_path / "ab" / NAME
        assert path.read_bytes() == b"ID3data"
        assert file_store.path_for(NAME) == path

    def test_failed_stream_leaves_nothing(self, file_store, tmp_path):
        result = asyncio.run(file_store.upload(NAME, _chunks([b"ID3"], error=RuntimeError("cut"))))

        assert not result.ok
        assert "cut" in result.error
        assert not (tmp_path / "ab" / NAME).exists()
        assert list((tmp_path / "ab").iterdir()) == []

    def test_overwrite_last_writer_wins(self, file_store):
        asyncio.run(file_store.upload(NAME, _chunks([b"first"])))
        asyncio.run(file_store.upload(NAME, _chunks([b"second"])))
        assert file_store.path_for(NAME).read_bytes() == b"second"

    def test_invalid_name_rejected(self, file_store):
        result = asyncio.run(file_store.upload("../escape.mp3", _chunks([b"x"])))
        assert not result.ok
        assert "invalid blob name" in result.error

    def test_path_for_rejects_traversal(self, file_store):
        from tts_relay.tts.storage import InvalidBlobName

        with pytest.raises(InvalidBlobName):
            file_store.path_for("../../etc/passwd")


class TestFileBlobStoreSigning:
    """HMAC-signed, time-limited read URLs."""

    def test_signed_url_none_when_missing(self, file_store):
        assert asyncio.run(file_store.signed_url(NAME, 60)) is None

    def test_signed_url_format(self, file_store):
        asyncio.run(file_store.upload(NAME, _chunks([b"x"])))
        before = int(time.time())
        url = asyncio.run(file_store.signed_url(NAME, 60))

        parts = urlsplit(url)
        assert f"{parts.scheme}://{parts.netloc}" == "http://relay.test"
        assert parts.path == f"/v1/blobs/{NAME}"
        query = parse_qs(parts.query)
        expires = int(query["expires"][0])
        assert before + 60 <= expires <= int(time.time()) + 60
        assert file_store.verify_signature(NAME, expires, query["signature"][0])

    def test_expired_signature_rejected(self, file_store):
        expires = int(time.time()) - 1
        assert not file_store.verify_signature(NAME, expires, file_store.sign(NAME, expires))

    def test_signature_bound_to_name(self, file_store):
        expires = int(time.time()) + 60
        signature = file_store.sign(NAME, expires)
        assert not file_store.verify_signature("ff" + NAME[2:], expires, signature)

    def test_signature_bound_to_expiry(self, file_store):
        expires = int(time.time()) + 60
        signature = file_store.sign(NAME, expires)
        assert not file_store.verify_signature(NAME, expires + 3600, signature)

    def test_different_secret_rejected(self, tmp_path):
        from tts_relay.tts.storage import FileBlobStore

        a = FileBlobStore(str(tmp_path), signing_secret="one")
        b = FileBlobStore(str(tmp_path), signing_secret="two")
        expires = int(time.time()) + 60
        assert not b.verify_signature(NAME, expires, a.sign(NAME, expires))

    def test_random_secret_when_unset(self, tmp_path):
        from tts_relay.tts.storage import FileBlobStore

        a = FileBlobStore(str(tmp_path))
        b = FileBlobStore(str(tmp_path))
        assert a.sign(NAME, 1) != b.sign(NAME, 1)

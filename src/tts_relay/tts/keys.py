"""
Cache Key Derivation.

A cache key identifies one (text, voice) request. It is the MD5 hex
digest (128 bits, 32 lowercase hex chars) of a canonical serialization:

    json.dumps([text, voice_id], ensure_ascii=False, separators=(",", ":"))

The JSON array pins field order by position, so the key never depends
on how a mapping happens to be ordered. No normalization is applied:
"Hello" and "hello " are different requests. A missing text serializes
as null and is distinct from the empty string.

Blobs are stored under object_name(key), i.e. "<key>.mp3".

Example:
    >>> key = derive_key("Hello", "JBFqnCBsd6RMkjVDRZzb")
    >>> len(key)
    32
    >>> object_name(key).endswith(".mp3")
    True
"""
from __future__ import annotations

import hashlib
import json
from typing import Optional

AUDIO_EXTENSION = ".mp3"


def canonical_payload(text: Optional[str], voice_id: str) -> bytes:
    """Serialize request fields in fixed order as compact UTF-8 JSON."""
    return json.dumps([text, voice_id], ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def derive_key(text: Optional[str], voice_id: str) -> str:
    """
    Compute the cache key for a request.

    Args:
        text: Request text, exactly as received (may be None).
        voice_id: Resolved voice id (default already applied).

    Returns:
        32-character lowercase hex string, safe as a path or URL segment.
    """
    return hashlib.md5(canonical_payload(text, voice_id), usedforsecurity=False).hexdigest()


def object_name(key: str) -> str:
    """Storage object name for a cache key."""
    return f"{key}{AUDIO_EXTENSION}"

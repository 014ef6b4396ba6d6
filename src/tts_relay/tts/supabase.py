"""
Supabase Storage Blob Store.

Talks to the Storage REST API of a Supabase project with the service role
key. Only two endpoints are used:

    POST {url}/storage/v1/object/sign/{bucket}/{name}   {"expiresIn": n}
        -> {"signedURL": "/object/sign/{bucket}/{name}?token=..."}

    POST {url}/storage/v1/object/{bucket}/{name}        <streamed body>
        -> {"Key": "{bucket}/{name}", "Id": "..."}

The signed URL returned by the API is relative to /storage/v1, so the
absolute read URL is {url}/storage/v1{signedURL}.

Failures never raise: signing problems (missing object, auth, network)
give None and upload problems give UploadResult(error=...), matching the
{data, error} convention of the official clients.

Configuration:
    storage:
      backend: supabase
      bucket: audio
      upsert: true

    export APP_SUPABASE_URL=https://<project>.supabase.co
    export APP_SUPABASE_SERVICE_ROLE_KEY=...
"""
from __future__ import annotations

from typing import AsyncIterable, Optional
from urllib.parse import quote

import httpx

from tts_relay.core.config import Defaults
from tts_relay.core.logging import debug, get_logger, info, warn
from tts_relay.utils.timeit import timeit

from .blobstore import AUDIO_CONTENT_TYPE, BlobStore, UploadResult

_LOG = get_logger("tts-relay.supabase")


def _error_message(response: httpx.Response) -> str:
    """Extract a readable message from a Storage API error response."""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(body, dict):
        msg = body.get("message") or body.get("error")
        if msg:
            return f"HTTP {response.status_code}: {msg}"
    return f"HTTP {response.status_code}"


class SupabaseBlobStore(BlobStore):
    """
    Blob store backed by a Supabase Storage bucket.

    Args:
        url: Project URL (APP_SUPABASE_URL).
        service_role_key: Service role key (APP_SUPABASE_SERVICE_ROLE_KEY).
        bucket: Bucket name.
        upsert: Overwrite existing objects (last writer wins).
        client: Shared AsyncClient; one is created (and owned) if omitted.
        timeout_s: Timeout for the owned client.
    """

    backend = "supabase"

    def __init__(
        self,
        url: str,
        service_role_key: str,
        bucket: str = Defaults.STORAGE_BUCKET,
        upsert: bool = Defaults.STORAGE_UPSERT,
        client: Optional[httpx.AsyncClient] = None,
        timeout_s: float = Defaults.STORAGE_TIMEOUT_S,
    ):
        self.url = url.rstrip("/")
        self.bucket = bucket
        self.upsert = upsert
        self._key = service_role_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    @property
    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self._key}", "apikey": self._key}

    def _object_path(self, name: str) -> str:
        return f"{quote(self.bucket, safe='')}/{quote(name, safe='')}"

    async def signed_url(self, name: str, expires_in: int) -> Optional[str]:
        endpoint = f"{self.url}/storage/v1/object/sign/{self._object_path(name)}"
        try:
            response = await self._client.post(
                endpoint,
                json={"expiresIn": int(expires_in)},
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            warn(_LOG, "sign_error", name=name, error=str(e) or type(e).__name__)
            return None

        if not response.is_success:
            # 400/404 is the normal answer for an object that does not exist
            debug(_LOG, "sign_refused", name=name, status=response.status_code)
            return None

        try:
            signed = response.json().get("signedURL")
        except (ValueError, AttributeError):
            signed = None
        if not signed:
            warn(_LOG, "sign_malformed", name=name, status=response.status_code)
            return None

        return f"{self.url}/storage/v1{signed}"

    async def upload(
        self,
        name: str,
        chunks: AsyncIterable[bytes],
        content_type: str = AUDIO_CONTENT_TYPE,
    ) -> UploadResult:
        endpoint = f"{self.url}/storage/v1/object/{self._object_path(name)}"
        headers = {
            **self._headers,
            "Content-Type": content_type,
            "x-upsert": "true" if self.upsert else "false",
        }

        try:
            with timeit("storage_upload") as t:
                response = await self._client.post(endpoint, content=chunks, headers=headers)
        except httpx.HTTPError as e:
            return UploadResult(error=str(e) or type(e).__name__)

        if not response.is_success:
            return UploadResult(error=_error_message(response))

        try:
            data = response.json()
        except ValueError:
            data = {}
        info(_LOG, "uploaded", name=name, bucket=self.bucket, status=response.status_code, seconds=t.seconds)
        return UploadResult(data=data if isinstance(data, dict) else {"response": data})

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

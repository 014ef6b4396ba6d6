"""
Streaming HTTP Response Helpers.

httpx responses opened with `client.send(request, stream=True)` must be
closed explicitly. ResponseChunks wraps such a response as an async
iterator of byte chunks that closes the response as soon as the body is
exhausted, fails, or the consumer calls aclose(), including when it is
closed before the first read (a bare async generator would skip its
finally block in that case).

Usage:
    response = await client.send(request, stream=True)
    chunks = ResponseChunks(response)
    async for chunk in chunks:
        ...
"""
from __future__ import annotations

import httpx


class ResponseChunks:
    """Async iterator over a streamed httpx response body."""

    def __init__(self, response: httpx.Response):
        self.response = response
        self.bytes = 0
        self._chunks = response.aiter_bytes()

    def __aiter__(self) -> "ResponseChunks":
        return self

    async def __anext__(self) -> bytes:
        try:
            chunk = await self._chunks.__anext__()
        except BaseException:
            await self.aclose()
            raise
        self.bytes += len(chunk)
        return chunk

    async def aclose(self) -> None:
        await self.response.aclose()

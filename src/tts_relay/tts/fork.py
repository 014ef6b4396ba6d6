"""
Stream Forking.

Splits one async byte stream into two independently consumable branches:
one is relayed to the HTTP caller, the other is uploaded to the blob store.

Architecture:
    A single pump task reads the source and pushes every chunk, in order,
    into one bounded buffer per branch:

        source ──► pump ──┬──► [buffer A] ──► caller relay
                          └──► [buffer B] ──► storage upload

    - Neither branch needs the whole payload in memory; chunks flow as
      they arrive.
    - A full buffer applies backpressure to the pump, so the faster
      consumer runs at most `max_buffered_chunks` ahead of the slower one
      (0 disables the bound).
    - End of stream and source errors are delivered to both branches
      after the chunks that preceded them.
    - Closing a branch (caller disconnect, failed upload) detaches it: its
      buffer is dropped and the pump stops feeding it while the other
      branch keeps flowing. When every branch is closed the pump stops and
      the source is closed.

Usage:
    caller, storage = fork(upstream_chunks, max_buffered_chunks=64)

    async for chunk in caller:
        ...

Note:
    fork() must be called from a running event loop; the pump is an
    asyncio task created on the spot.
"""
from __future__ import annotations

import asyncio
from collections import deque
from typing import AsyncIterable, Callable, Deque, Optional, Tuple

from tts_relay.core.config import Defaults
from tts_relay.core.logging import get_logger, verbose, warn

_LOG = get_logger("tts-relay.fork")


class StreamForkError(Exception):
    """Raised on the branches when the pump is cancelled before the source ends."""
    pass


class StreamBranch:
    """
    One consumable side of a forked stream.

    Iterate it with `async for`. Each branch expects a single consumer.
    """

    def __init__(self, name: str, capacity: int, on_close: Callable[["StreamBranch"], None]):
        self.name = name
        self._capacity = capacity
        self._on_close = on_close

        self._buffer: Deque[bytes] = deque()
        self._readable = asyncio.Event()
        self._writable = asyncio.Event()
        self._writable.set()

        self._done = False
        self._error: Optional[BaseException] = None
        self._detached = False

    @property
    def closed(self) -> bool:
        return self._detached

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def __aiter__(self) -> "StreamBranch":
        return self

    async def __anext__(self) -> bytes:
        while True:
            if self._detached:
                raise StopAsyncIteration
            if self._buffer:
                chunk = self._buffer.popleft()
                self._writable.set()
                return chunk
            if self._done:
                if self._error is not None:
                    # Raised once; later reads just end
                    err, self._error = self._error, None
                    raise err
                raise StopAsyncIteration
            self._readable.clear()
            await self._readable.wait()

    def close(self) -> None:
        """Detach this branch; the other branch is unaffected."""
        if self._detached:
            return
        self._detached = True
        self._buffer.clear()
        self._writable.set()
        self._readable.set()
        self._on_close(self)

    async def aclose(self) -> None:
        self.close()

    # Pump side ----------------------------------------------------------------

    async def _push(self, chunk: bytes) -> None:
        while self._capacity and len(self._buffer) >= self._capacity and not self._detached:
            self._writable.clear()
            await self._writable.wait()
        if self._detached:
            return
        self._buffer.append(chunk)
        self._readable.set()

    def _finish(self, error: Optional[BaseException] = None) -> None:
        if self._done:
            return
        self._done = True
        self._error = error
        self._readable.set()


class StreamFork:
    """
    Pump that feeds two StreamBranch objects from one source.

    Attributes:
        branches: (first, second) branch pair.
        chunks: Chunks read from the source so far.
        bytes: Bytes read from the source so far.
    """

    def __init__(
        self,
        source: AsyncIterable[bytes],
        max_buffered_chunks: int = Defaults.FORK_MAX_BUFFERED_CHUNKS,
        names: Tuple[str, str] = ("caller", "storage"),
    ):
        self._source = source
        self.branches: Tuple[StreamBranch, StreamBranch] = (
            StreamBranch(names[0], max_buffered_chunks, self._branch_closed),
            StreamBranch(names[1], max_buffered_chunks, self._branch_closed),
        )
        self.chunks = 0
        self.bytes = 0
        self._task = asyncio.create_task(self._pump(), name="stream-fork-pump")

    @property
    def done(self) -> bool:
        return self._task.done()

    async def join(self) -> None:
        """Wait for the pump to finish (it never raises)."""
        await asyncio.wait({self._task})

    def _branch_closed(self, branch: StreamBranch) -> None:
        verbose(_LOG, "fork_branch_closed", branch=branch.name, chunks=self.chunks)
        if all(b.closed for b in self.branches) and not self._task.done():
            self._task.cancel()

    async def _pump(self) -> None:
        error: Optional[BaseException] = None
        try:
            async for chunk in self._source:
                self.chunks += 1
                self.bytes += len(chunk)
                for branch in self.branches:
                    await branch._push(chunk)
                if all(b.closed for b in self.branches):
                    break
        except asyncio.CancelledError:
            error = StreamForkError("stream fork cancelled before the source ended")
            raise
        except Exception as e:
            error = e
            warn(_LOG, "fork_source_error", chunks=self.chunks, bytes=self.bytes, error=str(e))
        finally:
            for branch in self.branches:
                branch._finish(error)
            await self._close_source()
            verbose(_LOG, "fork_done", chunks=self.chunks, bytes=self.bytes, failed=error is not None)

    async def _close_source(self) -> None:
        aclose = getattr(self._source, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as e:
            warn(_LOG, "fork_source_close_error", error=str(e))


def fork(
    source: AsyncIterable[bytes],
    max_buffered_chunks: int = Defaults.FORK_MAX_BUFFERED_CHUNKS,
) -> Tuple[StreamBranch, StreamBranch]:
    """
    Fork a byte stream into two independent branches.

    Args:
        source: Async iterable of byte chunks.
        max_buffered_chunks: Per-branch buffer bound (0 = unbounded).

    Returns:
        (caller_branch, storage_branch)
    """
    return StreamFork(source, max_buffered_chunks).branches

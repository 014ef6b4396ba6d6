"""
Tests for the stream forker.

Tests cover:
- Every chunk reaches both branches in source order
- Branches consumed at different speeds, or after the source ended
- Source errors raised on both branches after earlier chunks
- Closing one branch leaves the other flowing
- Closing both branches stops the pump and closes the source
- Backpressure from a bounded buffer
"""
from __future__ import annotations

import asyncio

import pytest

CHUNKS = [b"c1", b"c2", b"c3"]


async def _source(chunks, delay: float = 0.0, error: Exception | None = None):
    for chunk in chunks:
        if delay:
            await asyncio.sleep(delay)
        else:
            await asyncio.sleep(0)
        yield chunk
    if error is not None:
        raise error


async def _collect(branch, delay: float = 0.0):
    out = []
    async for chunk in branch:
        out.append(chunk)
        if delay:
            await asyncio.sleep(delay)
    return out


class TestForkOrdering:
    """Both branches observe the full sequence in order."""

    def test_sequential_consumption(self):
        """Draining one branch, then the other, yields [c1, c2, c3] twice."""
        from tts_relay.tts.fork import fork

        async def run_test():
            caller, storage = fork(_source(CHUNKS))
            first = await _collect(caller)
            second = await _collect(storage)
            return first, second

        first, second = asyncio.run(run_test())
        assert first == CHUNKS
        assert second == CHUNKS

    def test_different_speeds(self):
        """A fast and a slow consumer both get every chunk in order."""
        from tts_relay.tts.fork import fork

        async def run_test():
            caller, storage = fork(_source(CHUNKS * 5), max_buffered_chunks=2)
            return await asyncio.gather(_collect(caller), _collect(storage, delay=0.01))

        fast, slow = asyncio.run(run_test())
        assert fast == CHUNKS * 5
        assert slow == CHUNKS * 5

    def test_branch_consumed_after_source_ended(self):
        """A branch first read after the source finished still sees everything."""
        from tts_relay.tts.fork import StreamFork

        async def run_test():
            forked = StreamFork(_source(CHUNKS))
            caller, storage = forked.branches
            first = await _collect(caller)
            await forked.join()
            assert forked.done
            second = await _collect(storage)
            return first, second, forked.chunks, forked.bytes

        first, second, chunks, size = asyncio.run(run_test())
        assert first == CHUNKS
        assert second == CHUNKS
        assert chunks == 3
        assert size == 6

    def test_empty_source(self):
        from tts_relay.tts.fork import fork

        async def run_test():
            caller, storage = fork(_source([]))
            return await _collect(caller), await _collect(storage)

        assert asyncio.run(run_test()) == ([], [])

    def test_unbounded_buffer(self):
        """max_buffered_chunks=0 lets the pump run ahead without limit."""
        from tts_relay.tts.fork import StreamFork

        async def run_test():
            forked = StreamFork(_source([b"x"] * 200), max_buffered_chunks=0)
            await forked.join()
            caller, storage = forked.branches
            return caller.buffered, storage.buffered

        assert asyncio.run(run_test()) == (200, 200)


class TestForkErrors:
    """Source failures reach both branches."""

    def test_error_after_chunks_on_both_branches(self):
        from tts_relay.tts.fork import fork

        async def run_test():
            caller, storage = fork(_source(CHUNKS[:2], error=ValueError("upstream broke")))
            results = []
            for branch in (caller, storage):
                seen = []
                with pytest.raises(ValueError, match="upstream broke"):
                    async for chunk in branch:
                        seen.append(chunk)
                results.append(seen)
            return results

        caller_seen, storage_seen = asyncio.run(run_test())
        assert caller_seen == CHUNKS[:2]
        assert storage_seen == CHUNKS[:2]

    def test_error_raised_once_then_end(self):
        """After the error was raised, further reads just end."""
        from tts_relay.tts.fork import fork

        async def run_test():
            caller, _ = fork(_source([], error=RuntimeError("boom")))
            with pytest.raises(RuntimeError):
                await caller.__anext__()
            with pytest.raises(StopAsyncIteration):
                await caller.__anext__()

        asyncio.run(run_test())


class TestForkClose:
    """Closing branches detaches them without disturbing the other."""

    def test_closing_caller_keeps_storage_flowing(self):
        """Caller disconnect after one chunk; storage still gets everything."""
        from tts_relay.tts.fork import fork

        async def run_test():
            caller, storage = fork(_source(CHUNKS * 4), max_buffered_chunks=1)
            first = await caller.__anext__()
            caller.close()
            rest = await _collect(caller)
            stored = await _collect(storage)
            return first, rest, stored, caller.closed

        first, rest, stored, closed = asyncio.run(run_test())
        assert first == b"c1"
        assert rest == []
        assert stored == CHUNKS * 4
        assert closed is True

    def test_aclose_is_idempotent(self):
        from tts_relay.tts.fork import fork

        async def run_test():
            caller, storage = fork(_source(CHUNKS))
            await caller.aclose()
            await caller.aclose()
            return await _collect(storage)

        assert asyncio.run(run_test()) == CHUNKS

    def test_closing_both_stops_pump_and_closes_source(self):
        from tts_relay.tts.fork import StreamFork

        state = {"closed": False, "produced": 0}

        async def endless():
            try:
                while True:
                    await asyncio.sleep(0.001)
                    state["produced"] += 1
                    yield b"x"
            finally:
                state["closed"] = True

        async def run_test():
            forked = StreamFork(endless(), max_buffered_chunks=4)
            caller, storage = forked.branches
            await caller.__anext__()
            caller.close()
            storage.close()
            await asyncio.wait_for(forked.join(), timeout=2.0)
            return forked.done

        assert asyncio.run(run_test()) is True
        assert state["closed"] is True

    def test_source_closed_after_normal_end(self):
        """aclose() is called on the source once the pump finishes."""
        from tts_relay.tts.fork import StreamFork

        class Source:
            def __init__(self):
                self.closed = False
                self._chunks = iter(CHUNKS)

            def __aiter__(self):
                return self

            async def __anext__(self):
                try:
                    return next(self._chunks)
                except StopIteration:
                    raise StopAsyncIteration

            async def aclose(self):
                self.closed = True

        async def run_test():
            source = Source()
            forked = StreamFork(source)
            await forked.join()
            return source.closed

        assert asyncio.run(run_test()) is True


class TestForkBackpressure:
    """A full branch buffer stops the pump."""

    def test_unread_branch_limits_pump(self):
        from tts_relay.tts.fork import StreamFork

        async def run_test():
            forked = StreamFork(_source([b"x"] * 10), max_buffered_chunks=2)
            for _ in range(50):
                await asyncio.sleep(0)
            caller, storage = forked.branches
            snapshot = (forked.chunks, caller.buffered, storage.buffered, forked.done)

            # Draining both lets the pump finish
            await asyncio.gather(_collect(caller), _collect(storage))
            await forked.join()
            return snapshot, forked.chunks

        (read, caller_buf, storage_buf, done), total = asyncio.run(run_test())
        assert read == 3           # third chunk waits for buffer space
        assert caller_buf == 2
        assert storage_buf == 2
        assert done is False
        assert total == 10

"""
Utility Modules for tts-relay.

    - streams.py: Async iteration over streamed httpx responses
    - timeit.py: Performance measurement utilities
"""

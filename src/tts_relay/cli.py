"""
Command-Line Interface for tts-relay.

Runs the relay pipeline once without the HTTP server: derive the cache
key, serve from the blob store or generate and persist, and write the MP3
to a file. Useful to warm the cache or to check which key a text maps to.

Usage Examples:
    # Generate (or fetch from cache) and save
    tts-relay --text "Hello there" --out hello.mp3

    # Positional text (same as above)
    tts-relay "Hello there" --out hello.mp3

    # Batch: one text per line, numbered files in a directory
    tts-relay --file inputs.txt --out out_dir/

    # Only print the cache key (no network)
    tts-relay "Hello there" --key-only --json

    # Another voice
    tts-relay "Hello there" --voice-id alloy

Environment Variables:
    OPENAI_API_KEY: Generation API key
    APP_SUPABASE_URL / APP_SUPABASE_SERVICE_ROLE_KEY: Supabase storage
    TTS_RELAY_STORAGE_BACKEND: supabase | local
    TTS_RELAY_SETTINGS: Settings file path
"""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

from tts_relay.core.config import ConfigValidationError, RelayConfig, load_settings
from tts_relay.core.errors import ProxyError
from tts_relay.core.logging import configure_logging, get_logger, info, set_request_id
from tts_relay.services.speech_proxy import SpeechProxy, SpeechRequest
from tts_relay.tts.keys import derive_key, object_name


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Args:
        argv: Optional list of arguments (defaults to sys.argv).

    Returns:
        Parsed argument namespace with all CLI options.
    """
    parser = argparse.ArgumentParser(description="tts-relay CLI (cache-backed speech generation)")

    # Input options
    parser.add_argument("text_pos", nargs="?", help="Text to speak (positional)")
    parser.add_argument("--text", help="Text to speak")
    parser.add_argument("--file", help="Batch input file (1 line = 1 item)")
    parser.add_argument("--voice-id", help="Voice id (default from settings)")

    # Output options
    parser.add_argument("--out", help="Output path (file, or dir in batch mode)")
    parser.add_argument("--settings", help="Settings file (default: $TTS_RELAY_SETTINGS or config/settings.yaml)")

    # Execution modes
    parser.add_argument("--key-only", action="store_true",
                        help="Print cache keys without contacting storage or the generator")
    parser.add_argument("--json", action="store_true",
                        help="Print JSON summary")

    return parser.parse_args(argv)


def _load_texts(args: argparse.Namespace) -> List[str]:
    """
    Load input texts from arguments or file.

    Raises:
        SystemExit: If no input provided or conflicting options used.
    """
    text = args.text or args.text_pos

    if args.file:
        if text:
            raise SystemExit("Use --file without --text or positional text.")
        lines = Path(args.file).read_text(encoding="utf-8").splitlines()
        items = [line.strip() for line in lines if line.strip()]
        if not items:
            raise SystemExit("Input file is empty.")
        return items

    if not text:
        raise SystemExit("Provide --text or a positional text.")
    return [text]


def _resolve_output_paths(args: argparse.Namespace, count: int) -> List[Path]:
    """Numbered files in a directory for --file, else --out or out.mp3."""
    if args.file:
        out_dir = Path(args.out or "out")
        out_dir.mkdir(parents=True, exist_ok=True)
        return [out_dir / f"item_{i + 1:03d}.mp3" for i in range(count)]

    out_path = Path(args.out or "out.mp3")
    out_path.parent.mkdir(parents=True, exist_ok=True)
    return [out_path]


async def _generate(proxy: SpeechProxy, texts: List[str], voice_id: str, out_paths: List[Path]) -> List[dict]:
    """
    Run each text through the proxy and write the audio.

    Persistence jobs are drained before returning so a cache miss is
    stored before the process exits.
    """
    log = get_logger("tts-relay.cli")
    results = []
    try:
        for text, out_path in zip(texts, out_paths):
            stream = await proxy.handle(SpeechRequest(text=text, voice_id=voice_id))
            written = 0
            try:
                with out_path.open("wb") as f:
                    async for chunk in stream.chunks:
                        f.write(chunk)
                        written += len(chunk)
            finally:
                await stream.aclose()

            info(log, "written", out=str(out_path), bytes=written, cache=stream.cache_status)
            results.append({
                "out": str(out_path),
                "key": stream.key,
                "cache": stream.cache_status,
                "bytes": written,
            })
    finally:
        await proxy.drain()
    return results


async def _run(config: RelayConfig, texts: List[str], voice_id: str, out_paths: List[Path]) -> List[dict]:
    proxy = SpeechProxy.from_config(config)
    try:
        return await _generate(proxy, texts, voice_id, out_paths)
    finally:
        await proxy.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Optional list of command-line arguments.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = _parse_args(argv)

    configure_logging()
    log = get_logger("tts-relay.cli")
    set_request_id(str(uuid4())[:12])

    try:
        settings = load_settings(args.settings)
        config = settings.get_relay_config()
    except (FileNotFoundError, ConfigValidationError) as e:
        print(json.dumps({"ok": False, "error": str(e)}, ensure_ascii=False))
        return 2

    texts = _load_texts(args)
    voice_id = config.proxy.default_voice_id if args.voice_id is None else args.voice_id

    # Key-only mode: no storage or generator access
    if args.key_only:
        items = []
        for text in texts:
            key = derive_key(text, voice_id)
            items.append({"text_len": len(text), "voice_id": voice_id, "key": key, "object": object_name(key)})
        payload = {"ok": True, "key_only": True, "items": items}
        if args.json:
            print(json.dumps(payload, ensure_ascii=False))
        else:
            info(log, "key_only", items=len(texts), voice=voice_id)
            for item in items:
                print(item["key"])
        return 0

    out_paths = _resolve_output_paths(args, len(texts))
    try:
        results = asyncio.run(_run(config, texts, voice_id, out_paths))
    except ProxyError as e:
        print(json.dumps({"ok": False, "error": e.message, "code": e.code}, ensure_ascii=False))
        return 1

    payload = {"ok": True, "key_only": False, "items": results}
    if args.json:
        print(json.dumps(payload, ensure_ascii=False))
    else:
        print(payload)
    print("CLI_OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

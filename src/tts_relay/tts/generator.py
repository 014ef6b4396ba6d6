"""
Speech Generation Backend.

A SpeechGenerator turns (text, voice) into a stream of MP3 bytes. The
contract is deliberately small:

    chunks = await generator.generate(text, voice_id)

    - Raises GenerationError before producing any byte when the backend
      refuses the request or cannot be reached.
    - Otherwise returns an async iterator over the audio as it arrives;
      no total length is assumed.

OpenAISpeechGenerator:
    POST {base_url}/audio/speech
    {
        "model": "gpt-4o-mini-tts",
        "voice": "<voice_id>",
        "input": "<text>",
        "instructions": "Speak in a cheerful and positive tone.",
        "response_format": "mp3"
    }

    The response is opened in streaming mode and relayed chunk by chunk.
    On a non-2xx status the upstream JSON error message (error.message)
    becomes the GenerationError message.

Configuration:
    generator:
      base_url: https://api.openai.com/v1
      model: gpt-4o-mini-tts
      instructions: "Speak in a cheerful and positive tone."

    export OPENAI_API_KEY=sk-...
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

import httpx

from tts_relay.core.config import Defaults, GeneratorConfig
from tts_relay.core.errors import GenerationError
from tts_relay.core.logging import debug, get_logger, verbose
from tts_relay.utils.streams import ResponseChunks

_LOG = get_logger("tts-relay.generator")


class SpeechGenerator(ABC):
    """Abstract base for speech generation backends."""

    #: Model name reported by /health
    model: str = "unknown"

    @abstractmethod
    async def generate(self, text: str, voice_id: str) -> AsyncIterator[bytes]:
        """
        Start generating speech.

        Raises:
            GenerationError: If generation cannot start.
        """

    async def aclose(self) -> None:
        return None


def _upstream_message(response: httpx.Response) -> str:
    """Pick the error message out of an upstream error body."""
    fallback = f"Speech generation failed with HTTP {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return err
        if body.get("message"):
            return str(body["message"])
    return fallback


class OpenAISpeechGenerator(SpeechGenerator):
    """
    Generator backed by the OpenAI speech endpoint (or a compatible server).

    Args:
        config: Generator section of RelayConfig.
        client: Shared AsyncClient; one is created (and owned) if omitted.
    """

    def __init__(self, config: Optional[GeneratorConfig] = None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or GeneratorConfig()
        self.model = self.config.model
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.config.timeout_s or Defaults.GENERATOR_TIMEOUT_S)

    def build_payload(self, text: str, voice_id: str) -> dict:
        payload = {
            "model": self.config.model,
            "voice": voice_id,
            "input": text,
            "response_format": self.config.response_format,
        }
        if self.config.instructions:
            payload["instructions"] = self.config.instructions
        return payload

    async def generate(self, text: str, voice_id: str) -> AsyncIterator[bytes]:
        request = self._client.build_request(
            "POST",
            f"{self.config.base_url.rstrip('/')}/audio/speech",
            json=self.build_payload(text, voice_id),
            headers={"Authorization": f"Bearer {self.config.api_key}"},
        )
        verbose(_LOG, "generator_request", model=self.config.model, voice=voice_id, chars=len(text))

        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise GenerationError(f"Speech generation request failed: {str(e) or type(e).__name__}") from e

        if not response.is_success:
            try:
                await response.aread()
                message = _upstream_message(response)
            except httpx.HTTPError:
                message = f"Speech generation failed with HTTP {response.status_code}"
            finally:
                await response.aclose()
            debug(_LOG, "generator_refused", status=response.status_code, message=message)
            raise GenerationError(message)

        return ResponseChunks(response)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

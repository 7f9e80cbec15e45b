"""ElevenLabs text-to-speech client."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from lectio.settings.config import settings

logger = logging.getLogger(__name__)


class SynthesisFailed(RuntimeError):
    pass


@dataclass
class VoiceSettings:
    stability: float = 0.5
    similarity_boost: float = 0.75
    style: float = 0.0
    use_speaker_boost: bool = True

    def to_dict(self) -> dict:
        return {
            "stability": self.stability,
            "similarity_boost": self.similarity_boost,
            "style": self.style,
            "use_speaker_boost": self.use_speaker_boost,
        }


class ElevenLabsSynthesizer:
    def __init__(self, api_key: Optional[str] = None, *, base_url: Optional[str] = None,
                 model_id: Optional[str] = None, timeout: Optional[float] = None,
                 voice_settings: Optional[VoiceSettings] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key or settings.ELEVENLABS_API_KEY
        if not self.api_key:
            raise ValueError("ELEVENLABS_API_KEY not set. Check your .env file.")
        self.base_url = (base_url or settings.ELEVENLABS_BASE_URL).rstrip("/")
        self.model_id = model_id or settings.ELEVENLABS_MODEL_ID
        self.timeout = timeout or settings.SYNTHESIS_TIMEOUT
        self.voice_settings = voice_settings or VoiceSettings()
        self._transport = transport

    async def synthesize(self, voice_id: str, text: str) -> bytes:
        """Return MP3 bytes for ``text`` spoken by ``voice_id``."""
        if not (text or "").strip():
            raise SynthesisFailed("Nothing to synthesize")
        payload = {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": self.voice_settings.to_dict(),
        }
        headers = {"Accept": "audio/mpeg", "xi-api-key": self.api_key}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.post(f"{self.base_url}/text-to-speech/{voice_id}", json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise SynthesisFailed(f"Failed to generate speech: {e}") from e
        if r.status_code >= 400:
            raise SynthesisFailed(f"ElevenLabs API error ({r.status_code}): {r.text[:200]}")
        if not r.content:
            raise SynthesisFailed("ElevenLabs returned an empty body")
        return r.content


__all__ = ["SynthesisFailed", "VoiceSettings", "ElevenLabsSynthesizer"]

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any
from urllib.parse import quote

import httpx

from kapsule.core.errors import sanitize_error
from kapsule.core.logging import get_logger

logger = get_logger("speech.elevenlabs")

DEFAULT_VOICE_ID = "pNInz6obpgDQGcFmaJgB"
DEFAULT_MODEL_ID = "eleven_monolingual_v1"
DEFAULT_VOICE_CATEGORY = "generated"


class ElevenLabsError(RuntimeError):
    pass


@dataclass(frozen=True)
class VoiceSettings:
    stability: float = 0.5
    similarity_boost: float = 0.5
    style: float = 0.5
    use_speaker_boost: bool = True


@dataclass(frozen=True)
class Voice:
    voice_id: str
    name: str
    category: str = DEFAULT_VOICE_CATEGORY


class ElevenLabsClient:
    def __init__(self, api_key: str, *, base_url: str = "https://api.elevenlabs.io/v1", timeout: float = 30.0) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def synthesize(
        self,
        text: str,
        *,
        voice_id: str | None = None,
        settings: VoiceSettings | None = None,
        speed: float = 1.0,
        model_id: str = DEFAULT_MODEL_ID,
    ) -> bytes:
        resolved_voice = voice_id or DEFAULT_VOICE_ID
        voice_settings = settings or VoiceSettings()
        logger.info(
            "elevenlabs.synthesize",
            extra={
                "component": "speech",
                "voice_id": resolved_voice,
                "speed": speed,
                "prompt_length": len(text),
            },
        )

        payload: dict[str, Any] = {
            "text": text,
            "model_id": model_id,
            "voice_settings": asdict(voice_settings),
            "speed": speed,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/text-to-speech/{quote(resolved_voice, safe='')}",
                    json=payload,
                    headers={
                        "Accept": "audio/mpeg",
                        "Content-Type": "application/json",
                        "xi-api-key": self.api_key,
                    },
                )
        except httpx.HTTPError as exc:
            raise ElevenLabsError(sanitize_error(exc, default_message="ElevenLabs unreachable")) from exc

        if response.status_code >= 400:
            raise ElevenLabsError(f"ElevenLabs API error: {response.status_code} - {response.text[:300]}")
        return response.content

    async def list_voices(self) -> list[Voice]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.base_url}/voices",
                    headers={"Accept": "application/json", "xi-api-key": self.api_key},
                )
        except httpx.HTTPError as exc:
            raise ElevenLabsError(sanitize_error(exc, default_message="ElevenLabs unreachable")) from exc

        if response.status_code >= 400:
            raise ElevenLabsError(f"ElevenLabs API error: {response.status_code} - {response.text[:300]}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise ElevenLabsError("Invalid voices response") from exc

        raw_voices = payload.get("voices") if isinstance(payload, dict) else None
        if not isinstance(raw_voices, list):
            return []

        voices: list[Voice] = []
        for item in raw_voices:
            if not isinstance(item, dict) or not item.get("voice_id"):
                continue
            voices.append(
                Voice(
                    voice_id=str(item["voice_id"]),
                    name=str(item.get("name") or ""),
                    category=str(item.get("category") or DEFAULT_VOICE_CATEGORY),
                )
            )
        logger.info("elevenlabs.voices_fetched", extra={"component": "speech", "count": len(voices)})
        return voices

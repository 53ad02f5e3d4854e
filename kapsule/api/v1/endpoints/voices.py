from fastapi import APIRouter, HTTPException, Response, status

from kapsule.api.v1.schemas.media import GenerateVocalsIn, VoiceOut, VoicesOut
from kapsule.core.errors import sanitize_error
from kapsule.core.logging import get_logger
from kapsule.core.settings import configured_secret, get_settings
from kapsule.speech.elevenlabs import ElevenLabsClient, ElevenLabsError, VoiceSettings

router = APIRouter()
logger = get_logger("api.voices")


def _client() -> ElevenLabsClient:
    settings = get_settings()
    api_key = configured_secret(settings.ELEVENLABS_API_KEY)
    if api_key is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="ElevenLabs API key not configured",
        )
    return ElevenLabsClient(
        api_key,
        base_url=settings.ELEVENLABS_API_URL,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
    )


@router.post("/generate-vocals", response_class=Response)
async def generate_vocals(payload: GenerateVocalsIn) -> Response:
    if not payload.prompt:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Prompt is required")
    client = _client()

    requested = payload.voice_settings
    defaults = VoiceSettings()
    settings = VoiceSettings(
        stability=defaults.stability if requested is None or requested.stability is None else requested.stability,
        similarity_boost=(
            defaults.similarity_boost
            if requested is None or requested.similarity_boost is None
            else requested.similarity_boost
        ),
        style=defaults.style if requested is None or requested.style is None else requested.style,
    )

    try:
        audio = await client.synthesize(
            payload.prompt,
            voice_id=payload.voice_id,
            settings=settings,
            speed=payload.speed if payload.speed is not None else 1.0,
        )
    except ElevenLabsError as exc:
        logger.error(
            "elevenlabs.synthesize_failed",
            extra={"component": "speech", "error": sanitize_error(exc, default_message="synthesis failed")},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate vocals",
        ) from exc

    return Response(content=audio, media_type="audio/mpeg")


@router.api_route("/get-voices", methods=["GET", "POST"])
async def get_voices() -> VoicesOut:
    client = _client()
    try:
        voices = await client.list_voices()
    except ElevenLabsError as exc:
        logger.error(
            "elevenlabs.voices_failed",
            extra={"component": "speech", "error": sanitize_error(exc, default_message="voice listing failed")},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch voices",
        ) from exc

    return VoicesOut(
        voices=[VoiceOut(voice_id=voice.voice_id, name=voice.name, category=voice.category) for voice in voices]
    )

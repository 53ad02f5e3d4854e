from pydantic import BaseModel


class VoiceSettingsIn(BaseModel):
    stability: float | None = None
    similarity_boost: float | None = None
    style: float | None = None


class GenerateVocalsIn(BaseModel):
    prompt: str | None = None
    voice_id: str | None = None
    voice_settings: VoiceSettingsIn | None = None
    speed: float | None = None


class VoiceOut(BaseModel):
    voice_id: str
    name: str
    category: str


class VoicesOut(BaseModel):
    voices: list[VoiceOut]


class GenerateCoverArtIn(BaseModel):
    prompt: str | None = None


class StoreCoverArtIn(BaseModel):
    url: str | None = None


class CoverArtOut(BaseModel):
    url: str

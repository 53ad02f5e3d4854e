from fastapi import APIRouter, Depends, HTTPException, status

from kapsule.api.v1.schemas.media import CoverArtOut, GenerateCoverArtIn, StoreCoverArtIn
from kapsule.core.settings import configured_secret, get_settings
from kapsule.core.supabase_jwt import VerifiedSupabaseAuth, verify_supabase_auth
from kapsule.media.cover_art import CoverArtError, generate_cover_art, store_generated_cover

router = APIRouter()
supabase_auth_dependency = Depends(verify_supabase_auth)


@router.post("/generate-cover-art")
async def generate_cover(payload: GenerateCoverArtIn) -> CoverArtOut:
    if not payload.prompt:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Prompt is required")
    api_key = configured_secret(get_settings().OPENAI_API_KEY)
    if api_key is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Image generation API key not configured",
        )

    try:
        url = await generate_cover_art(payload.prompt, api_key=api_key)
    except CoverArtError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to generate cover art",
        ) from exc
    return CoverArtOut(url=url)


@router.post("/cover-art")
async def store_cover(
    payload: StoreCoverArtIn,
    auth: VerifiedSupabaseAuth = supabase_auth_dependency,
) -> CoverArtOut:
    if not payload.url:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="url is required")

    try:
        public_url = await store_generated_cover(auth.user_id, payload.url)
    except CoverArtError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return CoverArtOut(url=public_url)

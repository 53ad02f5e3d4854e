from fastapi import APIRouter, Depends, HTTPException, status

from kapsule.api.v1.schemas.artist_profiles import ArtistProfileOut, ArtistProfileUpdateIn
from kapsule.core.supabase_jwt import VerifiedSupabaseAuth, verify_supabase_auth
from kapsule.core.supabase_rest import select_artist_profile, update_artist_profile

router = APIRouter()
supabase_auth_dependency = Depends(verify_supabase_auth)


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Artist profile not found")


@router.get("/artist-profiles/me")
async def get_my_artist_profile(auth: VerifiedSupabaseAuth = supabase_auth_dependency) -> ArtistProfileOut:
    row = await select_artist_profile(auth.user_id)
    if row is None:
        raise _not_found()
    return ArtistProfileOut.model_validate(row)


@router.patch("/artist-profiles/me")
async def update_my_artist_profile(
    payload: ArtistProfileUpdateIn,
    auth: VerifiedSupabaseAuth = supabase_auth_dependency,
) -> ArtistProfileOut:
    fields = payload.model_dump(exclude_unset=True)
    if not fields:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No profile fields provided")

    row = await update_artist_profile(auth.user_id, fields)
    if row is None:
        raise _not_found()
    return ArtistProfileOut.model_validate(row)

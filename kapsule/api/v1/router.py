from fastapi import APIRouter

from kapsule.api.v1.endpoints import (
    artist_profiles,
    checkout,
    cover_art,
    debug,
    entitlements,
    health,
    revenuecat_webhook,
    stripe_webhook,
    voices,
)

router = APIRouter()
router.include_router(health.router)
router.include_router(checkout.router)
router.include_router(stripe_webhook.router)
router.include_router(revenuecat_webhook.router)
router.include_router(entitlements.router)
router.include_router(debug.router)
router.include_router(voices.router)
router.include_router(cover_art.router)
router.include_router(artist_profiles.router)

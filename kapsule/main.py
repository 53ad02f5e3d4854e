from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kapsule.api.v1.router import router as v1_router
from kapsule.core.errors import install_exception_handlers
from kapsule.core.logging import configure_logging, get_logger
from kapsule.core.settings import get_settings
from kapsule.middleware.request_id import RequestIDMiddleware

configure_logging()
settings = get_settings()

app = FastAPI(title="Kapsule API")
get_logger("api").info("api.startup", extra={"component": "api", "env": settings.KAPSULE_ENV})

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "stripe-signature", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)
app.add_middleware(RequestIDMiddleware)
install_exception_handlers(app)

app.include_router(v1_router, prefix="/api/v1")


@app.get("/healthz")
def root_healthz() -> dict[str, str]:
    return {"status": "ok"}

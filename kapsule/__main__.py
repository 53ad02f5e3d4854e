import os

import uvicorn

from kapsule.core.logging import configure_logging
from kapsule.core.settings import get_settings


def main() -> None:
    configure_logging()
    settings = get_settings()
    port = int(os.getenv("PORT", str(settings.API_PORT)))
    uvicorn.run("kapsule.main:app", host=settings.API_HOST, port=port)


if __name__ == "__main__":
    main()

import sys
import os
import logging
import uvicorn

# Path Setup
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
BACKEND_DIR = os.path.join(BASE_DIR, "backend")
sys.path.insert(0, BACKEND_DIR)

from bot.app_factory import create_app  # noqa: E402
from bot.settings import load_settings  # noqa: E402


def main() -> None:
    settings = load_settings()
    app = create_app(settings)

    logging.info("🚀 Starting chat relay bot...")
    logging.info(f"📡 Server running at {settings.host}:{settings.port}")
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        workers=1,
        reload=False,
    )


if __name__ == "__main__":
    main()

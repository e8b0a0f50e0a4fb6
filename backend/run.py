import logging

import uvicorn

from calendar_holds.core.config import Settings

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # Load environment variables
    settings = Settings.from_env()

    uvicorn.run(
        "calendar_holds.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=True
    )

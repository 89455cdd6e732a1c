from __future__ import annotations

import uvicorn

from tradebook.utils.config import get_settings
from tradebook.utils.logger import setup_logging


def main() -> None:
    setup_logging()
    settings = get_settings()

    # the alert scheduler starts with the app lifespan
    uvicorn.run(
        "tradebook.api.webapp:app",
        host=settings.http_host,
        port=settings.http_port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()

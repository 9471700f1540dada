"""Run the service with uvicorn using the server section of the config."""

from __future__ import annotations

import uvicorn

from task_auction_service.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "task_auction_service.app:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level,
    )


if __name__ == "__main__":
    main()

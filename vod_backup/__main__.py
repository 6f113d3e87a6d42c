"""Run the service with uvicorn: ``python -m vod_backup``."""

import uvicorn

from vod_backup.core.config import ConfigService


def main() -> None:
    config = ConfigService().load()
    uvicorn.run(
        "vod_backup.main:app",
        host=config.server.host,
        port=config.server.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()

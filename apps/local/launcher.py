from __future__ import annotations

import uvicorn

from cartsession.config import ensure_directories, get_launcher_config
from cartsession.logging.logger import get_logger


def main() -> None:
    ensure_directories()
    logger = get_logger()
    config = get_launcher_config()
    logger.info("Starting cart session surface on %s:%s", config.host, config.port)
    uvicorn.run("apps.local.main:app", host=config.host, port=config.port, reload=False)


if __name__ == "__main__":
    main()

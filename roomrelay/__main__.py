import logging

import uvicorn

from . import config
from .log import configure_logging

logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging()
    logger.info("Starting room relay on %s:%d", config.HOST, config.PORT)
    uvicorn.run(
        "roomrelay.app:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.RELOAD,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()

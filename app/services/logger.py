# logging_config.py
import logging

from core.config import settings


def setup_logger():
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        handlers=[logging.StreamHandler()],
    )

    app_logger = logging.getLogger("app")
    app_logger.setLevel(logging.DEBUG if settings.ENV == "dev" else settings.LOG_LEVEL)

    return app_logger

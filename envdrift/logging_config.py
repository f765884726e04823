import logging
from logging.handlers import RotatingFileHandler

from envdrift.config import Settings, load_settings


def setup_logging(settings: Settings | None = None) -> None:
    settings = settings or load_settings()

    handler = RotatingFileHandler(
        settings.log_file,
        maxBytes=5*1024*1024,  # 5 MB per file
        backupCount=3
    )
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    handler.setFormatter(formatter)

    logger = logging.getLogger()
    logger.setLevel(settings.log_level)
    logger.addHandler(handler)

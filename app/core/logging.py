import logging

from app.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = None) -> None:
    """Configure le logging racine une seule fois (API et worker Celery)."""
    logging.basicConfig(level=(level or settings.LOG_LEVEL).upper(), format=LOG_FORMAT)
    # httpx logue chaque requête en INFO, URL comprise (donc parfois des codes OAuth)
    logging.getLogger("httpx").setLevel(logging.WARNING)

import logging

from roombook.app.core.config import settings


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for the API process or a job."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - [%(levelname)s] - %(message)s"


def setup_logging(level: str = "INFO") -> None:
    """
    Configure the root logger for the service.
    Called once from the app startup hook.
    """
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        stream=sys.stdout,
    )
    # Silence noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)

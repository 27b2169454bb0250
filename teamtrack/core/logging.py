# teamtrack/core/logging.py
import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, force=True)
    # google client libraries are chatty at INFO
    logging.getLogger("google").setLevel(logging.WARNING)

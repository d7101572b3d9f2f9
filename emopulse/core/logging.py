"""
Logging setup shared by the API and the CLI entry points.

HTTP access logs are handled by gunicorn (see gunicorn.conf.py); the
application itself only uses module-level loggers.
"""
import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # The SDK clients are chatty at INFO.
    for noisy in ("httpx", "botocore", "anthropic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

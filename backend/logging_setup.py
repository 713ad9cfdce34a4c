import logging
import os
import sys

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

formatter = logging.Formatter(fmt="%(asctime)s - %(levelname)s - %(name)s - %(message)s")

stream_handler = logging.StreamHandler(sys.stdout)
stream_handler.setFormatter(formatter)


def configure_logging(level: str = LOG_LEVEL):
    root = logging.getLogger()
    if stream_handler not in root.handlers:
        root.addHandler(stream_handler)
    root.setLevel(level.upper())

import logging

from logging_setup import configure_logging, stream_handler


def test_configure_logging_installs_one_handler():
    configure_logging("debug")
    configure_logging("info")

    root = logging.getLogger()
    assert root.handlers.count(stream_handler) == 1
    assert root.level == logging.INFO

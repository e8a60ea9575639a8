import logging

from assist_chat.utils.logger import init_app_logger
from helpers import make_settings


def test_console_and_file_handlers(tmp_path):
    log_file = tmp_path / "logs" / "chat.log"
    settings = make_settings(log_level="debug", log_file=str(log_file))

    logger = init_app_logger(settings, name="assist_chat_logging_test")
    logger.getChild("service").info("hello")
    for handler in logger.handlers:
        handler.flush()

    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 2
    assert " - assist_chat_logging_test.service - INFO - hello" in log_file.read_text()
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def test_second_call_only_changes_level():
    name = "assist_chat_logging_test_twice"
    init_app_logger(make_settings(log_level="INFO"), name=name)

    logger = init_app_logger(make_settings(log_level="ERROR"), name=name)

    assert logger.level == logging.ERROR
    assert len(logger.handlers) == 1

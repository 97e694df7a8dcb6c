import inspect
import logging
import os
import sys

from loguru import logger

from loyalty_backend.core.conf import settings
from loyalty_backend.core.path_conf import LOG_DIR


class InterceptHandler(logging.Handler):
    """
    Forward stdlib logging records to loguru

    https://loguru.readthedocs.io/en/stable/overview.html#entirely-compatible-with-standard-logging
    """

    def emit(self, record: logging.LogRecord) -> None:
        # Map the stdlib level onto a loguru level, if one exists
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller that emitted the record
        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging() -> None:
    """Route the root logger and uvicorn loggers through loguru"""
    logging.root.handlers = [InterceptHandler()]
    logging.root.setLevel(settings.LOG_STD_LEVEL)

    for name in logging.root.manager.loggerDict.keys():
        logging.getLogger(name).handlers = []
        if 'uvicorn' in name or 'sqlalchemy' in name:
            logging.getLogger(name).propagate = True

    logger.remove()
    logger.configure(extra={'request_id': settings.TRACE_ID_LOG_DEFAULT_VALUE})
    logger.add(sys.stdout, level=settings.LOG_STD_LEVEL, format=settings.LOG_FORMAT)


def set_custom_logfile() -> None:
    """Access and error log files"""
    if not settings.LOG_FILE_ENABLED:
        return

    if not os.path.exists(LOG_DIR):
        os.makedirs(LOG_DIR)

    log_config = {
        'format': settings.LOG_FORMAT,
        'enqueue': True,
        'rotation': '00:00',
        'retention': '7 days',
        'compression': 'tar.gz',
    }

    logger.add(
        str(LOG_DIR / settings.LOG_ACCESS_FILENAME),
        level=settings.LOG_FILE_ACCESS_LEVEL,
        filter=lambda record: record['level'].no <= 25,
        backtrace=False,
        diagnose=False,
        **log_config,
    )
    logger.add(
        str(LOG_DIR / settings.LOG_ERROR_FILENAME),
        level=settings.LOG_FILE_ERROR_LEVEL,
        filter=lambda record: record['level'].no >= 30,
        backtrace=True,
        diagnose=True,
        **log_config,
    )


log = logger

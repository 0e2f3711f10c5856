import sys

from loguru import logger

from config import get_config

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


class AppLogger:
    """Global logger configuration for the application.

    Sets the log level from get_config().log_level.
    """
    def __init__(self) -> None:
        log_level = get_config().log_level.upper()
        logger.remove()
        logger.configure(extra={"name": "app"})
        logger.add(sink=sys.stdout, level=log_level, format=LOG_FORMAT)
        self.logger = logger

    def get_logger(self, name: str = None):
        """Get the configured logger instance.

        Args:
            name (str, optional): Name for the logger context. Defaults to None.
        Returns:
            loguru.Logger: The configured logger instance.
        """
        if name:
            return self.logger.bind(name=name)
        return self.logger


_app_logger = None


def configure_logging() -> None:
    """Re-apply sinks using the latest config."""
    global _app_logger
    _app_logger = AppLogger()


def get_logger(name: str = None):
    """Get an application logger, configuring sinks on first use."""
    if _app_logger is None:
        configure_logging()
    return _app_logger.get_logger(name)

import logging
import os

from rich.logging import RichHandler


class CenteredFormatter(logging.Formatter):
    longest_name_length = 10

    def format(self, record):
        CenteredFormatter.longest_name_length = max(
            CenteredFormatter.longest_name_length, len(record.name)
        )
        record.name = record.name.center(CenteredFormatter.longest_name_length)
        return super().format(record)


def get_logger(name=None) -> logging.Logger:
    """
    Return a logger writing through a RichHandler.

    DEBUG level when the DEBUG environment variable is set, INFO otherwise.
    """
    logger = logging.getLogger(name or 'shop')
    log_level = logging.DEBUG if os.getenv('DEBUG') else logging.INFO
    logger.setLevel(log_level)

    if not logger.handlers:
        handler = RichHandler(
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
            log_time_format='[%X]',
        )
        handler.setFormatter(CenteredFormatter('[%(name)s]  %(message)s'))
        handler.setLevel(log_level)
        logger.addHandler(handler)
        logger.propagate = False

    return logger

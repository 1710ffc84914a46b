# symbem/logging_config.py
"""
Logging setup for the ``symbem`` namespace.

Library modules only create module loggers; handlers are attached here,
usually once by the command line entry point.
"""
import logging
import sys


def setup_logging(level=logging.INFO, log_file=None):
    """
    Configure the ``symbem`` package logger.

    Parameters
    ----------
    level : int or str
        Logging level (``logging.DEBUG``, ``"INFO"``, ...).
    log_file : str or None
        Optional path of a file that receives a copy of the log.

    Returns
    -------
    logger : logging.Logger
        The configured package logger.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown logging level: {level!r}")

    logger = logging.getLogger("symbem")
    logger.setLevel(level)

    # Avoid duplicate records when called twice in one session
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.debug("Logging initialized.")
    return logger

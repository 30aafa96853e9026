import logging
import sys
import time


def get_logger(name: str, debug: bool = False) -> logging.Logger:
    """
    Returns a logger for the analysis components.
    We use ISO8601 timestamps and UTC times, the minimizer logs every iteration
    at INFO level so long runs can be followed on stdout.

    Args:
        name : name of logger object, normally the module ``__name__``
        debug : if True: set logging level to logging.DEBUG; else set to logging.INFO
    Returns:
        The logger object.
    """
    logger = logging.getLogger(name=name)
    if not logger.hasHandlers():
        level = logging.DEBUG if debug else logging.INFO
        datefmt = "%Y-%m-%dT%H:%M:%SZ"
        msgfmt = "[%(asctime)s] [%(filename)s:%(lineno)s - %(funcName).30s] [%(levelname)s] %(message)s"
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        formatter = logging.Formatter(msgfmt, datefmt=datefmt)
        # record UTC time
        setattr(formatter, "converter", time.gmtime)
        handler.setFormatter(formatter)
        logger.setLevel(level)
        logger.addHandler(handler)
    return logger

import logging


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger with the shared Tenantflow console format.

    The handler is installed once per logger name, so repeated calls
    from different modules never duplicate output.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger

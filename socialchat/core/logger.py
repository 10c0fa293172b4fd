import logging


def get_logger(name: str, level: str = "INFO") -> logging.Logger:
    """Simple logger factory."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "[%(asctime)s] [%(levelname)s] [%(name)s]: %(message)s"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(level)
    return logger


def configure_logging(level: str) -> None:
    logging.getLogger("socialchat").setLevel(level)
    for name in list(logging.root.manager.loggerDict):
        if name.startswith("socialchat."):
            logging.getLogger(name).setLevel(level)

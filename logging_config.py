import logging
import os
import sys


def setup_logging(level: str = None):
    """Console logging for the chat service"""

    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    formatter = logging.Formatter(
        '%(asctime)s | %(name)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S'
    )
    console_handler.setFormatter(formatter)

    # Clear existing handlers and add our custom one
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    # Silence noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)

    # Per-stage timings are only interesting when debugging a turn
    if level != "DEBUG":
        logging.getLogger("leasing_chat.logging.flight_recorder").setLevel(logging.WARNING)

    logging.getLogger("leasing_chat").setLevel(level)


if __name__ == "__main__":
    setup_logging()

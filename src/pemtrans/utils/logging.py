import logging
import sys
from typing import Optional


def get_logger(level: Optional[str] = None):
    logger = logging.getLogger("pemtrans")
    if not logger.handlers:
        h = logging.StreamHandler(sys.stderr)
        fmt = logging.Formatter("[%(asctime)s] %(levelname)s %(message)s")
        h.setFormatter(fmt)
        logger.addHandler(h)
        logger.setLevel(logging.INFO)
    if level:
        logger.setLevel(level)
    return logger

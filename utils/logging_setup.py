"""Logging configuration shared by entry points and tests"""

import logging
from typing import Optional

from config import Config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once; later calls only adjust the level"""
    resolved = getattr(logging, (level or Config.LOG_LEVEL).upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=resolved, format=LOG_FORMAT)
    root.setLevel(resolved)

    # APScheduler is chatty at INFO
    logging.getLogger("apscheduler").setLevel(max(resolved, logging.WARNING))

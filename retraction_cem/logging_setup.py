import json
import logging
import os
import sys
from typing import Optional


def get_logger(name: str, level: Optional[str] = None) -> logging.LoggerAdapter:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s | extras=%(extras)s"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.propagate = False
        logger.setLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    # default extras
    return logging.LoggerAdapter(logger, extra={"extras": "{}"})


def with_extras(logger, **extras) -> logging.LoggerAdapter:
    # attach JSON extras for consistent structured logs
    base = logger.logger if hasattr(logger, "logger") else logger
    return logging.LoggerAdapter(base, extra={"extras": json.dumps(extras, ensure_ascii=False, default=str)})


def set_package_level(level: str) -> None:
    """Apply a level to every logger already created under retraction_cem."""
    for name, obj in logging.Logger.manager.loggerDict.items():
        if name.startswith("retraction_cem") and isinstance(obj, logging.Logger):
            obj.setLevel(level.upper())

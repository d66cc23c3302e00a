# utils/__init__.py

from utils.logger import logger, mask
from utils.config import load_cfg
from utils.time import utc_ms

__all__ = ["logger", "mask", "load_cfg", "utc_ms"]

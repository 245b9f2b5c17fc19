# File: backend/simulation_logging.py
#
# Named loggers for the engine and the API: stdout always, plus a daily log
# file when ROI_LOG_DIR is set.

import logging
import os
from datetime import datetime
from pathlib import Path

from simulation_config import LogConfig

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def get_logger(name, config=None):
    """
    Return a named logger writing to stdout and, optionally, a daily file.

    Parameters
    ----------
    name   : Logger name (typically the module __name__).
    config : LogConfig; read from the environment when omitted.
    """
    config = config or LogConfig()
    logger = logging.getLogger(name)

    if logger.handlers:          # already configured on a previous import
        return logger

    logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    fmt = logging.Formatter(_FORMAT, datefmt=_DATEFMT)

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    if config.log_dir:
        Path(config.log_dir).mkdir(parents=True, exist_ok=True)
        log_file = os.path.join(
            config.log_dir, f"roi_engine_{datetime.now().strftime('%Y%m%d')}.log"
        )
        fh = logging.FileHandler(log_file)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    return logger

"""Logging helpers.

Library modules log through `logging.getLogger(__name__)`; entry points call
`get_logger` once so the root handler exists before the first stage runs.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s - %(message)s"
LOG_LEVEL_ENV = "FLEET_DEPLOYER_LOG_LEVEL"

# paramiko's transport chatter drowns out stage progress
_QUIET_LOGGERS = ("paramiko", "paramiko.transport")

_ROOT_CONFIGURED = False


def get_logger(name: Optional[str] = None) -> logging.Logger:
    global _ROOT_CONFIGURED
    if not _ROOT_CONFIGURED:
        level_name = os.getenv(LOG_LEVEL_ENV, "INFO").upper()
        logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)
        for noisy in _QUIET_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)
        _ROOT_CONFIGURED = True
    return logging.getLogger(name)


def set_verbose(verbose: bool) -> None:
    """Switch the root logger to DEBUG; paramiko stays quiet unless asked for."""
    get_logger()
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

"""
Logging Setup

One stream handler on the root logger; every module logs through
logging.getLogger(__name__).
"""

import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_HANDLER_NAME = "proposal_engine"


def configure_logging(level: Optional[str] = None) -> None:
    """Install the engine's handler once and set the root level."""
    from proposal_engine.settings import settings

    root = logging.getLogger()
    root.setLevel((level or settings.LOG_LEVEL).upper())

    if any(h.get_name() == _HANDLER_NAME for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    # SQL echo is controlled by DEBUG on the engine itself
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

"""Root logging setup shared by the API server and the CLI."""

import logging
from typing import Optional

from configs.settings import settings


_LOGGING_CONFIGURED = False

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Install a single stream handler on the root logger.

    Safe to call more than once; only the first call installs the handler,
    later calls just adjust the level.
    """
    global _LOGGING_CONFIGURED

    resolved = (level or settings.log_level).upper()
    root = logging.getLogger()
    root.setLevel(resolved)

    if _LOGGING_CONFIGURED:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    # httpx logs every request at INFO; keep it quieter than our own output.
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _LOGGING_CONFIGURED = True

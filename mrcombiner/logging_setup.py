"""Unified logging configuration (console and optional file).

Every module logs through ``logging.getLogger(__name__)``; this module
only decides where those records go.  ``configure_logging`` is safe to
call multiple times (uvicorn's factory reload, tests, CLI): handlers it
installed earlier are replaced rather than duplicated.
"""

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_HANDLER_TAG = "_mrcombiner_handler"


def configure_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    console: bool = True,
) -> None:
    """Attach the combiner's handlers to the root logger."""
    root = logging.getLogger()
    for h in list(root.handlers):
        if getattr(h, _HANDLER_TAG, False):
            root.removeHandler(h)
            h.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    for h in handlers:
        h.setFormatter(formatter)
        setattr(h, _HANDLER_TAG, True)
        root.addHandler(h)

    root.setLevel(level.upper())
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

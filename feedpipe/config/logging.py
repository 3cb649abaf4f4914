from __future__ import annotations

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

# third-party loggers that drown out pipeline output at INFO
QUIET_LOGGERS: dict[str, int] = {
    "googleapiclient": logging.WARNING,
    "googleapiclient.discovery_cache": logging.ERROR,
    "google_genai": logging.WARNING,
    "httpx": logging.WARNING,
    "urllib3": logging.WARNING,
    "werkzeug": logging.WARNING,
}


def resolve_level(level: int | str | None) -> int:
    """Accept ``logging.INFO``, ``"debug"`` or ``None`` (``FEEDPIPE_LOG_LEVEL``
    or INFO)."""
    if level is None:
        level = os.getenv("FEEDPIPE_LOG_LEVEL", "INFO")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    level: int | str | None = None,
    log_file: str | None = "feedpipe.log",
) -> logging.Logger:
    root = logging.getLogger()
    root.setLevel(resolve_level(level))

    # configured already (second CLI call in one process, or a test runner)
    if root.handlers:
        return root

    formatter = logging.Formatter(LOG_FORMAT)
    handlers: list[logging.Handler] = [
        logging.StreamHandler(sys.stderr if sys.platform == "win32" else sys.stdout)
    ]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    return root

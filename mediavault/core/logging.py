from __future__ import annotations

import logging

from mediavault.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: int | None = None) -> None:
    if level is None:
        level = logging.DEBUG if settings.app_env == "dev" else logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    if not any(getattr(h, "_mediavault", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._mediavault = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    # boto and the SQL echo are chatty at DEBUG.
    logging.getLogger("botocore").setLevel(max(level, logging.INFO))
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

import logging

from jobtracker import config

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_configured = False


def configure_logging(level: str = None) -> None:
    """Attach a single stream handler to the root logger (idempotent)."""
    global _configured

    level_name = (level or config.LOG_LEVEL).upper()
    resolved = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    if not _configured:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(handler)
        _configured = True
    root.setLevel(resolved)

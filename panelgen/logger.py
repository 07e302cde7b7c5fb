# panelgen/logger.py
import logging
import sys
from typing import Optional
from panelgen.config import config

_DEFAULT_FMT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# server loggers follow LOG_LEVEL exactly
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "gunicorn.error", "gunicorn.access")

# client libraries log every request at INFO; job polling turns that into noise
_CHATTY_LOGGERS = ("httpx", "httpcore", "openai", "google.auth", "urllib3")

_configured = False

def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Configure logging once from LOG_LEVEL / LOG_FORMAT; later calls are no-ops."""
    global _configured
    if _configured:
        return

    level_value = getattr(logging, (level or config.log_level).upper(), logging.INFO)
    formatter = logging.Formatter(fmt or config.log_format or _DEFAULT_FMT)

    root = logging.getLogger()
    root.setLevel(level_value)
    if root.handlers:
        # gunicorn/pytest installed handlers already; only align them
        for h in root.handlers:
            h.setLevel(level_value)
            if not h.formatter:
                h.setFormatter(formatter)
    else:
        h = logging.StreamHandler(sys.stdout)
        h.setLevel(level_value)
        h.setFormatter(formatter)
        root.addHandler(h)

    for name in _SERVER_LOGGERS:
        logging.getLogger(name).setLevel(level_value)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(level_value, logging.WARNING))

    _configured = True

def get_logger(name: Optional[str] = None) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name or "panelgen")

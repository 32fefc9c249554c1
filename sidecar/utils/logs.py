import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_HANDLER_FLAG = "_sidecar_file_handler"


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """Configure the ``sidecar`` logger hierarchy.

    File output goes through a rotating handler (installed once per target
    path); console handlers are kept at WARNING or above so interactive
    sessions stay readable.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger("sidecar")
    logger.setLevel(level)

    if log_file is not None:
        log_file = Path(log_file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)

        existing = None
        for handler in list(logger.handlers):
            if getattr(handler, _HANDLER_FLAG, False):
                if Path(getattr(handler, "baseFilename", "")) == log_file.resolve():
                    existing = handler
                else:
                    logger.removeHandler(handler)
                    handler.close()

        if existing is None:
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=5 * 1024 * 1024,
                backupCount=3,
                encoding="utf-8",
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            setattr(file_handler, _HANDLER_FLAG, True)
            logger.addHandler(file_handler)

    for handler in logging.getLogger().handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
            handler.setLevel(max(handler.level, logging.WARNING))

    return logger

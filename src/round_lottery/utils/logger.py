"""Logging setup for the round lottery.

``get_logger`` installs a console handler on the root logger the first time
any module asks for a logger, at the level named by ``LOG_LEVEL``. Once the
application config is loaded, ``configure_logging`` applies its ``app``
section (``log_level``, ``log_file``); ``APP_LOG_LEVEL`` / ``APP_LOG_FILE``
reach it through the usual env overrides.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_console: Optional[logging.Handler] = None
_file_handler: Optional[logging.Handler] = None


def _level(name: Any) -> int:
    return getattr(logging, str(name).upper(), logging.INFO)


def _ensure_console() -> None:
    global _console
    if _console is not None:
        return

    root = logging.getLogger()
    root.setLevel(_level(os.getenv('LOG_LEVEL', 'INFO')))
    _console = logging.StreamHandler()
    _console.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(_console)

    if os.getenv('LOG_FILE'):
        _attach_file(os.environ['LOG_FILE'])


def _attach_file(path: str) -> Optional[logging.Handler]:
    global _file_handler
    root = logging.getLogger()
    if _file_handler is not None:
        root.removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None

    try:
        log_path = Path(path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, encoding='utf-8')
    except OSError:
        root.exception('Failed to create file log handler for %s; continuing with console only', path)
        return None

    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    _file_handler = handler
    return handler


def configure_logging(config: Dict[str, Any]) -> Optional[logging.Handler]:
    """Apply ``app.log_level`` and ``app.log_file``. Returns the file handler, if one was opened."""
    _ensure_console()
    app_cfg = config.get('app', {})
    if app_cfg.get('log_level'):
        logging.getLogger().setLevel(_level(app_cfg['log_level']))
    if app_cfg.get('log_file'):
        return _attach_file(str(app_cfg['log_file']))
    return None


def get_logger(name: Optional[str] = None) -> logging.Logger:
    _ensure_console()
    return logging.getLogger(name)

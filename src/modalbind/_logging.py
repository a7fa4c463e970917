"""Logging setup shared by the compiler and the command line."""

from __future__ import annotations

import logging
import os
from pathlib import Path

_HANDLER_ATTR = "_modalbind_handler"
_FORMAT = "ts=%(asctime)s level=%(levelname)s logger=%(name)s msg=%(message)s"
_VERBOSITY_LEVELS = (logging.WARNING, logging.INFO, logging.DEBUG)


def _resolve_level(level: int | None, verbosity: int) -> int:
    if level is not None:
        return level
    if verbosity > 0:
        return _VERBOSITY_LEVELS[min(verbosity, len(_VERBOSITY_LEVELS) - 1)]
    env_level = os.environ.get("MODALBIND_LOG_LEVEL", "").strip().upper()
    resolved = getattr(logging, env_level, None) if env_level else None
    if not isinstance(resolved, int):
        return logging.WARNING
    return resolved


def _tagged_handler(root: logging.Logger, tag: str) -> logging.Handler | None:
    for handler in root.handlers:
        if getattr(handler, _HANDLER_ATTR, None) == tag:
            return handler
    return None


def _install(root: logging.Logger, tag: str, handler: logging.Handler) -> logging.Handler:
    previous = _tagged_handler(root, tag)
    if previous is not None:
        root.removeHandler(previous)
        previous.close()
    setattr(handler, _HANDLER_ATTR, tag)
    handler.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(handler)
    return handler


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the ``modalbind`` namespace."""
    return logging.getLogger(f"modalbind.{name}")


def setup_logging(*, level: int | None = None, verbosity: int = 0) -> None:
    """Configure the ``modalbind`` logger hierarchy.

    The stream level comes from *level*, then from *verbosity* (``-v`` counts on
    the command line), then from ``MODALBIND_LOG_LEVEL``. When
    ``MODALBIND_LOG_FILE`` is set, compile events are also written to that file
    at INFO or below. Calling this repeatedly replaces earlier handlers.
    """
    stream_level = _resolve_level(level, verbosity)
    root = logging.getLogger("modalbind")

    stream = _install(root, "stream", logging.StreamHandler())
    stream.setLevel(stream_level)

    effective = stream_level
    file_raw = os.environ.get("MODALBIND_LOG_FILE", "").strip()
    if file_raw:
        file_path = Path(file_raw).expanduser().resolve()
        file_path.parent.mkdir(parents=True, exist_ok=True)
        existing = _tagged_handler(root, "file")
        if (
            isinstance(existing, logging.FileHandler)
            and Path(existing.baseFilename).resolve() == file_path
        ):
            file_handler = existing
        else:
            file_handler = _install(
                root, "file", logging.FileHandler(file_path, encoding="utf-8")
            )
        file_handler.setLevel(min(stream_level, logging.INFO))
        effective = min(effective, logging.INFO)
    else:
        stale = _tagged_handler(root, "file")
        if stale is not None:
            root.removeHandler(stale)
            stale.close()

    root.setLevel(effective)

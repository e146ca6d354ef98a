from __future__ import annotations

import glob
import json
import logging
import os
import re
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from .config import ProxyConfig
from .credentials import mask_api_key

logger = logging.getLogger(__name__)


class JsonlLogger:
    """Append-only request log, one JSON object per line.

    Logging must never fail a request, so filesystem errors are reported to
    the module logger and otherwise ignored.
    """

    def __init__(
        self, path: str, max_bytes: int = 25_000_000, retention_days: int = 30
    ):
        self.path = path
        self.max_bytes = max_bytes
        self.retention_days = retention_days
        # Avoid mkdir("") when only a filename is provided.
        log_dir = os.path.dirname(path)
        if log_dir:
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError as exc:
                logger.warning("Cannot create log directory %s: %s", log_dir, exc)

    def _prune_rotated(self):
        if self.retention_days <= 0:
            return
        cutoff = time.time() - self.retention_days * 86400
        for rotated in glob.glob(glob.escape(self.path) + ".*"):
            try:
                if os.path.getmtime(rotated) < cutoff:
                    os.remove(rotated)
            except OSError:
                continue

    def _rotate_if_needed(self):
        try:
            if (
                os.path.exists(self.path)
                and os.path.getsize(self.path) > self.max_bytes
            ):
                ts = time.strftime("%Y%m%d-%H%M%S")
                rotated = f"{self.path}.{ts}"
                os.rename(self.path, rotated)
                self._prune_rotated()
        except OSError as exc:
            logger.warning("Log rotation failed for %s: %s", self.path, exc)

    def log(self, record: Dict[str, Any]):
        self._rotate_if_needed()
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
        except OSError as exc:
            logger.warning("Cannot write request log %s: %s", self.path, exc)

    def record_request(
        self,
        *,
        path: str,
        status: int,
        started: float,
        model: Optional[str] = None,
        stream: bool = False,
        error: Optional[str] = None,
        **extra: Any,
    ):
        record: Dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime()),
            "path": path,
            "status": status,
            "duration_ms": int((time.monotonic() - started) * 1000),
            "stream": stream,
        }
        if model:
            record["model"] = model
        if error:
            record["error"] = error
        record.update(extra)
        self.log(record)


# Upstream keys can reach log messages through debug dumps and httpx errors.
_UPSTREAM_KEY = re.compile(r"sk-or-[A-Za-z0-9_-]+")
_MANAGED_HANDLER_FLAG = "_routerbridge_managed_handler"
_CHATTY_LOGGERS = ("httpx", "httpcore")


class RedactKeysFilter(logging.Filter):
    """Replace upstream API keys in a record's message with their masked form."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = _UPSTREAM_KEY.sub(lambda m: mask_api_key(m.group(0)), message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def service_log_path(cfg: ProxyConfig) -> Path:
    """The process log lives beside the JSONL request log."""
    return Path(cfg.log_path).expanduser().with_suffix(".log")


def _remove_managed_handlers(root: logging.Logger) -> None:
    for handler in list(root.handlers):
        if getattr(handler, _MANAGED_HANDLER_FLAG, False):
            root.removeHandler(handler)
            handler.close()


def configure_logging(cfg: ProxyConfig, *, include_console: bool = True) -> Path:
    """Route process logging to a rotating file derived from ``cfg``.

    ``cfg.debug`` selects DEBUG over INFO and lets httpx report each upstream
    request; otherwise those loggers stay at WARNING. Calling it again replaces
    the handlers installed by the previous call.
    """

    level = logging.DEBUG if cfg.debug else logging.INFO
    log_path = service_log_path(cfg)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    _remove_managed_handlers(root)

    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handlers: list[logging.Handler] = [
        RotatingFileHandler(
            log_path,
            maxBytes=cfg.max_log_bytes,
            backupCount=3,
            encoding="utf-8",
        )
    ]
    if include_console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(RedactKeysFilter())
        setattr(handler, _MANAGED_HANDLER_FLAG, True)
        root.addHandler(handler)

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET if cfg.debug else logging.WARNING)
    logging.captureWarnings(True)
    return log_path

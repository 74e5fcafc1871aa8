# log_setup.py ─────────────────────────────────────────────────────────
"""Logging for the controller: stdout + rotating file, plain or JSON, and an
e‑mail alert on every CRITICAL record."""
from __future__ import annotations

import json
import logging
import sys
import threading
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .emailing import Notifier

DUP_WINDOW = 900 * 8            # 2 hour window between duplicate alerts
LOG_FILE = "automate.log"

_PLAIN_FMT = "%(asctime)s | %(levelname)8s | %(name)s | %(message)s"
_DATE_FMT = "%Y-%m-%d %H:%M:%S"


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload = {
            "time": self.formatTime(record, _DATE_FMT),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _build_formatter(json_fmt: bool) -> logging.Formatter:
    if json_fmt:
        return _JsonFormatter()
    return logging.Formatter(_PLAIN_FMT, datefmt=_DATE_FMT)


class EmailCritical(logging.Handler):
    """Mail every CRITICAL record, at most once per *dup_window* per message."""

    def __init__(self, notifier: Notifier, subject_prefix: str = "",
                 dup_window: float = DUP_WINDOW, clock=time.time) -> None:
        super().__init__(level=logging.CRITICAL)
        self.notifier = notifier
        self.subject_prefix = subject_prefix
        self.dup_window = dup_window
        self._clock = clock
        self._last: dict[str, float] = {}
        self._lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        if record.levelno < logging.CRITICAL or not self.notifier.enabled:
            return
        msg = record.getMessage()
        now = self._clock()
        with self._lock:
            if now - self._last.get(msg, float("-inf")) < self.dup_window:
                return
            self._last[msg] = now
        subject = f"{self.subject_prefix}{msg}" if self.subject_prefix else msg
        body = "Please review the miner for details and report this issue.\r\n\r\n" + msg
        try:
            self.notifier.notify(subject, body)
        except Exception:  # noqa: BLE001
            self.handleError(record)       # never crash on failed alert


def configure_logging(
    *,
    level: int | str = logging.INFO,
    log_dir: str | Path | None = "logs",
    json_format: bool = False,
    notifier: Notifier | None = None,
    alert_prefix: str = "",
) -> logging.Logger:
    """Init the ``automate`` logger and return it.  *Idempotent* – safe to call many times."""
    root = logging.getLogger("automate")
    if getattr(root, "_automate_init", False):  # already configured
        return root

    root.setLevel(level)
    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(_build_formatter(json_format))
    root.addHandler(stdout_handler)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / LOG_FILE,
            maxBytes=10_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(_build_formatter(json_format))
        root.addHandler(file_handler)

    if notifier is not None and notifier.enabled:
        root.addHandler(EmailCritical(notifier, subject_prefix=alert_prefix))

    root.propagate = False
    root._automate_init = True  # type: ignore[attr-defined]
    return root


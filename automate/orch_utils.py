"""automate/orch_utils.py – common plumbing for the miner controller
==================================================================
Small helpers that keep config handling and fault tolerance out of the
business modules.

-------------------------------------------------------------------------------
TL;DR of what’s inside
-------------------------------------------------------------------------------
* **Config**  – YAML loader with env‑var overrides (`AUTOMATE__EMAIL__PORT` ⇒
  `email.port`) and an optional `.env` next to the YAML file.
* **Execution wrappers** – `retry_until`, a bounded fixed‑backoff retry loop.

-------------------------------------------------------------------------------
"""
from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml
from dotenv import load_dotenv

ENV_PREFIX = "AUTOMATE__"

log = logging.getLogger("automate.orch_utils")


# ---------------------------------------------------------------------------
# Config helpers
# ---------------------------------------------------------------------------

def _env_to_dict(prefix: str | None = None) -> dict[str, Any]:
    """Translate ENV_VARS into a nested dict.  E.g. FOO__BAR=1 → {foo: {bar: "1"}}

    Keys keep their case here; :func:`_fold_keys` lines them up with the
    camelCase YAML keys afterwards.
    """
    out: dict[str, Any] = {}
    for k, v in os.environ.items():
        if prefix and not k.startswith(prefix):
            continue
        key = k[len(prefix):] if prefix else k
        parts = [p for p in key.split("__") if p]
        if not parts:
            continue
        cur = out
        for p in parts[:-1]:
            cur = cur.setdefault(p, {})  # type: ignore[assignment]
        cur[parts[-1]] = v
    return out


def _fold_keys(patch: dict[str, Any], base: Mapping[str, Any]) -> dict[str, Any]:
    """Map env keys onto existing YAML keys case‑insensitively."""
    known = {k.lower(): k for k in base}
    out: dict[str, Any] = {}
    for k, v in patch.items():
        target = known.get(k.lower(), k)
        sub = base.get(target)
        if isinstance(v, dict):
            v = _fold_keys(v, sub if isinstance(sub, Mapping) else {})
        out[target] = v
    return out


def _merge(a: dict[str, Any], b: dict[str, Any]) -> dict[str, Any]:  # noqa: D401
    """Deep merge b into a, returning *new* dict."""
    out = json.loads(json.dumps(a))  # simple deepcopy
    for k, v in b.items():
        if isinstance(v, Mapping) and isinstance(out.get(k), Mapping):
            out[k] = _merge(out[k], v)  # type: ignore[arg-type]
        else:
            out[k] = v
    return out


def load_config(
    cfg_path: str | Path = "config/automate.yaml",
    *,
    env_prefix: str | None = ENV_PREFIX,
) -> dict[str, Any]:
    """Load YAML config and merge any environment overrides.

    A ``.env`` file sitting beside the YAML file is loaded first (without
    clobbering variables already set in the real environment).
    Raises :class:`FileNotFoundError` when *cfg_path* does not exist.
    """
    cfg_path = Path(cfg_path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Missing config file at {cfg_path}")
    load_dotenv(dotenv_path=cfg_path.parent / ".env", override=False)
    base = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    if not isinstance(base, dict):
        raise ValueError(f"{cfg_path} must contain a mapping at top level")
    env_patch = _fold_keys(_env_to_dict(env_prefix), base)
    return _merge(base, env_patch)


# ---------------------------------------------------------------------------
# Execution helpers
# ---------------------------------------------------------------------------

class RetryExhausted(RuntimeError):
    """Raised by :func:`retry_until` once every attempt has been spent."""

    def __init__(self, what: str, attempts: int) -> None:
        super().__init__(f"{what}: still failing after {attempts} attempts")
        self.what = what
        self.attempts = attempts


def retry_until(
    done: Callable[[], bool],
    action: Callable[[], Any],
    *,
    attempts: int,
    delay: float,
    what: str = "operation",
    sleep: Callable[[float], Any] = time.sleep,
    logger: logging.Logger | None = None,
) -> int:
    """Run *action* then sleep *delay* seconds until *done()* holds.

    *done* is checked before every attempt and once more after the last one.
    Returns the number of attempts that were needed (``0`` when *done* was
    already true).  Raises :class:`RetryExhausted` when *action* has run
    *attempts* times and *done* is still false.
    """
    if attempts < 1:
        raise ValueError("attempts must be ≥ 1")
    _log = logger or log
    for attempt in range(attempts):
        if done():
            return attempt
        _log.warning("%s not done yet; attempt %d/%d", what, attempt + 1, attempts)
        action()
        sleep(delay)
    if done():
        return attempts
    raise RetryExhausted(what, attempts)


__all__ = [
    "ENV_PREFIX",
    "load_config",
    "RetryExhausted",
    "retry_until",
]

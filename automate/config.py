"""
 automate/config.py
 ──────────────────
 Typed view over config/automate.yaml (plus AUTOMATE__* env overrides).

 • `load_settings(path)` → `Settings`
 • Missing / nonsensical values raise `ConfigError` – the controller
   cannot do anything useful without them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml
from sqlalchemy.engine import URL

from . import orch_utils as ou
from .errors import ConfigError

DEFAULT_CONFIG_PATH = Path("config") / "automate.yaml"


def _get(cfg: Mapping[str, Any], key: str, default: Any = None) -> Any:
    """Case-insensitive lookup; env overrides may arrive upper-cased."""
    if key in cfg:
        return cfg[key]
    lowered = key.lower()
    for k, v in cfg.items():
        if str(k).lower() == lowered:
            return v
    return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _as_int(key: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"`{key}` must be an integer, got {value!r}") from None


@dataclass(frozen=True)
class DatabaseSettings:
    url: str | None = None
    host: str = "localhost"
    port: int = 5432
    database: str = ""
    user: str = ""
    password: str = ""
    timezone: str | None = None

    def sqlalchemy_url(self) -> str | URL:
        if self.url:
            return self.url
        return URL.create(
            "postgresql+psycopg2",
            username=self.user or None,
            password=self.password or None,
            host=self.host,
            port=self.port,
            database=self.database,
        )

    def connect_args(self) -> dict[str, Any]:
        if self.timezone and not self.url:
            return {"options": f"-c timezone={self.timezone}"}
        return {}


@dataclass(frozen=True)
class EmailSettings:
    server: str = ""
    port: int = 587
    user: str = ""
    password: str = ""
    sender: str = ""
    to: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.server)


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"
    dir: str | None = "logs"
    json: bool = False


@dataclass(frozen=True)
class Settings:
    miner_name: str
    wallet: str
    optimization_check_time: int
    pool_password: str = "x"
    use_estimates: bool = True
    reboot_on_failure: bool = False
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    email: EmailSettings = field(default_factory=EmailSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "Settings":
        for key in ("minerName", "wallet", "optimizationCheckTime"):
            if _get(cfg, key) in (None, ""):
                raise ConfigError(f"Missing required config key `{key}`")

        period = _as_int("optimizationCheckTime", _get(cfg, "optimizationCheckTime"))
        if period <= 0:
            raise ConfigError("`optimizationCheckTime` must be a positive number of seconds")

        db_cfg = _get(cfg, "database") or {}
        if not (_get(db_cfg, "url") or _get(db_cfg, "database")):
            raise ConfigError("`database` needs either `url` or `database`")
        database = DatabaseSettings(
            url=_get(db_cfg, "url"),
            host=str(_get(db_cfg, "host", "localhost")),
            port=_as_int("database.port", _get(db_cfg, "port", 5432)),
            database=str(_get(db_cfg, "database", "")),
            user=str(_get(db_cfg, "user", "")),
            password=str(_get(db_cfg, "password", "")),
            timezone=_get(db_cfg, "timezone"),
        )

        mail_cfg = _get(cfg, "email") or {}
        email = EmailSettings(
            server=str(_get(mail_cfg, "server", "") or ""),
            port=_as_int("email.port", _get(mail_cfg, "port", 587)),
            user=str(_get(mail_cfg, "user", "") or ""),
            password=str(_get(mail_cfg, "password", "") or ""),
            sender=str(_get(mail_cfg, "from", "") or ""),
            to=str(_get(mail_cfg, "to", "") or ""),
        )

        log_cfg = _get(cfg, "logging") or {}
        logging_settings = LoggingSettings(
            level=str(_get(log_cfg, "level", "INFO")).upper(),
            dir=_get(log_cfg, "dir", "logs"),
            json=_as_bool(_get(log_cfg, "json", False)),
        )

        return cls(
            miner_name=str(_get(cfg, "minerName")),
            wallet=str(_get(cfg, "wallet")),
            optimization_check_time=period,
            pool_password=str(_get(cfg, "poolPassword", "x")),
            use_estimates=_as_bool(_get(cfg, "useEstimates", 1)),
            reboot_on_failure=_as_bool(_get(cfg, "rebootOnFailure", 0)),
            database=database,
            email=email,
            logging=logging_settings,
        )


def load_settings(path: str | Path = DEFAULT_CONFIG_PATH) -> Settings:
    try:
        raw = ou.load_config(path)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as exc:
        raise ConfigError(str(exc)) from exc
    return Settings.from_mapping(raw)

#store.py
"""
Stats Store – the tables shared with the statistics collectors.

The collectors own the schema; this module only maps it and exposes
transaction scopes:

* ``Store.transaction()`` – commit on success, roll back on any exception,
  commit failures surface as :class:`~automate.errors.CommitError`.
* ``Store.read()``        – read‑only scope, nothing is ever committed.
"""
from __future__ import annotations

import contextlib
import logging
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .errors import CommitError, DeviceNotFound

__all__ = [
    "Base",
    "Miner",
    "Algorithm",
    "MinerSoftware",
    "MinerMinerSoftware",
    "MinerSoftwareAlgo",
    "MinerStat",
    "Pool",
    "PoolStat",
    "CoinPrice",
    "Store",
    "pool_url",
]

_LOG = logging.getLogger("automate.store")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


###############################################################################
# Schema
###############################################################################


class Base(DeclarativeBase):
    pass


class Miner(Base):
    """The managed device."""

    __tablename__ = "miners"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True)
    miner_software_algo_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("miner_software_algos.id"), nullable=True
    )
    send_email: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True, default=True)
    last_check_in: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    offline_notice_sent: Mapped[bool] = mapped_column(Boolean, default=False)


class Algorithm(Base):
    __tablename__ = "algorithms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255))


class MinerSoftware(Base):
    """Mining executable plus the flag names it expects."""

    __tablename__ = "miner_softwares"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    algo_param: Mapped[str] = mapped_column(String(64), default="")
    pool_param: Mapped[str] = mapped_column(String(64), default="")
    wallet_param: Mapped[str] = mapped_column(String(64), default="")
    password_param: Mapped[str] = mapped_column(String(64), default="")
    other_params: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)


class MinerMinerSoftware(Base):
    """Where a given miner keeps a given software on disk."""

    __tablename__ = "miner_miner_softwares"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    miner_id: Mapped[int] = mapped_column(ForeignKey("miners.id"))
    miner_software_id: Mapped[int] = mapped_column(ForeignKey("miner_softwares.id"))
    file_path: Mapped[str] = mapped_column(String(1024))


class MinerSoftwareAlgo(Base):
    """A (software, algorithm) combination.  ``name`` is the software's label for the algo."""

    __tablename__ = "miner_software_algos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    miner_software_id: Mapped[int] = mapped_column(ForeignKey("miner_softwares.id"))
    algorithm_id: Mapped[int] = mapped_column(ForeignKey("algorithms.id"))
    extra_params: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    do_not_use: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)


class MinerStat(Base):
    """Throughput sample, appended by the miner statistics collector."""

    __tablename__ = "miner_stats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    miner_id: Mapped[int] = mapped_column(ForeignKey("miners.id"), index=True)
    miner_software_id: Mapped[int] = mapped_column(ForeignKey("miner_softwares.id"))
    algorithm_id: Mapped[int] = mapped_column(ForeignKey("algorithms.id"))
    work_per_second: Mapped[float] = mapped_column(Float)
    mh_factor: Mapped[float] = mapped_column(Float, default=1.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Pool(Base):
    """One pool per algorithm."""

    __tablename__ = "pools"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    algorithm_id: Mapped[int] = mapped_column(ForeignKey("algorithms.id"))
    url: Mapped[str] = mapped_column(String(255))
    port: Mapped[int] = mapped_column(Integer)
    mh_factor: Mapped[float] = mapped_column(Float, default=1.0)


class CoinPrice(Base):
    __tablename__ = "coin_prices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    price: Mapped[float] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class PoolStat(Base):
    """Market snapshot for a pool, appended by the pool statistics collector."""

    __tablename__ = "pool_stats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    pool_id: Mapped[int] = mapped_column(ForeignKey("pools.id"), index=True)
    coin_price_id: Mapped[int] = mapped_column(ForeignKey("coin_prices.id"))
    profit_estimate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    profit_actual24_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


###############################################################################
# Pool endpoint
###############################################################################


def pool_url(session: Session, algorithm_id: int) -> str:
    """``stratum+tcp://<url>:<port>`` for the pool serving *algorithm_id*.

    Returns an empty string when no pool is registered, like the collectors'
    own helper; the worker will then fail loudly on its own.
    """
    pool = session.scalars(
        select(Pool).where(Pool.algorithm_id == algorithm_id).order_by(Pool.id)
    ).first()
    if pool is None:
        _LOG.warning("No pool registered for algorithm %s", algorithm_id)
        return ""
    return f"stratum+tcp://{pool.url}:{pool.port}"


###############################################################################
# Store
###############################################################################


class Store:
    """Explicit handle on the shared database."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: Any, **engine_kw: Any) -> "Store":
        return cls(create_engine(url, pool_pre_ping=True, **engine_kw))

    @contextlib.contextmanager
    def transaction(self) -> Iterator[Session]:
        """Read/write scope: all‑or‑nothing."""
        session = self._sessions()
        try:
            yield session
            try:
                session.commit()
            except SQLAlchemyError as exc:
                raise CommitError(f"Issue committing changes: {exc}") from exc
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    @contextlib.contextmanager
    def read(self) -> Iterator[Session]:
        session = self._sessions()
        try:
            yield session
        finally:
            session.close()

    # ------------------------------------------------------------------ #
    # Device record helpers
    # ------------------------------------------------------------------ #
    def find_device(self, name: str) -> int:
        with self.read() as s:
            device_id = s.scalar(select(Miner.id).where(Miner.name == name))
        if device_id is None:
            raise DeviceNotFound(name)
        return device_id

    def active_combination(self, device_id: int) -> int | None:
        with self.read() as s:
            return s.scalar(select(Miner.miner_software_algo_id).where(Miner.id == device_id))

    def check_in(self, device_id: int, when: datetime | None = None) -> datetime:
        """Heartbeat: stamp ``last_check_in`` on the device."""
        when = when or _utcnow()
        with self.transaction() as s:
            miner = s.get(Miner, device_id)
            if miner is None:
                raise DeviceNotFound(str(device_id))
            miner.last_check_in = when
        return when

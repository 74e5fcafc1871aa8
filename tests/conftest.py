from __future__ import annotations

from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from automate.config import EmailSettings, Settings
from automate.emailing import Notifier
from automate.store import (
    Algorithm,
    Base,
    CoinPrice,
    Miner,
    MinerMinerSoftware,
    MinerSoftware,
    MinerSoftwareAlgo,
    MinerStat,
    Pool,
    PoolStat,
    Store,
)


@pytest.fixture()
def store() -> Store:
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield Store(engine)
    engine.dispose()


@pytest.fixture()
def world(store: Store) -> SimpleNamespace:
    """One miner, one software, two combinations.

    Estimate mode: A scores 1.0 × 10 × 12   = 120, B scores 1.0 × 10 × 9.5 = 95.
    Actual mode:   A scores 0.001 × 50 000 × 12 = 600, B 0.001 × 100 000 × 9.5 = 950.
    """
    with store.transaction() as s:
        miner = Miner(id=1, name="rig", send_email=True, offline_notice_sent=True)
        other = Miner(id=2, name="other-rig")
        x17 = Algorithm(id=1, name="x17")
        kawpow = Algorithm(id=2, name="kawpow")
        worker = MinerSoftware(
            id=1,
            name="worker",
            algo_param="--algo",
            pool_param="--pool",
            wallet_param="--wallet",
            password_param="--pass",
            other_params="",
        )
        s.add_all([miner, other, x17, kawpow, worker])
        s.flush()
        s.add(MinerMinerSoftware(miner_id=1, miner_software_id=1, file_path="/bin/worker"))
        s.add_all([
            MinerSoftwareAlgo(id=1, name="x17", miner_software_id=1, algorithm_id=1),
            MinerSoftwareAlgo(id=2, name="kawpow", miner_software_id=1, algorithm_id=2),
        ])
        s.add_all([
            Pool(id=1, name="x17-pool", algorithm_id=1, url="p", port=3333, mh_factor=1.0),
            Pool(id=2, name="kawpow-pool", algorithm_id=2, url="k", port=4444, mh_factor=1.0),
        ])
        s.add(CoinPrice(id=1, price=1.0))
        s.flush()
        s.add_all([
            PoolStat(pool_id=1, coin_price_id=1, profit_estimate=10.0, profit_actual24_hours=50_000.0),
            PoolStat(pool_id=2, coin_price_id=1, profit_estimate=10.0, profit_actual24_hours=100_000.0),
        ])
        s.add_all([
            MinerStat(miner_id=1, miner_software_id=1, algorithm_id=1, work_per_second=10.0, mh_factor=1.0),
            MinerStat(miner_id=1, miner_software_id=1, algorithm_id=1, work_per_second=14.0, mh_factor=1.0),
            MinerStat(miner_id=1, miner_software_id=1, algorithm_id=2, work_per_second=9.0, mh_factor=1.0),
            MinerStat(miner_id=1, miner_software_id=1, algorithm_id=2, work_per_second=10.0, mh_factor=1.0),
            # Another rig's numbers must never leak into ours.
            MinerStat(miner_id=2, miner_software_id=1, algorithm_id=2, work_per_second=1e9, mh_factor=1.0),
        ])
    return SimpleNamespace(device_id=1, combo_a=1, combo_b=2)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        miner_name="rig",
        wallet="W",
        optimization_check_time=600,
        pool_password="x",
        use_estimates=True,
    )


class RecordingSender:
    def __init__(self, exc: Exception | None = None) -> None:
        self.sent: list[tuple[str, str]] = []
        self.exc = exc

    def __call__(self, settings, subject, body):
        if self.exc is not None:
            raise self.exc
        self.sent.append((subject, body))


@pytest.fixture()
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture()
def notifier(sender: RecordingSender) -> Notifier:
    return Notifier(EmailSettings(server="smtp.test", to="ops@example.com"), sender=sender)

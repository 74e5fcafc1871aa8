"""
 automate/launch.py
 ──────────────────
 Turns a chosen combination into something the supervisor can start and
 records the switch on the miner row – all inside one transaction.

 Argument order handed to the mining software:

     <software name>
     <algo flag> <algo label>
     <pool flag> <pool endpoint>
     <wallet flag> <wallet>
     <password flag> <pool password>
     <software other params …> <combination extra params …>
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import Settings
from .emailing import Notifier
from .errors import BadCombinationLink, DeviceNotFound, MissingSoftwarePath
from .store import Algorithm, Miner, MinerMinerSoftware, MinerSoftware, MinerSoftwareAlgo, Store, pool_url

_LOG = logging.getLogger("automate.launch")

PoolUrlFn = Callable[[Session, int], str]


@dataclass(frozen=True)
class LaunchSpec:
    """Executable path plus the full argv (``args[0]`` is the display name)."""

    path: str
    args: Tuple[str, ...]

    def __str__(self) -> str:
        return f"{self.path} {' '.join(self.args[1:])}"


def build_args(
    software: MinerSoftware,
    combination: MinerSoftwareAlgo,
    algo_label: str,
    endpoint: str,
    wallet: str,
    pool_password: str,
) -> list[str]:
    args = [
        software.name,
        software.algo_param, algo_label,
        software.pool_param, endpoint,
        software.wallet_param, wallet,
        software.password_param, pool_password,
    ]
    if software.other_params:
        args.extend(software.other_params.split())
    if combination.extra_params:
        args.extend(combination.extra_params.split())
    return args


def change_combination(
    store: Store,
    device_id: int,
    combination_id: int,
    settings: Settings,
    notifier: Notifier | None = None,
    *,
    pool_url_fn: PoolUrlFn = pool_url,
    now: Callable[[], datetime] = datetime.now,
) -> LaunchSpec:
    """Make *combination_id* the miner's active combination and return how to launch it.

    All reads and the miner update happen in one :meth:`Store.transaction`;
    any failure leaves the miner row untouched.

    :raises BadCombinationLink: combination, software or algorithm row missing
    :raises MissingSoftwarePath: the miner has no file path for the software
    :raises CommitError: the update could not be persisted
    """
    with store.transaction() as s:
        combination = s.get(MinerSoftwareAlgo, combination_id)
        if combination is None:
            raise BadCombinationLink(combination_id)
        software = s.get(MinerSoftware, combination.miner_software_id)
        algo = s.get(Algorithm, combination.algorithm_id)
        if software is None or algo is None:
            raise BadCombinationLink(combination_id)

        file_path = s.scalar(
            select(MinerMinerSoftware.file_path).where(
                MinerMinerSoftware.miner_id == device_id,
                MinerMinerSoftware.miner_software_id == software.id,
            )
        )
        if not file_path:
            raise MissingSoftwarePath(software.name)

        # Fresh copy – the e‑mail preference may have changed since start‑up.
        miner = s.get(Miner, device_id, populate_existing=True)
        if miner is None:
            raise DeviceNotFound(str(device_id))

        _LOG.info("Found new optimal software/algorithm...")
        body = (
            f"Software: {software.name}\r\n"
            f"Algo: {algo.name}\r\n"
            f"Changed: {now()}\r\n"
        )
        _LOG.info(body.replace("\r\n", " | ").rstrip(" |"))
        if notifier is not None and notifier.enabled and miner.send_email:
            notifier.notify(f"{settings.miner_name}: New Optimal", body)

        miner.miner_software_algo_id = combination.id
        miner.offline_notice_sent = False

        endpoint = pool_url_fn(s, combination.algorithm_id)
        args = build_args(
            software,
            combination,
            combination.name or algo.name,
            endpoint,
            settings.wallet,
            settings.pool_password,
        )

    return LaunchSpec(path=file_path, args=tuple(args))

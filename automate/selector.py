"""
 automate/selector.py
 ────────────────────
 Picks the most profitable (software, algorithm) combination for one miner.

 • Average work rate per (software, algorithm, mh_factor) over *all* samples
 • Latest sample per (software, algorithm) – anchors which pool applies
 • Latest market snapshot per pool (+ its coin price)
 • Score = price × profit × (sample mh_factor / pool mh_factor) × avg work
   – estimate mode uses ``profit_estimate``
   – actual mode uses ``0.001 × profit_actual24_hours``
 • Exactly one winner, or ``NoViableOptimization``

 Read‑only; safe to call as often as you like.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import NoViableOptimization
from .store import CoinPrice, MinerSoftwareAlgo, MinerStat, Pool, PoolStat, Store

_LOG = logging.getLogger("automate.selector")

ACTUAL_PROFIT_SCALE = 0.001

_TRIPLE = ["miner_software_id", "algorithm_id"]


@dataclass(frozen=True)
class Selection:
    combination_id: int
    software_id: int
    algorithm_id: int
    label: str
    score: float


# ──────────────────────────────────────────────────────────────────────────
# Frame loaders
# ──────────────────────────────────────────────────────────────────────────
def _frame(session: Session, stmt) -> pd.DataFrame:
    result = session.execute(stmt)
    return pd.DataFrame(result.all(), columns=list(result.keys()))


def _load_samples(session: Session, device_id: int) -> pd.DataFrame:
    return _frame(
        session,
        select(
            MinerStat.id,
            MinerStat.miner_software_id,
            MinerStat.algorithm_id,
            MinerStat.work_per_second,
            MinerStat.mh_factor,
        ).where(MinerStat.miner_id == device_id),
    )


def _load_combinations(session: Session) -> pd.DataFrame:
    return _frame(
        session,
        select(
            MinerSoftwareAlgo.id.label("combination_id"),
            MinerSoftwareAlgo.miner_software_id,
            MinerSoftwareAlgo.algorithm_id,
            MinerSoftwareAlgo.name.label("label"),
            MinerSoftwareAlgo.do_not_use,
        ),
    )


def _load_market(session: Session) -> pd.DataFrame:
    """Every pool joined to every one of its snapshots (trimmed to the latest below)."""
    return _frame(
        session,
        select(
            PoolStat.id.label("pool_stat_id"),
            Pool.id.label("pool_id"),
            Pool.algorithm_id,
            Pool.mh_factor.label("pool_mh_factor"),
            PoolStat.profit_estimate,
            PoolStat.profit_actual24_hours,
            CoinPrice.price,
        )
        .join(Pool, Pool.id == PoolStat.pool_id)
        .join(CoinPrice, CoinPrice.id == PoolStat.coin_price_id),
    )


# ──────────────────────────────────────────────────────────────────────────
# Ranking
# ──────────────────────────────────────────────────────────────────────────
def rank_candidates(
    samples: pd.DataFrame,
    combinations: pd.DataFrame,
    market: pd.DataFrame,
    *,
    use_estimates: bool,
) -> pd.DataFrame:
    """Score every eligible candidate row; best first.

    Pure function over the three frames returned by the loaders so the
    ranking can be tested without a database.
    """
    if samples.empty or combinations.empty or market.empty:
        return pd.DataFrame(columns=["combination_id", "score"])

    avg = (
        samples.groupby(_TRIPLE + ["mh_factor"], as_index=False)["work_per_second"]
        .mean()
        .rename(columns={"work_per_second": "average_work"})
    )
    latest = samples.loc[samples.groupby(_TRIPLE)["id"].idxmax(), _TRIPLE]
    latest_market = market.loc[market.groupby("pool_id")["pool_stat_id"].idxmax()]

    rows = (
        latest.merge(combinations, on=_TRIPLE)
        .merge(latest_market, on="algorithm_id")
        .merge(avg, on=_TRIPLE)
    )
    eligible = ~rows["do_not_use"].astype("boolean").fillna(False)
    rows = rows[eligible.astype(bool)].copy()
    if rows.empty:
        return rows.assign(score=pd.Series(dtype=float))

    if use_estimates:
        profit = rows["profit_estimate"].astype(float)
    else:
        profit = ACTUAL_PROFIT_SCALE * rows["profit_actual24_hours"].astype(float)
    rows["score"] = (
        rows["price"].astype(float)
        * profit
        * (rows["mh_factor"].astype(float) / rows["pool_mh_factor"].astype(float))
        * rows["average_work"].astype(float)
    )
    rows = rows[np.isfinite(rows["score"])]
    return rows.sort_values(["score", "combination_id"], ascending=[False, True], kind="mergesort")


def select_best(store: Store, device_id: int, *, use_estimates: bool) -> Selection:
    """Return the single best‑scoring eligible combination for *device_id*.

    :raises NoViableOptimization: nothing scorable (usually: no stats collected yet)
    """
    with store.read() as s:
        samples = _load_samples(s, device_id)
        combinations = _load_combinations(s)
        market = _load_market(s)

    ranked = rank_candidates(samples, combinations, market, use_estimates=use_estimates)
    if ranked.empty:
        raise NoViableOptimization(device_id)

    best = ranked.iloc[0]
    selection = Selection(
        combination_id=int(best["combination_id"]),
        software_id=int(best["miner_software_id"]),
        algorithm_id=int(best["algorithm_id"]),
        label=best["label"] if isinstance(best["label"], str) else "",
        score=float(best["score"]),
    )
    _LOG.info(
        "Best combination for miner %s: #%d (%s) score %.6g [%s]",
        device_id, selection.combination_id, selection.label or "?", selection.score,
        "estimate" if use_estimates else "24h actual",
    )
    return selection

from __future__ import annotations

import pandas as pd
import pytest
from sqlalchemy import delete, update

from automate.errors import NoViableOptimization
from automate.selector import rank_candidates, select_best
from automate.store import MinerSoftwareAlgo, MinerStat, PoolStat


def test_estimate_mode_picks_highest_score(store, world):
    best = select_best(store, world.device_id, use_estimates=True)

    assert best.combination_id == world.combo_a
    assert best.label == "x17"
    assert best.score == pytest.approx(120.0)


def test_actual_mode_scores_on_trailing_profit(store, world):
    best = select_best(store, world.device_id, use_estimates=False)

    assert best.combination_id == world.combo_b
    assert best.score == pytest.approx(950.0)


def test_ineligible_combination_is_never_returned(store, world):
    with store.transaction() as s:
        s.execute(update(MinerSoftwareAlgo).where(MinerSoftwareAlgo.id == world.combo_a).values(do_not_use=True))

    best = select_best(store, world.device_id, use_estimates=True)

    assert best.combination_id == world.combo_b
    assert best.score == pytest.approx(95.0)


def test_explicit_false_flag_is_eligible(store, world):
    with store.transaction() as s:
        s.execute(update(MinerSoftwareAlgo).values(do_not_use=False))

    assert select_best(store, world.device_id, use_estimates=True).combination_id == world.combo_a


def test_end_to_end_until_nothing_is_viable(store, world):
    assert select_best(store, world.device_id, use_estimates=True).combination_id == world.combo_a

    with store.transaction() as s:
        s.execute(update(MinerSoftwareAlgo).where(MinerSoftwareAlgo.id == world.combo_a).values(do_not_use=True))
    assert select_best(store, world.device_id, use_estimates=True).combination_id == world.combo_b

    with store.transaction() as s:
        s.execute(delete(MinerStat).where(MinerStat.miner_id == world.device_id, MinerStat.algorithm_id == 2))
    with pytest.raises(NoViableOptimization):
        select_best(store, world.device_id, use_estimates=True)


def test_no_samples_at_all(store, world):
    with store.transaction() as s:
        s.execute(delete(MinerStat))

    with pytest.raises(NoViableOptimization):
        select_best(store, world.device_id, use_estimates=True)


def test_repeated_selection_is_identical(store, world):
    first = select_best(store, world.device_id, use_estimates=True)
    second = select_best(store, world.device_id, use_estimates=True)

    assert first == second


def test_only_latest_pool_snapshot_counts(store, world):
    with store.transaction() as s:
        s.add(PoolStat(pool_id=1, coin_price_id=1, profit_estimate=1.0, profit_actual24_hours=0.0))

    best = select_best(store, world.device_id, use_estimates=True)

    assert best.combination_id == world.combo_b


def test_unknown_device_has_nothing_to_score(store, world):
    with pytest.raises(NoViableOptimization):
        select_best(store, 99, use_estimates=True)


# ──────────────────────────────────────────────────────────────────────────
# rank_candidates – pure frame logic
# ──────────────────────────────────────────────────────────────────────────
def _frames(**market_overrides):
    samples = pd.DataFrame(
        {
            "id": [1, 2, 3],
            "miner_software_id": [1, 1, 1],
            "algorithm_id": [1, 1, 2],
            "work_per_second": [4.0, 6.0, 100.0],
            "mh_factor": [1000.0, 1000.0, 1.0],
        }
    )
    combinations = pd.DataFrame(
        {
            "combination_id": [10, 20],
            "miner_software_id": [1, 1],
            "algorithm_id": [1, 2],
            "label": ["a", "b"],
            "do_not_use": [None, None],
        }
    )
    market = pd.DataFrame(
        {
            "pool_stat_id": [1, 2],
            "pool_id": [1, 2],
            "algorithm_id": [1, 2],
            "pool_mh_factor": [1.0, 1.0],
            "profit_estimate": [2.0, 2.0],
            "profit_actual24_hours": [None, None],
            "price": [3.0, 3.0],
            **market_overrides,
        }
    )
    return samples, combinations, market


def test_rank_applies_normalisation_factors():
    ranked = rank_candidates(*_frames(), use_estimates=True)

    # a: 3 × 2 × (1000 / 1) × 5 = 30 000 ; b: 3 × 2 × 1 × 100 = 600
    assert list(ranked["combination_id"]) == [10, 20]
    assert ranked["score"].tolist() == pytest.approx([30_000.0, 600.0])


def test_rank_drops_rows_without_profit_figure():
    ranked = rank_candidates(*_frames(), use_estimates=False)

    assert ranked.empty


def test_rank_drops_scores_divided_by_zero_pool_factor():
    samples, combinations, market = _frames(pool_mh_factor=[0.0, 1.0])
    samples["work_per_second"] = [0.0001, 0.0001, 100.0]

    ranked = rank_candidates(samples, combinations, market, use_estimates=True)

    assert list(ranked["combination_id"]) == [20]
    assert ranked["score"].tolist() == pytest.approx([600.0])


def test_rank_breaks_ties_on_lowest_combination_id():
    samples, combinations, market = _frames()
    samples["mh_factor"] = 1.0
    samples["work_per_second"] = [5.0, 5.0, 5.0]

    ranked = rank_candidates(samples, combinations, market, use_estimates=True)

    assert ranked["combination_id"].iloc[0] == 10

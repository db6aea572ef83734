import numpy as np
import pytest

from wealth_manager.allocation import (
    BASE_ALLOCATIONS,
    DEFAULT_EXPECTED_APY,
    generate_allocation_strategy,
    normalize,
    yield_adjustments,
)
from wealth_manager.protocols import YieldSnapshot


def snaps(aave, traderjoe, yieldyak):
    return [YieldSnapshot("aave", aave), YieldSnapshot("traderjoe", traderjoe), YieldSnapshot("yieldyak", yieldyak)]


def test_baseline_without_yields():
    result = generate_allocation_strategy(50)
    assert result.source == "baseline"
    assert result.risk_profile == "Balanced"
    assert result.strategy.allocation.as_dict() == BASE_ALLOCATIONS["Balanced"]
    # (40*5.2 + 40*8.7 + 20*12.4) / 10000
    assert result.strategy.expected_apy == pytest.approx(0.0804)
    assert result.strategy.risk_level == "medium"


def test_partial_yields_keep_base_table_but_use_live_apy():
    result = generate_allocation_strategy(50, [YieldSnapshot("aave", 6.0)])
    assert result.source == "baseline"
    assert result.strategy.allocation.aave == 40
    assert result.strategy.expected_apy == pytest.approx((40 * 6.0 + 40 * 8.7 + 20 * 12.4) / 10_000)


def test_market_tilt_towards_higher_yield(live_yields):
    result = generate_allocation_strategy(50, live_yields)
    alloc = result.strategy.allocation
    assert result.source == "market"
    assert alloc.total() == pytest.approx(100.0, abs=1e-9)
    assert alloc.aave < 40
    assert alloc.yieldyak > 20


def test_zero_base_share_has_zero_floor():
    # yieldyak far below average would go negative for a conservative profile
    result = generate_allocation_strategy(10, snaps(10, 10, 1))
    alloc = result.strategy.allocation
    assert alloc.yieldyak == 0
    assert alloc.total() == pytest.approx(100.0, abs=1e-9)
    assert alloc.aave > alloc.traderjoe


def test_ceiling_and_normalization():
    result = generate_allocation_strategy(10, snaps(100, 0.01, 0.01))
    alloc = result.strategy.allocation
    assert alloc.total() == pytest.approx(100.0, abs=1e-9)
    assert alloc.yieldyak == 0
    assert 0 < alloc.aave <= 85


def test_benqi_alias_counts_as_lending_slot():
    result = generate_allocation_strategy(50, [
        YieldSnapshot("benqi", 5.2), YieldSnapshot("traderjoe", 8.7), YieldSnapshot("yieldyak", 12.4),
    ])
    assert result.source == "market"


@pytest.mark.parametrize("apys", [(0, 0, 0), (float("nan"), 8.7, 12.4), (5.2, float("inf"), 12.4)])
def test_bad_yields_fall_back_to_profile_default(apys):
    result = generate_allocation_strategy(80, snaps(*apys))
    assert result.used_fallback
    assert result.error
    assert result.strategy.allocation.as_dict() == BASE_ALLOCATIONS["Aggressive"]
    assert result.strategy.expected_apy == DEFAULT_EXPECTED_APY["Aggressive"]
    assert "default Aggressive allocation" in result.strategy.rationale


def test_rationale_for_conservative_baseline():
    text = generate_allocation_strategy(20).strategy.rationale
    assert text.startswith("This Conservative allocation strategy")
    assert "70% in Aave" in text
    assert "avoids high-risk farming protocols" in text


def test_rationale_mentions_farming_when_allocated():
    text = generate_allocation_strategy(90).strategy.rationale
    assert "50% to YieldYak" in text


def test_yield_adjustments_are_zero_sum():
    adj = yield_adjustments({"aave": 5.2, "traderjoe": 8.7, "yieldyak": 12.4})
    assert sum(adj.values()) == pytest.approx(0.0, abs=1e-9)
    assert adj["aave"] < 0 < adj["yieldyak"]


def test_normalize_sums_exactly_to_100():
    out = normalize({"aave": 33.3, "traderjoe": 33.3, "yieldyak": 33.3})
    assert sum(out.values()) == 100.0


def test_normalize_rejects_empty_total():
    with pytest.raises(ValueError):
        normalize({"aave": 0, "traderjoe": 0, "yieldyak": 0})


def test_to_dict_flattens_allocation():
    d = generate_allocation_strategy(50).strategy.to_dict()
    assert set(d) == {"aave", "traderjoe", "yieldyak", "rationale", "expected_apy", "risk_level"}


def test_same_inputs_give_same_strategy(live_yields):
    first = generate_allocation_strategy(63, live_yields)
    second = generate_allocation_strategy(63, live_yields)
    assert first.source == second.source == "market"
    assert first.strategy.to_dict() == second.strategy.to_dict()


def test_shares_sum_to_100_across_profiles_and_yields():
    rng = np.random.default_rng(2024)
    triples = rng.uniform(0.1, 60.0, size=(25, 3))
    for score in range(0, 101, 5):
        for aave, traderjoe, yieldyak in triples:
            alloc = generate_allocation_strategy(score, snaps(aave, traderjoe, yieldyak)).strategy.allocation
            assert alloc.total() == pytest.approx(100.0, abs=1e-9)
            assert min(alloc.as_dict().values()) >= 0


def test_inactive_snapshots_do_not_tilt_the_allocation():
    simulated = [
        YieldSnapshot("aave", 2.0, is_active=False),
        YieldSnapshot("traderjoe", 8.0, is_active=False),
        YieldSnapshot("yieldyak", 40.0, is_active=False),
    ]
    result = generate_allocation_strategy(50, simulated)
    assert result.source == "baseline"
    assert result.strategy.allocation.as_dict() == BASE_ALLOCATIONS["Balanced"]
    assert result.strategy.expected_apy == pytest.approx(0.0804)

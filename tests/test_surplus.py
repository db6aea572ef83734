import pytest

from wealth_manager.surplus import calculate_surplus, surplus_analysis


def test_emergency_fund_takes_half_of_surplus():
    r = calculate_surplus(5_000, 3_000)
    assert r.monthly_surplus == 2_000
    assert r.emergency_fund_needed == 18_000
    assert r.investable_amount == 1_000
    assert r.recommended_investment_percentage == 50


def test_funded_emergency_fund_frees_whole_surplus():
    r = calculate_surplus(5_000, 3_000, current_emergency_fund=18_000)
    assert r.emergency_fund_needed == 0
    assert r.investable_amount == 2_000
    # 100% is capped
    assert r.recommended_investment_percentage == 80


def test_small_gap_only_diverts_what_is_needed():
    r = calculate_surplus(5_000, 3_000, current_emergency_fund=17_800)
    assert r.emergency_fund_needed == 200
    assert r.investable_amount == 1_800
    assert r.recommended_investment_percentage == 80


def test_deficit_is_floored():
    r = calculate_surplus(2_000, 3_000)
    assert r.monthly_surplus == 0
    assert r.investable_amount == 0
    assert r.recommended_investment_percentage == 20


def test_zero_target_means_no_fund_needed():
    r = calculate_surplus(4_000, 1_000, emergency_fund_target=0)
    assert r.emergency_fund_needed == 0
    assert r.investable_amount == 3_000


@pytest.mark.parametrize("income,expenses,fund,status,advice", [
    (5_000, 3_000, 0, "needs_funding", "Consider investing surplus in DeFi protocols"),
    (3_100, 3_000, 0, "needs_funding", "Focus on building emergency fund first"),
    (3_000, 3_000, 18_000, "adequate", "Monitor expenses to create investment surplus"),
])
def test_surplus_analysis(income, expenses, fund, status, advice):
    a = surplus_analysis(calculate_surplus(income, expenses, current_emergency_fund=fund))
    assert a["emergency_fund_status"] == status
    assert a["recommendation"] == advice

import pytest

from wealth_manager.risk import RiskAssessmentAnswers, calculate_risk_score, get_risk_profile, risk_level_for


def answers(**overrides) -> RiskAssessmentAnswers:
    base = dict(
        age=30,
        income=80_000,
        monthly_expenses=3_000,
        investment_goal="long_term",
        risk_tolerance="medium",
        investment_experience="intermediate",
        time_horizon=10,
    )
    base.update(overrides)
    return RiskAssessmentAnswers(**base)


def test_balanced_investor():
    # 14 + 9.3 + 5.5 + 10.5 + 12.5 + 5 + 2.5 = 59.3
    score = calculate_risk_score(answers())
    assert score == 59
    assert get_risk_profile(score) == "Balanced"


def test_conservative_retiree():
    score = calculate_risk_score(answers(
        age=65, income=30_000, monthly_expenses=2_400, investment_goal="short_term",
        risk_tolerance="very_low", investment_experience="none", time_horizon=1,
    ))
    assert score == 13
    assert get_risk_profile(score) == "Conservative"


def test_aggressive_young_expert():
    score = calculate_risk_score(answers(
        age=25, income=200_000, monthly_expenses=2_000, investment_goal="retirement",
        risk_tolerance="very_high", investment_experience="expert", time_horizon=30,
    ))
    assert score == 88
    assert get_risk_profile(score) == "Aggressive"


def test_zero_income_scores_expenses_as_zero():
    with_income = calculate_risk_score(answers(monthly_expenses=0))
    no_income = calculate_risk_score(answers(income=0, monthly_expenses=0))
    # income sub-score drops 32 points (x0.15) and expense sub-score 100 points (x0.10)
    assert with_income - no_income == pytest.approx(4.8 + 10, abs=1)


@pytest.mark.parametrize("bad", [float("nan"), float("inf"), -float("inf")])
def test_non_finite_inputs_never_raise(bad):
    score = calculate_risk_score(answers(age=bad, income=bad, time_horizon=bad))
    assert isinstance(score, int)
    assert 0 <= score <= 100


def test_score_is_clamped_for_extreme_inputs():
    assert calculate_risk_score(answers(age=-500, income=10**9, time_horizon=10**6)) <= 100
    assert calculate_risk_score(answers(age=500, income=1, monthly_expenses=10**6)) >= 0


@pytest.mark.parametrize("score,profile", [
    (0, "Conservative"), (33, "Conservative"), (34, "Balanced"),
    (66, "Balanced"), (67, "Aggressive"), (100, "Aggressive"),
])
def test_profile_boundaries(score, profile):
    assert get_risk_profile(score) == profile


def test_risk_levels():
    assert [risk_level_for(p) for p in ("Conservative", "Balanced", "Aggressive")] == ["low", "medium", "high"]


def test_half_up_rounding(monkeypatch):
    import wealth_manager.risk as risk

    # every sub-score pinned so the weighted sum lands exactly on x.5
    monkeypatch.setattr(risk, "WEIGHTS", {"tolerance": 1.0})
    monkeypatch.setitem(risk.TOLERANCE_SCORES, "medium", 66.5)
    assert risk.calculate_risk_score(answers()) == 67


def test_long_term_advanced_investor_is_aggressive():
    # 16 + 13.5 + 8 + 10.5 + 18.75 + 7.5 + 5 = 79.25
    score = calculate_risk_score(answers(
        age=25, income=150_000, monthly_expenses=2_500, investment_goal="long_term",
        risk_tolerance="high", investment_experience="advanced", time_horizon=20,
    ))
    assert score == 79
    assert get_risk_profile(score) == "Aggressive"


@pytest.mark.parametrize("fixed", [
    {},
    {"age": 65, "income": 30_000, "investment_goal": "short_term", "time_horizon": 1},
    {"age": 22, "income": 0, "investment_experience": "expert", "time_horizon": 40},
])
def test_score_never_drops_as_tolerance_rises(fixed):
    levels = ["very_low", "low", "medium", "high", "very_high"]
    scores = [calculate_risk_score(answers(risk_tolerance=t, **fixed)) for t in levels]
    assert scores == sorted(scores)

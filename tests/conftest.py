"""Pytest fixtures for credit basket tests."""

import pytest
import numpy as np

from credit_basket import (
    BasketPricer,
    BetaRecovery,
    Copula,
    DiscountCurve,
    FactorCorrelation,
    HeterogeneousStrategy,
    NameCollection,
    PaymentSchedule,
    RecoveryCurve,
    SingleFactorCorrelation,
    SurvivalCurve,
)


def make_identical_names(n=5, survival=0.95, horizon=1.0, recovery=0.4, label="Identical"):
    """Names with the same flat survival curve, recovery and principal."""
    ids = [f"Name_{i}" for i in range(n)]
    curves = [SurvivalCurve.from_survival_probability(survival, horizon, name=i) for i in ids]
    return NameCollection.from_arrays(ids, curves, [recovery] * n, label=label)


@pytest.fixture
def five_names():
    """Five identical names: S(1y) = 0.95, R = 0.4, equal principals."""
    return make_identical_names()


@pytest.fixture
def mixed_names():
    """Six names with different hazards, recoveries and principals."""
    ids = ["Auto_A", "Bank_B", "Energy_C", "Retail_D", "Tech_E", "Util_F"]
    hazards = [0.010, 0.020, 0.035, 0.050, 0.015, 0.008]
    recoveries = [0.40, 0.35, 0.30, 0.25, 0.40, 0.45]
    principals = [20.0, 15.0, 10.0, 25.0, 20.0, 10.0]
    curves = [
        SurvivalCurve([1.0, 3.0, 5.0], [h, h * 1.2, h * 1.5], name=i)
        for i, h in zip(ids, hazards)
    ]
    return NameCollection.from_arrays(ids, curves, recoveries, principals, label="Mixed")


@pytest.fixture
def mixed_correlation(mixed_names):
    """Per-name factor loadings for the mixed basket."""
    return FactorCorrelation(mixed_names, [0.5, 0.6, 0.4, 0.45, 0.55, 0.3])


@pytest.fixture
def flat_correlation():
    """Single factor model with pairwise correlation 0.3."""
    return SingleFactorCorrelation.from_correlation(None, 0.3)


@pytest.fixture
def five_name_basket(five_names, flat_correlation):
    """Heterogeneous basket of the five identical names to one year."""
    return BasketPricer(five_names, flat_correlation, Copula.gauss(),
                        HeterogeneousStrategy(), start=0.0, maturity=1.0)


@pytest.fixture
def mixed_basket(mixed_names, mixed_correlation):
    """Heterogeneous basket of the mixed names to five years."""
    return BasketPricer(mixed_names, mixed_correlation, Copula.gauss(),
                        HeterogeneousStrategy(checkpoint_interval=2),
                        start=0.0, maturity=5.0)


@pytest.fixture
def beta_recovery():
    """Beta recovery with mean 0.4 and standard deviation 0.15."""
    return BetaRecovery(mean=0.4, std=0.15)


@pytest.fixture
def discount_curve():
    """Upward sloping zero curve."""
    return DiscountCurve([1.0, 3.0, 5.0], [0.02, 0.025, 0.03])


@pytest.fixture
def quarterly_schedule():
    """Five year quarterly premium schedule."""
    return PaymentSchedule.regular(5.0, frequency=4)


@pytest.fixture
def historical_recoveries():
    """Sample historical recoveries for the empirical distribution."""
    rng = np.random.default_rng(42)
    return np.clip(rng.beta(2, 3, size=100) * 0.8 + 0.1, 0.1, 0.9)


@pytest.fixture
def flat_recovery():
    return RecoveryCurve(rate=0.4)


@pytest.fixture
def identical_names_factory():
    """Factory building baskets of identical names."""
    return make_identical_names

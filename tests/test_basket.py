"""Tests for basket.py - BasketPricer caching, refit and tranche queries."""

import pytest
import numpy as np

from credit_basket import (
    BasketConfigurationError,
    BasketPricer,
    BasketValidationError,
    Copula,
    GeneralCorrelation,
    HeterogeneousStrategy,
    HomogeneousStrategy,
    MonteCarloStrategy,
    PaymentSchedule,
    SingleFactorCorrelation,
    StaleBasketError,
)


class TestBasketPricer:
    """Tests for the BasketPricer class."""

    def test_default_grid(self, five_name_basket):
        """Test the quarterly grid from start to maturity."""
        assert np.allclose(five_name_basket.dates, [0.0, 0.25, 0.5, 0.75, 1.0])

    def test_extra_grid_dates(self, five_names, flat_correlation):
        """Test that extra dates are merged into the grid."""
        basket = BasketPricer(five_names, flat_correlation, maturity=1.0,
                              add_grid_dates=[0.1, 0.9])
        assert np.allclose(basket.dates, [0.0, 0.1, 0.25, 0.5, 0.75, 0.9, 1.0])

    def test_payment_dates_as_grid_dates(self, five_names, flat_correlation):
        """Test that schedule payment dates line up the grid."""
        schedule = PaymentSchedule.regular(1.0, frequency=3)
        basket = BasketPricer(five_names, flat_correlation, maturity=1.0,
                              add_grid_dates=schedule.payment_dates)
        assert np.allclose(basket.dates, [0.0, 0.25, 1 / 3, 0.5, 2 / 3, 0.75, 1.0])
        assert basket.expected_loss(1.0) == pytest.approx(0.03, rel=1e-6)

    def test_compute_is_idempotent(self, five_name_basket):
        """Test that a second compute returns the cached distribution."""
        first = five_name_basket.compute()
        assert five_name_basket.compute() is first
        assert not five_name_basket.is_stale

    def test_compute_on_requested_dates(self, five_name_basket):
        """Test computing on explicit dates."""
        dist = five_name_basket.compute([1.0, 0.0, 0.5])
        assert np.allclose(dist.dates, [0.0, 0.5, 1.0])

    def test_full_tranche_equals_expected_loss(self, five_name_basket):
        """Test that the [0, 1] tranche loss is the expected basket loss."""
        assert five_name_basket.tranche_expected_loss(0.0, 1.0, 1.0) == pytest.approx(
            five_name_basket.expected_loss(1.0))
        assert five_name_basket.expected_loss(1.0) == pytest.approx(0.03, rel=1e-6)

    def test_five_name_equity_tranche(self, five_name_basket):
        """Test the [0, 0.2] tranche of the reference basket."""
        equity = five_name_basket.tranche_expected_loss(0.0, 0.2, 1.0)
        assert 0.0 < equity < 0.03

    def test_correlation_monotonicity(self, five_names):
        """Test equity and senior losses as correlation rises."""
        equity, senior, total = [], [], []
        for rho in (0.0, 0.3, 0.6):
            basket = BasketPricer(five_names, SingleFactorCorrelation.from_correlation(None, rho),
                                  maturity=1.0)
            equity.append(basket.tranche_expected_loss(0.0, 0.2, 1.0))
            senior.append(basket.tranche_expected_loss(0.2, 1.0, 1.0))
            total.append(basket.expected_loss(1.0))
        assert equity[0] > equity[1] > equity[2]
        assert senior[0] < senior[1] < senior[2]
        assert np.allclose(total, total[0], rtol=1e-6)

    def test_tranche_survival(self, five_name_basket):
        """Test the remaining tranche notional fraction."""
        survival = five_name_basket.tranche_survival(0.0, 0.2, 1.0)
        loss = five_name_basket.tranche_expected_loss(0.0, 0.2, 1.0)
        assert survival == pytest.approx(1.0 - loss / 0.2)
        assert five_name_basket.tranche_survival(0.0, 0.2, 0.0) == pytest.approx(1.0)

    def test_nth_default_probability(self, five_name_basket):
        """Test default count queries."""
        counts = five_name_basket.default_count_probabilities(1.0)
        assert counts.size == 6
        assert five_name_basket.nth_default_probability(1, 1.0) == pytest.approx(1 - counts[0])
        assert five_name_basket.nth_default_probability(0, 1.0) == 1.0

    def test_date_after_grid_raises(self, five_name_basket):
        """Test that queries beyond the grid raise ValueError."""
        with pytest.raises(ValueError):
            five_name_basket.tranche_expected_loss(0.0, 0.2, 2.0)

    def test_auto_refit_after_bump(self, mixed_basket, mixed_names):
        """Test that a bump is picked up by the next query."""
        base = mixed_basket.expected_loss(5.0)
        mixed_names[4].survival_curve.bump_quote(0.01)
        assert mixed_basket.is_stale
        bumped = mixed_basket.expected_loss(5.0)
        assert bumped > base
        assert not mixed_basket.is_stale

    def test_refit_equals_reset_and_compute(self, mixed_basket, mixed_names):
        """Test that refit from the first changed name matches a full recompute."""
        mixed_basket.compute()
        mixed_names[3].survival_curve.bump_quote(0.005)
        refitted = mixed_basket.refit(3)
        mixed_basket.reset()
        full = mixed_basket.compute()
        assert np.allclose(refitted.loss_probabilities, full.loss_probabilities, atol=1e-12)
        assert np.allclose(refitted.amortization_probabilities,
                           full.amortization_probabilities, atol=1e-12)

    def test_recovery_change_refits(self, mixed_basket, mixed_names):
        """Test that recovery changes are tracked by version."""
        base = mixed_basket.expected_loss(5.0)
        mixed_names[1].recovery_curve.set_rate(0.1)
        assert mixed_basket.expected_loss(5.0) > base

    def test_strict_mode_raises_on_stale(self, mixed_names, mixed_correlation):
        """Test that strict baskets refuse stale queries."""
        basket = BasketPricer(mixed_names, mixed_correlation, maturity=5.0, auto_refit=False)
        basket.compute()
        mixed_names[0].survival_curve.bump_quote(0.001)
        with pytest.raises(StaleBasketError):
            basket.expected_loss(5.0)
        basket.refit(0)
        assert basket.expected_loss(5.0) > 0

    def test_correlation_change_recomputes(self, five_name_basket, flat_correlation):
        """Test that correlation changes invalidate the cache."""
        equity = five_name_basket.tranche_expected_loss(0.0, 0.2, 1.0)
        flat_correlation.set_factor(0.8)
        assert five_name_basket.is_stale
        assert five_name_basket.tranche_expected_loss(0.0, 0.2, 1.0) < equity

    def test_composition_change_recomputes(self, mixed_basket, mixed_names):
        """Test that removing a name triggers a full computation."""
        mixed_basket.compute()
        mixed_names.remove("Util_F")
        assert mixed_basket.is_stale
        assert mixed_basket.default_count_probabilities(5.0).size == 6

    def test_validation_errors(self, five_names, flat_correlation):
        """Test that invalid inputs are reported before computing."""
        five_names[0].survival_curve.set_hazard_rates([-0.1])
        basket = BasketPricer(five_names, flat_correlation, maturity=1.0)
        with pytest.raises(BasketValidationError) as excinfo:
            basket.compute()
        assert len(excinfo.value.errors) == 1
        assert not basket.is_computed

    def test_failed_compute_keeps_cache(self, five_name_basket, five_names):
        """Test that a failed refit leaves the previous cache usable."""
        first = five_name_basket.compute()
        five_names[0].survival_curve.set_hazard_rates([-0.1])
        with pytest.raises(BasketValidationError):
            five_name_basket.refit(0)
        assert five_name_basket.is_computed
        assert five_name_basket._state.distribution is first

    def test_failed_compute_keeps_grid(self, five_name_basket, five_names):
        """Test that a rejected compute on new dates keeps the old grid."""
        first = five_name_basket.compute()
        five_names[0].survival_curve.set_hazard_rates([-0.1])
        with pytest.raises(BasketValidationError):
            five_name_basket.compute([0.0, 0.5])
        assert five_name_basket._requested_dates is None
        five_names[0].survival_curve.set_hazard_rates(five_names[1].survival_curve.hazard_rates)
        assert np.allclose(five_name_basket.dates, [0.0, 0.25, 0.5, 0.75, 1.0])
        assert five_name_basket.compute().expected_loss(1.0) == pytest.approx(
            first.expected_loss(1.0))

    def test_general_correlation_needs_monte_carlo(self, five_names):
        """Test that a full matrix is rejected by semi-analytic strategies."""
        general = GeneralCorrelation(five_names, np.eye(5))
        with pytest.raises(BasketConfigurationError, match="Monte Carlo"):
            BasketPricer(five_names, general, strategy=HeterogeneousStrategy())
        basket = BasketPricer(five_names, general, strategy=MonteCarloStrategy(2000),
                              maturity=1.0)
        assert basket.expected_loss(1.0) > 0

    def test_homogeneous_strategy(self, five_names, flat_correlation):
        """Test a basket using the binomial strategy."""
        a = BasketPricer(five_names, flat_correlation, strategy=HomogeneousStrategy(),
                         maturity=1.0)
        b = BasketPricer(five_names, flat_correlation, strategy=HeterogeneousStrategy(),
                         maturity=1.0)
        assert a.tranche_expected_loss(0.0, 0.2, 1.0) == pytest.approx(
            b.tranche_expected_loss(0.0, 0.2, 1.0), rel=1e-6)

    def test_monte_carlo_refit(self, mixed_names, mixed_correlation):
        """Test auto refit with the Monte Carlo strategy."""
        basket = BasketPricer(mixed_names, mixed_correlation, Copula(),
                              MonteCarloStrategy(5000, seed=1), maturity=5.0)
        base = basket.expected_loss(5.0)
        mixed_names[0].survival_curve.bump_quote(0.05)
        assert basket.expected_loss(5.0) > base

    def test_repr(self, five_name_basket):
        """Test the string representation."""
        assert "heterogeneous" in repr(five_name_basket)

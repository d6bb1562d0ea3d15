"""Tests for simulation.py - Monte Carlo loss distribution strategy."""

import pytest
import numpy as np

from credit_basket import (
    BasketConfigurationError,
    BetaRecovery,
    Copula,
    GeneralCorrelation,
    HeterogeneousStrategy,
    MonteCarloLossDistribution,
    MonteCarloStrategy,
    NameCollection,
    SingleFactorCorrelation,
    SurvivalCurve,
)

DATES = np.array([0.0, 0.5, 1.0])


class TestMonteCarloLossDistribution:
    """Tests for path based distribution statistics."""

    @pytest.fixture
    def sample_distribution(self):
        """Distribution built from synthetic path losses."""
        rng = np.random.default_rng(42)
        losses = np.column_stack([np.zeros(1000), rng.uniform(0, 0.5, 1000)])
        return MonteCarloLossDistribution(
            dates=np.array([0.0, 1.0]),
            loss_levels=np.linspace(0.0, 1.0, 11),
            loss_probabilities=np.zeros((2, 11)),
            amortization_probabilities=np.zeros((2, 11)),
            default_count_probabilities=np.zeros((2, 2)),
            grid_size=0.1,
            path_losses=losses,
            path_amortizations=losses * 0.5,
        )

    def test_expected_loss(self, sample_distribution):
        """Test that expected loss averages path losses."""
        expected = np.mean(sample_distribution.path_losses[:, 1])
        assert sample_distribution.expected_loss(1.0) == pytest.approx(expected)
        assert sample_distribution.num_paths == 1000

    def test_tranche_loss(self, sample_distribution):
        """Test tranche loss on raw paths."""
        losses = sample_distribution.path_losses[:, 1]
        expected = np.mean(np.clip(losses - 0.1, 0.0, 0.2))
        assert sample_distribution.tranche_loss(0.1, 0.3, 1.0) == pytest.approx(expected)

    def test_standard_error(self, sample_distribution):
        """Test the standard error of the mean."""
        losses = sample_distribution.path_losses[:, 1]
        expected = np.std(losses, ddof=1) / np.sqrt(losses.size)
        assert sample_distribution.standard_error() == pytest.approx(expected)

    def test_get_var(self, sample_distribution):
        """Test VaR by selection."""
        losses = np.sort(sample_distribution.path_losses[:, 1])
        assert sample_distribution.get_var(0.99) == pytest.approx(losses[989])

    def test_get_expected_shortfall(self, sample_distribution):
        """Test Expected Shortfall calculation."""
        var = sample_distribution.get_var(0.99)
        losses = sample_distribution.path_losses[:, 1]
        assert sample_distribution.get_expected_shortfall(0.99) == pytest.approx(
            np.mean(losses[losses >= var]))
        assert sample_distribution.get_expected_shortfall(0.99) >= var

    def test_interpolated_paths(self, sample_distribution):
        """Test path values between dates."""
        assert sample_distribution.expected_loss(0.5) == pytest.approx(
            0.5 * sample_distribution.expected_loss(1.0))


class TestMonteCarloStrategy:
    """Tests for the MonteCarloStrategy class."""

    def test_invalid_sample_size(self):
        """Test that sample sizes must be positive."""
        with pytest.raises(BasketConfigurationError, match="sample_size"):
            MonteCarloStrategy(sample_size=0)

    def test_reproducible(self, five_names, flat_correlation):
        """Test that a fixed seed reproduces results."""
        a = MonteCarloStrategy(5000, seed=7).compute(five_names, flat_correlation, Copula(), DATES)
        b = MonteCarloStrategy(5000, seed=7).compute(five_names, flat_correlation, Copula(), DATES)
        assert np.array_equal(a.path_losses, b.path_losses)

    def test_workers_do_not_change_results(self, five_names, flat_correlation):
        """Test identical results for sequential and threaded batches."""
        sequential = MonteCarloStrategy(6000, seed=3, batch_size=1000).compute(
            five_names, flat_correlation, Copula(), DATES)
        threaded = MonteCarloStrategy(6000, seed=3, batch_size=1000, num_workers=3).compute(
            five_names, flat_correlation, Copula(), DATES)
        assert np.array_equal(sequential.path_losses, threaded.path_losses)

    def test_batches_cover_sample_size(self):
        """Test batch sizes including a remainder."""
        assert MonteCarloStrategy(2500, batch_size=1000)._batches() == [1000, 1000, 500]
        assert MonteCarloStrategy(2500)._batches() == [2500]

    def test_empirical_distribution(self, five_names, flat_correlation):
        """Test that grid probabilities sum to one and match the paths."""
        dist = MonteCarloStrategy(20000, seed=1).compute(five_names, flat_correlation,
                                                          Copula(), DATES)
        assert np.allclose(dist.total_mass(), 1.0)
        assert np.dot(dist.loss_levels, dist.probabilities(1.0)) == pytest.approx(
            dist.expected_loss(1.0), abs=1e-12)

    def test_standard_error_shrinks(self, five_names, flat_correlation):
        """Test that standard errors fall with the number of paths."""
        errors = []
        for n in (1000, 10000, 100000):
            dist = MonteCarloStrategy(n, seed=11).compute(five_names, flat_correlation,
                                                          Copula(), DATES)
            errors.append(dist.standard_error(0.0, 0.2, 1.0))
        assert errors[0] > errors[1] > errors[2] > 0

    @pytest.mark.parametrize("attachment,detachment", [(0.0, 0.2), (0.0, 1.0), (0.2, 1.0)])
    def test_matches_semi_analytic(self, five_names, flat_correlation, attachment, detachment):
        """Test that 1e5 paths land within three standard errors of the recursion."""
        analytic = HeterogeneousStrategy().compute(five_names, flat_correlation,
                                                   Copula(), DATES)
        simulated = MonteCarloStrategy(100000, seed=2024).compute(
            five_names, flat_correlation, Copula(), DATES)
        se = simulated.standard_error(attachment, detachment, 1.0)
        diff = abs(simulated.tranche_loss(attachment, detachment, 1.0)
                   - analytic.tranche_loss(attachment, detachment, 1.0))
        assert diff < 3 * se

    def test_default_counts(self, five_names, flat_correlation):
        """Test that the default rate matches the marginal probability."""
        dist = MonteCarloStrategy(50000, seed=5).compute(five_names, flat_correlation,
                                                         Copula(), DATES)
        counts = dist.default_counts(1.0)
        assert np.dot(np.arange(counts.size), counts) / 5 == pytest.approx(0.05, abs=0.005)

    def test_refit_reuses_uniforms(self, mixed_names, mixed_correlation):
        """Test that refitting after a bump equals a fresh simulation."""
        strategy = MonteCarloStrategy(4000, seed=9)
        dates = np.linspace(0.0, 5.0, 6)
        state = strategy.build(mixed_names, mixed_correlation, Copula(), dates)
        mixed_names[2].survival_curve.bump_quote(0.02)
        refitted = strategy.refit(state, mixed_names, mixed_correlation, Copula(), 2)
        fresh = strategy.build(mixed_names, mixed_correlation, Copula(), dates)
        assert np.array_equal(refitted.uniforms, state.uniforms)
        assert np.allclose(refitted.distribution.path_losses, fresh.distribution.path_losses)

    def test_general_correlation(self, five_names):
        """Test simulation with a full correlation matrix."""
        matrix = np.full((5, 5), 0.3)
        np.fill_diagonal(matrix, 1.0)
        general = GeneralCorrelation(five_names, matrix)
        factor = SingleFactorCorrelation.from_correlation(None, 0.3)
        a = MonteCarloStrategy(50000, seed=4).compute(five_names, general, Copula(), DATES)
        b = HeterogeneousStrategy().compute(five_names, factor, Copula(), DATES)
        assert a.tranche_loss(0.0, 0.2, 1.0) == pytest.approx(
            b.tranche_loss(0.0, 0.2, 1.0), abs=4 * a.standard_error(0.0, 0.2, 1.0))

    def test_random_recovery(self):
        """Test that sampled recoveries keep the expected loss."""
        recovery = BetaRecovery(mean=0.4, std=0.2)
        curves = [SurvivalCurve.flat(0.1) for _ in range(4)]
        names = NameCollection.from_arrays(list("ABCD"), curves, [recovery] * 4)
        dist = MonteCarloStrategy(40000, seed=8).compute(
            names, SingleFactorCorrelation(None, 0.5), Copula(), [0.0, 2.0])
        assert dist.expected_loss(2.0) == pytest.approx(names.expected_loss(2.0), rel=0.03)
        assert np.allclose(dist.total_mass(), 1.0)

    def test_zero_names(self):
        """Test that an empty basket has zero loss on every path."""
        dist = MonteCarloStrategy(100).compute(NameCollection(),
                                               SingleFactorCorrelation(None, 0.5),
                                               Copula(), DATES)
        assert dist.expected_loss(1.0) == 0.0
        assert np.allclose(dist.probabilities(1.0), [1.0])

    def test_double_t(self, five_names, flat_correlation):
        """Test that the double-t simulation agrees with its quadrature."""
        copula = Copula.double_t(4.0, 4.0, 60)
        analytic = HeterogeneousStrategy().compute(five_names, flat_correlation, copula, DATES)
        simulated = MonteCarloStrategy(50000, seed=6).compute(five_names, flat_correlation,
                                                              copula, DATES)
        assert simulated.tranche_loss(0.0, 1.0, 1.0) == pytest.approx(
            analytic.expected_loss(1.0), abs=4 * simulated.standard_error(0.0, 1.0, 1.0))

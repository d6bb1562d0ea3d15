"""Monte Carlo loss distribution strategy."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
import numpy as np

from .copula import Copula
from .correlation import CorrelationModel
from .distribution import LossDistribution, check_tranche, tranche_payoff
from .errors import BasketConfigurationError
from .names import NameCollection
from .semi_analytic import (LossDistributionStrategy, StrategyState, level_count,
                            resolve_grid_size, snap_to_grid)

logger = logging.getLogger(__name__)


@dataclass
class MonteCarloLossDistribution(LossDistribution):
    """Loss distribution estimated by simulation.

    The grid probabilities are the empirical distribution of the paths.
    Expected and tranche losses average the raw path losses, so they carry
    no grid snapping.

    Attributes:
        path_losses: Loss per path and date, (n_paths, n_dates)
        path_amortizations: Amortization per path and date, (n_paths, n_dates)
    """
    path_losses: Optional[np.ndarray] = None
    path_amortizations: Optional[np.ndarray] = None

    @property
    def num_paths(self) -> int:
        return self.path_losses.shape[0]

    def _path_values(self, paths: np.ndarray, t: float) -> np.ndarray:
        rows = self._interpolation(t)
        if not rows:
            return np.zeros(paths.shape[0])
        return sum(w * paths[:, i] for i, w in rows)

    def scenario_losses(self, t: float) -> np.ndarray:
        """Portfolio loss of every path at date t."""
        return self._path_values(self.path_losses, t)

    def expected_loss(self, t: float) -> float:
        return float(np.mean(self.scenario_losses(t)))

    def expected_amortization(self, t: float) -> float:
        return float(np.mean(self._path_values(self.path_amortizations, t)))

    def tranche_loss(self, attachment: float, detachment: float, t: float) -> float:
        check_tranche(attachment, detachment)
        return float(np.mean(tranche_payoff(self.scenario_losses(t), attachment, detachment)))

    def tranche_amortization(self, attachment: float, detachment: float, t: float) -> float:
        check_tranche(attachment, detachment)
        amortized = self._path_values(self.path_amortizations, t)
        return float(np.mean(tranche_payoff(amortized, 1.0 - detachment, 1.0 - attachment)))

    def standard_error(self, attachment: float = 0.0, detachment: float = 1.0,
                       t: Optional[float] = None) -> float:
        """Standard error of the tranche loss estimate (last date by default)."""
        check_tranche(attachment, detachment)
        t = self.dates[-1] if t is None else t
        payoff = tranche_payoff(self.scenario_losses(t), attachment, detachment)
        if payoff.size < 2:
            return 0.0
        return float(np.std(payoff, ddof=1) / np.sqrt(payoff.size))

    def loss_std(self, t: float) -> float:
        """Standard deviation of losses."""
        return float(np.std(self.scenario_losses(t)))

    def quantile(self, q: float, t: float) -> float:
        """Loss quantile of the paths, found by selection rather than sorting."""
        if not 0 <= q <= 1:
            raise BasketConfigurationError(f"Quantile level must be in [0, 1], got {q}")
        losses = self.scenario_losses(t)
        k = min(max(int(np.ceil(q * losses.size)) - 1, 0), losses.size - 1)
        return float(np.partition(losses, k)[k])

    def get_var(self, confidence: float = 0.99, t: Optional[float] = None) -> float:
        """Value at Risk at specified confidence level."""
        return self.quantile(confidence, self.dates[-1] if t is None else t)

    def get_expected_shortfall(self, confidence: float = 0.99,
                               t: Optional[float] = None) -> float:
        """Expected Shortfall (CVaR) at specified confidence level."""
        t = self.dates[-1] if t is None else t
        var = self.get_var(confidence, t)
        losses = self.scenario_losses(t)
        tail_losses = losses[losses >= var]
        if len(tail_losses) == 0:
            return var
        return float(np.mean(tail_losses))


@dataclass
class MonteCarloState(StrategyState):
    """Strategy state that also keeps the simulated uniforms for refits.

    Attributes:
        uniforms: Copula uniforms per path and name, (n_paths, num_names)
        recovery_draws: Sampled recoveries per path and name; NaN where the
            name's recovery is deterministic
    """
    uniforms: Optional[np.ndarray] = None
    recovery_draws: Optional[np.ndarray] = None


class MonteCarloStrategy(LossDistributionStrategy):
    """Simulates default times through the copula.

    Each batch of paths draws from its own generator, spawned from the master
    seed, so results are identical whether batches run sequentially or on a
    thread pool.
    """

    name = "monte_carlo"

    def __init__(self, sample_size: int = 10000, seed: Optional[int] = 0,
                 grid_size: float = 0.0, batch_size: Optional[int] = None,
                 num_workers: Optional[int] = None):
        """Initialize the strategy.

        Args:
            sample_size: Number of simulation paths
            seed: Master seed (None draws fresh entropy)
            grid_size: Spacing of the empirical loss grid (0 = default)
            batch_size: Paths per batch (None = a single batch)
            num_workers: Threads running batches (None or 1 = sequential)
        """
        super().__init__(grid_size)
        if sample_size <= 0:
            raise BasketConfigurationError(f"sample_size must be positive, got {sample_size}")
        if batch_size is not None and batch_size <= 0:
            raise BasketConfigurationError(f"batch_size must be positive, got {batch_size}")
        if num_workers is not None and num_workers <= 0:
            raise BasketConfigurationError(f"num_workers must be positive, got {num_workers}")
        self.sample_size = sample_size
        self.seed = seed
        self.batch_size = batch_size
        self.num_workers = num_workers

    def _batches(self) -> List[int]:
        if self.batch_size is None or self.batch_size >= self.sample_size:
            return [self.sample_size]
        full, remainder = divmod(self.sample_size, self.batch_size)
        return [self.batch_size] * full + ([remainder] if remainder else [])

    def _simulate_batch(self, args: Tuple) -> Tuple[np.ndarray, np.ndarray]:
        names, copula, loadings, cholesky, num_paths, seed_seq = args
        rng = np.random.default_rng(seed_seq)
        n = len(names)
        if n == 0:
            return np.zeros((num_paths, 0)), np.zeros((num_paths, 0))
        if cholesky is not None:
            latent = copula.sample_correlated(cholesky, num_paths, rng)
        else:
            latent = copula.sample_factor_model(loadings, num_paths, rng)
        uniforms = copula.to_uniform(latent, loadings)

        recovery_draws = np.full((num_paths, n), np.nan)
        for i, name in enumerate(names):
            if name.recovery_curve.is_random:
                recovery_draws[:, i] = name.recovery_curve.sample(0.0, num_paths, rng)
        return uniforms, recovery_draws

    def _draw(self, names: NameCollection, correlation: CorrelationModel,
              copula: Copula) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]:
        loadings, cholesky = None, None
        if len(names):
            if correlation.is_factor_model:
                loadings = correlation.factor_loadings(names)
            else:
                cholesky = correlation.cholesky(names)

        sizes = self._batches()
        seeds = np.random.SeedSequence(self.seed).spawn(len(sizes))
        tasks = [(names, copula, loadings, cholesky, size, seq)
                 for size, seq in zip(sizes, seeds)]
        if self.num_workers and self.num_workers > 1 and len(tasks) > 1:
            with ThreadPoolExecutor(max_workers=self.num_workers) as pool:
                results = list(pool.map(self._simulate_batch, tasks))
        else:
            results = [self._simulate_batch(task) for task in tasks]

        uniforms = np.concatenate([r[0] for r in results])
        recovery_draws = np.concatenate([r[1] for r in results])
        return uniforms, recovery_draws, loadings

    def build(self, names: NameCollection, correlation: CorrelationModel,
              copula: Copula, dates: Sequence[float]) -> MonteCarloState:
        started = time.perf_counter()
        uniforms, recovery_draws, loadings = self._draw(names, correlation, copula)
        state = self._evaluate(names, np.asarray(dates, dtype=float), uniforms,
                               recovery_draws, loadings)
        logger.debug("Simulated %d paths for %d names on %d dates in %.3fs",
                     self.sample_size, len(names), state.distribution.num_dates,
                     time.perf_counter() - started)
        return state

    def refit(self, state: StrategyState, names: NameCollection,
              correlation: CorrelationModel, copula: Copula,
              min_index: int = 0) -> StrategyState:
        """Re-evaluate the stored uniforms against the current curves.

        The latent draws do not depend on survival or recovery curves, so
        reusing them gives the same result as a full recomputation.
        """
        dates = state.distribution.dates
        if (not isinstance(state, MonteCarloState) or state.uniforms is None
                or state.uniforms.shape != (self.sample_size, len(names))):
            return self.build(names, correlation, copula, dates)
        if correlation.is_factor_model and len(names):
            if not np.array_equal(correlation.factor_loadings(names), state.loadings):
                return self.build(names, correlation, copula, dates)
        return self._evaluate(names, dates, state.uniforms, state.recovery_draws,
                              state.loadings)

    def _evaluate(self, names: NameCollection, dates: np.ndarray, uniforms: np.ndarray,
                  recovery_draws: np.ndarray,
                  loadings: Optional[np.ndarray]) -> MonteCarloState:
        n = len(names)
        num_paths = uniforms.shape[0]
        survival = names.survival_probabilities(dates)
        recovery = names.recovery_rates(dates)
        weights = names.weights
        grid_size = resolve_grid_size(self.grid_size, weights, recovery)
        n_levels = level_count(weights, grid_size)

        default_times = np.empty((num_paths, n))
        for i, name in enumerate(names):
            default_times[:, i] = name.survival_curve.default_time(uniforms[:, i])

        path_losses = np.zeros((num_paths, dates.size))
        path_amortizations = np.zeros_like(path_losses)
        loss_probabilities = np.zeros((dates.size, n_levels))
        amortization_probabilities = np.zeros_like(loss_probabilities)
        count_probabilities = np.zeros((dates.size, n + 1))
        random_recovery = ~np.isnan(recovery_draws)

        for j, t in enumerate(dates):
            defaulted = default_times <= t
            rates = np.where(random_recovery, recovery_draws, recovery[:, j])
            path_losses[:, j] = (defaulted * (weights * (1.0 - rates))).sum(axis=1)
            path_amortizations[:, j] = (defaulted * (weights * rates)).sum(axis=1)

            loss_idx = np.clip(snap_to_grid(path_losses[:, j], grid_size), 0, n_levels - 1)
            amort_idx = np.clip(snap_to_grid(path_amortizations[:, j], grid_size),
                                0, n_levels - 1)
            loss_probabilities[j] = np.bincount(loss_idx, minlength=n_levels) / num_paths
            amortization_probabilities[j] = (np.bincount(amort_idx, minlength=n_levels)
                                             / num_paths)
            count_probabilities[j] = (np.bincount(defaulted.sum(axis=1), minlength=n + 1)
                                      / num_paths)

        distribution = MonteCarloLossDistribution(
            dates=dates,
            loss_levels=np.arange(n_levels) * grid_size,
            loss_probabilities=loss_probabilities,
            amortization_probabilities=amortization_probabilities,
            default_count_probabilities=count_probabilities,
            grid_size=grid_size,
            path_losses=path_losses,
            path_amortizations=path_amortizations,
        )
        return MonteCarloState(distribution, survival, recovery, loadings, grid_size,
                               uniforms=uniforms, recovery_draws=recovery_draws)

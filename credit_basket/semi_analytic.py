"""Semi-analytic loss distribution strategies.

Conditional on the common factor the names default independently, so the
conditional loss distribution is built by convolving the names one at a time
on a fixed loss grid. The unconditional distribution is the weighted sum over
the quadrature nodes of the copula.

Each name's loss given default (principal × (1 - recovery) / total) is
snapped to the nearest grid point. Coarse grids therefore bias results; the
grid spacing is a caller choice.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
import numpy as np
from scipy import stats

from .copula import Copula, Quadrature
from .correlation import CorrelationModel
from .distribution import LossDistribution
from .errors import BasketConfigurationError
from .names import NameCollection

logger = logging.getLogger(__name__)

MAX_GRID_SIZE = 0.5


def resolve_grid_size(grid_size: float, weights: np.ndarray, recovery: np.ndarray) -> float:
    """Loss grid spacing to use for a basket.

    A grid size of 0 selects a quarter of the smallest positive loss (or
    amortization) of a single name as a fraction of the basket principal.
    """
    if grid_size > 0:
        return float(grid_size)
    if weights.size == 0:
        return MAX_GRID_SIZE
    amounts = np.concatenate([
        (weights[:, None] * (1.0 - recovery)).ravel(),
        (weights[:, None] * recovery).ravel(),
    ])
    positive = amounts[amounts > 1e-14]
    if positive.size == 0:
        return MAX_GRID_SIZE
    return float(min(0.25 * positive.min(), MAX_GRID_SIZE))


def snap_to_grid(amounts: np.ndarray, grid_size: float) -> np.ndarray:
    """Number of grid steps nearest to each amount."""
    return np.rint(np.asarray(amounts) / grid_size).astype(int)


def level_count(weights: np.ndarray, grid_size: float) -> int:
    """Grid levels needed to hold the loss or amortization of every name."""
    return int(snap_to_grid(weights, grid_size).sum()) + 1


def _convolve(dist: np.ndarray, p: np.ndarray, shifts: np.ndarray,
              probs: Sequence[float]) -> np.ndarray:
    """Add one name to conditional distributions.

    Args:
        dist: Distributions of shape (n_dates, n_nodes, n_levels)
        p: Conditional default probabilities of shape (n_dates, n_nodes)
        shifts: Grid steps per date and outcome, shape (n_dates, n_outcomes)
        probs: Probability of each outcome given default
    """
    out = dist * (1.0 - p)[..., None]
    for r, weight in enumerate(probs):
        column = shifts[:, r]
        for s in np.unique(column):
            rows = column == s
            contribution = dist[rows] * (weight * p[rows])[..., None]
            if s == 0:
                out[rows] += contribution
            else:
                out[rows, :, s:] += contribution[..., :-s]
    return out


@dataclass
class StrategyState:
    """Result of a strategy computation plus what is needed to refit it.

    Attributes:
        distribution: The computed loss distribution
        survival: Survival probabilities used, (num_names, num_dates)
        recovery: Expected recovery rates used, (num_names, num_dates)
        loadings: Factor loadings used (None for general correlation)
        grid_size: Loss grid spacing
        checkpoints: Conditional (loss, amortization, count) arrays stored
            before every ``checkpoint_interval``-th name
        fallback: Whether a homogeneous request was delegated
    """
    distribution: LossDistribution
    survival: np.ndarray
    recovery: np.ndarray
    loadings: Optional[np.ndarray]
    grid_size: float
    checkpoints: List[Optional[Tuple[np.ndarray, np.ndarray, np.ndarray]]] = field(
        default_factory=list)
    fallback: bool = False


class LossDistributionStrategy(ABC):
    """Computes the loss distribution of a basket on a date grid.

    ``build`` returns a ``StrategyState`` that ``refit`` can update after
    curve changes; ``compute`` returns only the distribution.
    """

    name = "abstract"

    def __init__(self, grid_size: float = 0.0):
        if not 0 <= grid_size <= MAX_GRID_SIZE:
            raise BasketConfigurationError(
                f"Grid size must be in (0, {MAX_GRID_SIZE}] or 0 for the default, "
                f"got {grid_size}"
            )
        self.grid_size = grid_size

    def compute(self, names: NameCollection, correlation: CorrelationModel,
                copula: Copula, dates: Sequence[float]) -> LossDistribution:
        return self.build(names, correlation, copula, dates).distribution

    @abstractmethod
    def build(self, names: NameCollection, correlation: CorrelationModel,
              copula: Copula, dates: Sequence[float]) -> StrategyState:
        """Compute from scratch."""

    def refit(self, state: StrategyState, names: NameCollection,
              correlation: CorrelationModel, copula: Copula,
              min_index: int = 0) -> StrategyState:
        """Recompute names from ``min_index`` on; defaults to a full build."""
        return self.build(names, correlation, copula, state.distribution.dates)

    def validate(self, errors: List[str]) -> List[str]:
        return errors


class HeterogeneousStrategy(LossDistributionStrategy):
    """Recursive convolution over names of arbitrary size and quality."""

    name = "heterogeneous"

    def __init__(self, grid_size: float = 0.0, recovery_points: int = 5,
                 checkpoint_interval: int = 20):
        """Initialize the strategy.

        Args:
            grid_size: Loss grid spacing as a fraction of basket principal
                (0 selects a quarter of the smallest single-name loss)
            recovery_points: Discretization points of random recoveries
            checkpoint_interval: Names between stored recursion checkpoints
                (0 keeps only the initial state)
        """
        super().__init__(grid_size)
        if recovery_points < 1:
            raise BasketConfigurationError("recovery_points must be positive")
        if checkpoint_interval < 0:
            raise BasketConfigurationError("checkpoint_interval must be non-negative")
        self.recovery_points = recovery_points
        self.checkpoint_interval = checkpoint_interval

    def _checkpoint_index(self, name_index: int) -> int:
        if self.checkpoint_interval == 0:
            return 0
        return name_index // self.checkpoint_interval

    def build(self, names: NameCollection, correlation: CorrelationModel,
              copula: Copula, dates: Sequence[float]) -> StrategyState:
        started = time.perf_counter()
        dates = np.asarray(dates, dtype=float)
        n = len(names)
        loadings = correlation.factor_loadings(names) if n else np.zeros(0)
        survival = names.survival_probabilities(dates)
        recovery = names.recovery_rates(dates)
        weights = names.weights
        grid_size = resolve_grid_size(self.grid_size, weights, recovery)
        n_levels = level_count(weights, grid_size)
        quad = copula.quadrature()

        shape = (dates.size, len(quad), n_levels)
        loss = np.zeros(shape)
        loss[..., 0] = 1.0
        amort = loss.copy()
        counts = np.zeros((dates.size, len(quad), n + 1))
        counts[..., 0] = 1.0

        n_checkpoints = self._checkpoint_index(max(n - 1, 0)) + 1
        checkpoints = [None] * n_checkpoints
        checkpoints[0] = (loss.copy(), amort.copy(), counts.copy())

        rows = np.ones(dates.size, dtype=bool)
        loss, amort, counts = self._recurse(
            names, copula, quad, loadings, survival, recovery, weights, grid_size,
            dates, rows, 0, (loss, amort, counts), checkpoints)

        distribution = LossDistribution(
            dates=dates,
            loss_levels=np.arange(n_levels) * grid_size,
            loss_probabilities=np.einsum("dml,m->dl", loss, quad.weights),
            amortization_probabilities=np.einsum("dml,m->dl", amort, quad.weights),
            default_count_probabilities=np.einsum("dmk,m->dk", counts, quad.weights),
            grid_size=grid_size,
        )
        logger.debug("Heterogeneous loss distribution: %d names, %d dates, %d levels, "
                     "%d nodes in %.3fs", n, dates.size, n_levels, len(quad),
                     time.perf_counter() - started)
        return StrategyState(distribution, survival, recovery, loadings, grid_size,
                             checkpoints)

    def refit(self, state: StrategyState, names: NameCollection,
              correlation: CorrelationModel, copula: Copula,
              min_index: int = 0) -> StrategyState:
        """Recompute names from ``min_index`` on, for dates whose inputs changed.

        The recursion restarts from the last checkpoint at or before
        ``min_index``, so the result equals a full recomputation.
        """
        dist = state.distribution
        dates = dist.dates
        n = len(names)
        loadings = correlation.factor_loadings(names) if n else np.zeros(0)
        survival = names.survival_probabilities(dates)
        recovery = names.recovery_rates(dates)
        weights = names.weights
        grid_size = resolve_grid_size(self.grid_size, weights, recovery)
        if (not state.checkpoints or survival.shape != state.survival.shape
                or grid_size != state.grid_size
                or not np.array_equal(loadings, state.loadings)):
            return self.build(names, correlation, copula, dates)

        min_index = max(0, min(min_index, n))
        changed = ((survival[min_index:] != state.survival[min_index:])
                   | (recovery[min_index:] != state.recovery[min_index:]))
        rows = changed.any(axis=0)
        if not rows.any():
            return StrategyState(dist, survival, recovery, loadings, grid_size,
                                 state.checkpoints)

        started = time.perf_counter()
        start = self._checkpoint_index(min_index)
        name_start = start * self.checkpoint_interval
        quad = copula.quadrature()
        checkpoints = [None if cp is None else tuple(a.copy() for a in cp)
                       for cp in state.checkpoints]
        arrays = tuple(a[rows] for a in checkpoints[start])
        loss, amort, counts = self._recurse(
            names, copula, quad, loadings, survival, recovery, weights, grid_size,
            dates, rows, name_start, arrays, checkpoints)

        loss_probabilities = dist.loss_probabilities.copy()
        amortization_probabilities = dist.amortization_probabilities.copy()
        count_probabilities = dist.default_count_probabilities.copy()
        loss_probabilities[rows] = np.einsum("dml,m->dl", loss, quad.weights)
        amortization_probabilities[rows] = np.einsum("dml,m->dl", amort, quad.weights)
        count_probabilities[rows] = np.einsum("dmk,m->dk", counts, quad.weights)
        distribution = LossDistribution(dates, dist.loss_levels, loss_probabilities,
                                        amortization_probabilities, count_probabilities,
                                        grid_size)
        logger.debug("Refit from name %d (checkpoint at %d) on %d of %d dates in %.3fs",
                     min_index, name_start, int(rows.sum()), dates.size,
                     time.perf_counter() - started)
        return StrategyState(distribution, survival, recovery, loadings, grid_size,
                             checkpoints)

    def _recovery_outcomes(self, name, recovery_row: np.ndarray,
                           dates: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Recovery values per date and outcome, plus outcome probabilities."""
        curve = name.recovery_curve
        if not curve.is_random:
            return recovery_row[:, None], np.array([1.0])
        points = [curve.discretize(t, self.recovery_points) for t in dates]
        values = np.vstack([v for v, _ in points])
        return values, points[0][1]

    def _recurse(self, names: NameCollection, copula: Copula, quad: Quadrature,
                 loadings: np.ndarray, survival: np.ndarray, recovery: np.ndarray,
                 weights: np.ndarray, grid_size: float, dates: np.ndarray,
                 rows: np.ndarray, start: int, arrays, checkpoints):
        loss, amort, counts = arrays
        row_dates = dates[rows]
        thresholds = copula.threshold(1.0 - survival[start:, rows],
                                      loadings[start:, None]) if len(names) > start else None
        count_shift = np.ones((row_dates.size, 1), dtype=int)

        for offset, name in enumerate(names.names[start:]):
            i = start + offset
            if i > start and self.checkpoint_interval and i % self.checkpoint_interval == 0:
                stored = checkpoints[i // self.checkpoint_interval]
                if stored is None:
                    stored = tuple(np.zeros((dates.size,) + a.shape[1:]) for a in arrays)
                    checkpoints[i // self.checkpoint_interval] = stored
                for target, current in zip(stored, (loss, amort, counts)):
                    target[rows] = current

            p = copula.conditional_default_probability(
                thresholds[offset][:, None], loadings[i], quad.factors[None, :],
                quad.scales[None, :])
            values, probs = self._recovery_outcomes(name, recovery[i, rows], row_dates)
            loss = _convolve(loss, p, snap_to_grid(weights[i] * (1.0 - values), grid_size), probs)
            amort = _convolve(amort, p, snap_to_grid(weights[i] * values, grid_size), probs)
            counts = _convolve(counts, p, count_shift, [1.0])
        return loss, amort, counts


class HomogeneousStrategy(LossDistributionStrategy):
    """Binomial mixture for baskets of identical names.

    k defaults map to k × (single-name grid steps), which is exactly what the
    heterogeneous recursion produces for identical names. Baskets that are
    not homogeneous are delegated to ``HeterogeneousStrategy``.
    """

    name = "homogeneous"

    def __init__(self, grid_size: float = 0.0, checkpoint_interval: int = 20):
        super().__init__(grid_size)
        self._fallback = HeterogeneousStrategy(grid_size,
                                               checkpoint_interval=checkpoint_interval)

    def build(self, names: NameCollection, correlation: CorrelationModel,
              copula: Copula, dates: Sequence[float]) -> StrategyState:
        dates = np.asarray(dates, dtype=float)
        n = len(names)
        loadings = correlation.factor_loadings(names) if n else np.zeros(0)
        if n == 0 or not names.is_homogeneous(dates, loadings):
            if n:
                logger.warning("Basket '%s' is not homogeneous; using the heterogeneous "
                               "recursion", names.label)
            state = self._fallback.build(names, correlation, copula, dates)
            state.fallback = True
            return state

        started = time.perf_counter()
        survival = names.survival_probabilities(dates)
        recovery = names.recovery_rates(dates)
        weights = names.weights
        grid_size = resolve_grid_size(self.grid_size, weights, recovery)
        n_levels = level_count(weights, grid_size)
        quad = copula.quadrature()

        thresholds = copula.threshold(1.0 - survival[0], loadings[0])
        p = copula.conditional_default_probability(
            thresholds[:, None], loadings[0], quad.factors[None, :], quad.scales[None, :])
        k = np.arange(n + 1)
        pmf = stats.binom.pmf(k[None, None, :], n, p[..., None])
        counts = np.einsum("dmk,m->dk", pmf, quad.weights)

        loss_steps = snap_to_grid(weights[0] * (1.0 - recovery[0]), grid_size)
        amort_steps = snap_to_grid(weights[0] * recovery[0], grid_size)
        loss = np.zeros((dates.size, n_levels))
        amort = np.zeros_like(loss)
        for j in range(dates.size):
            np.add.at(loss[j], k * loss_steps[j], counts[j])
            np.add.at(amort[j], k * amort_steps[j], counts[j])

        distribution = LossDistribution(dates, np.arange(n_levels) * grid_size, loss,
                                        amort, counts, grid_size)
        logger.debug("Homogeneous loss distribution: %d names, %d dates in %.3fs",
                     n, dates.size, time.perf_counter() - started)
        return StrategyState(distribution, survival, recovery, loadings, grid_size)

    def refit(self, state: StrategyState, names: NameCollection,
              correlation: CorrelationModel, copula: Copula,
              min_index: int = 0) -> StrategyState:
        dates = state.distribution.dates
        if state.fallback and len(names):
            loadings = correlation.factor_loadings(names)
            if not names.is_homogeneous(dates, loadings):
                refitted = self._fallback.refit(state, names, correlation, copula, min_index)
                refitted.fallback = True
                return refitted
        return self.build(names, correlation, copula, dates)

"""Basket pricer: a cached loss distribution shared by tranche pricers."""

import logging
from typing import Iterable, List, Optional, Sequence, Tuple
import numpy as np

from .copula import Copula
from .correlation import CorrelationModel
from .distribution import LossDistribution
from .errors import BasketConfigurationError, BasketValidationError, StaleBasketError
from .names import NameCollection
from .semi_analytic import HeterogeneousStrategy, LossDistributionStrategy, StrategyState
from .simulation import MonteCarloStrategy
from .timegrid import build_date_grid

logger = logging.getLogger(__name__)


class BasketPricer:
    """Loss distribution of a basket of names, computed once and cached.

    The cache records the date grid, the basket composition, the copula and
    the version stamps of every curve and of the correlation. A query on a
    cache whose inputs have since changed either refits automatically from
    the first changed name (``auto_refit=True``) or raises
    ``StaleBasketError``.

    Computations are all-or-nothing: a failed ``compute`` or ``refit`` keeps
    the previous cache. The pricer is not safe for concurrent mutation;
    concurrent read-only queries on a valid cache are.
    """

    def __init__(self, names: NameCollection, correlation: CorrelationModel,
                 copula: Optional[Copula] = None,
                 strategy: Optional[LossDistributionStrategy] = None,
                 start: float = 0.0, maturity: float = 5.0,
                 step_size: int = 3, step_unit: str = "M",
                 add_grid_dates: Optional[Iterable[float]] = None,
                 auto_refit: bool = True):
        """Initialize the basket.

        Args:
            names: Names of the basket, in recursion order
            correlation: Correlation model
            copula: Copula (Gaussian if None)
            strategy: Loss distribution strategy (heterogeneous if None)
            start: Portfolio start (first grid date)
            maturity: Last grid date
            step_size: Grid step size
            step_unit: Grid step unit ('D', 'W', 'M', 'Q', 'Y')
            add_grid_dates: Extra dates to include in the grid
            auto_refit: Refit stale caches on query instead of raising
        """
        self.names = names
        self.correlation = correlation
        self.copula = copula if copula is not None else Copula()
        self.strategy = strategy if strategy is not None else HeterogeneousStrategy()
        if (not correlation.is_factor_model
                and not isinstance(self.strategy, MonteCarloStrategy)):
            raise BasketConfigurationError(
                "A general correlation matrix needs the Monte Carlo strategy"
            )
        self.start = start
        self.maturity = maturity
        self.step_size = step_size
        self.step_unit = step_unit
        self.add_grid_dates = list(add_grid_dates) if add_grid_dates is not None else []
        self.auto_refit = auto_refit
        self._requested_dates: Optional[np.ndarray] = None
        # Validate the grid parameters eagerly
        build_date_grid(start, maturity, step_size, step_unit)

        self._state: Optional[StrategyState] = None
        self._key: Optional[Tuple] = None
        self._curve_versions: List[Tuple[int, int]] = []
        self._correlation_version: Optional[int] = None

    # Cache bookkeeping

    def _grid(self) -> np.ndarray:
        if self._requested_dates is not None:
            return self._requested_dates
        return build_date_grid(self.start, self.maturity, self.step_size,
                               self.step_unit, self.add_grid_dates)

    def _structure_key(self, dates: np.ndarray) -> Tuple:
        return (tuple(dates.tolist()), self.names.composition_hash(), self.copula,
                id(self.correlation))

    def _store(self, state: StrategyState) -> None:
        self._state = state
        self._key = self._structure_key(state.distribution.dates)
        self._curve_versions = self.names.curve_versions()
        self._correlation_version = self.correlation.version

    @property
    def is_computed(self) -> bool:
        return self._state is not None

    @property
    def is_stale(self) -> bool:
        """Whether inputs changed since the last computation."""
        return self._is_stale_on(self._grid())

    def _is_stale_on(self, grid: np.ndarray) -> bool:
        if self._state is None:
            return True
        return (self._key != self._structure_key(grid)
                or self._correlation_version != self.correlation.version
                or self._curve_versions != self.names.curve_versions())

    def _first_changed_name(self) -> int:
        current = self.names.curve_versions()
        for i, (old, new) in enumerate(zip(self._curve_versions, current)):
            if old != new:
                return i
        return min(len(self._curve_versions), len(current))

    def _check_valid(self) -> None:
        errors = self.validate([])
        if errors:
            raise BasketValidationError(errors, context=f"Basket '{self.names.label}'")

    def _ensure(self) -> StrategyState:
        if not self.is_stale:
            return self._state
        if self._state is not None and not self.auto_refit:
            raise StaleBasketError(
                f"Inputs of basket '{self.names.label}' changed since the last "
                "computation; call refit() or reset()"
            )
        if (self._state is None or self._key != self._structure_key(self._grid())
                or self._correlation_version != self.correlation.version):
            self.compute()
        else:
            self.refit(self._first_changed_name())
        return self._state

    # Computation

    def compute(self, dates: Optional[Sequence[float]] = None) -> LossDistribution:
        """Compute the loss distribution on the grid (or on ``dates``).

        Idempotent: returns the cached distribution if nothing changed.
        """
        if dates is not None:
            grid = np.unique(np.asarray(dates, dtype=float))
            if grid.size == 0:
                raise BasketConfigurationError("At least one date is needed")
        else:
            grid = self._grid()
        if not self._is_stale_on(grid):
            return self._state.distribution

        self._check_valid()
        logger.debug("Computing basket '%s' with %s strategy on %d dates",
                     self.names.label, self.strategy.name, grid.size)
        state = self.strategy.build(self.names, self.correlation, self.copula, grid)
        if dates is not None:
            self._requested_dates = grid
        self._store(state)
        return state.distribution

    def refit(self, min_index: int = 0) -> LossDistribution:
        """Recompute names from ``min_index`` on.

        The result equals ``reset()`` followed by ``compute()`` as long as
        names before ``min_index`` did not change.
        """
        if (self._state is None or self._key != self._structure_key(self._grid())
                or self._correlation_version != self.correlation.version):
            self._state = None
            return self.compute()
        self._check_valid()
        logger.debug("Refitting basket '%s' from name %d", self.names.label, min_index)
        state = self.strategy.refit(self._state, self.names, self.correlation,
                                    self.copula, min_index)
        self._store(state)
        return state.distribution

    def reset(self) -> None:
        """Invalidate the cache."""
        self._state = None
        self._key = None
        self._curve_versions = []
        self._correlation_version = None

    def validate(self, errors: List[str]) -> List[str]:
        """Append domain violations of the basket inputs to ``errors``."""
        self.names.validate(errors)
        self.correlation.validate(errors)
        self.strategy.validate(errors)
        if self.maturity < self.start:
            errors.append(f"maturity {self.maturity} is before start {self.start}")
        return errors

    # Queries

    @property
    def distribution(self) -> LossDistribution:
        return self._ensure().distribution

    @property
    def dates(self) -> np.ndarray:
        return self.distribution.dates

    @property
    def total_principal(self) -> float:
        return self.names.total_principal

    def loss_distribution(self, t: float) -> np.ndarray:
        """Loss level probabilities at date t."""
        return self.distribution.probabilities(t)

    def default_count_probabilities(self, t: float) -> np.ndarray:
        return self.distribution.default_counts(t)

    def nth_default_probability(self, n: int, t: float) -> float:
        """Probability of at least n defaults by date t."""
        return self.distribution.nth_default_probability(n, t)

    def expected_loss(self, t: float) -> float:
        return self.distribution.expected_loss(t)

    def tranche_expected_loss(self, attachment: float, detachment: float, t: float) -> float:
        """E[min(max(L - a, 0), d - a)] by date t, as a fraction of basket principal."""
        return self.distribution.tranche_loss(attachment, detachment, t)

    def tranche_expected_amortization(self, attachment: float, detachment: float,
                                      t: float) -> float:
        return self.distribution.tranche_amortization(attachment, detachment, t)

    def tranche_survival(self, attachment: float, detachment: float, t: float) -> float:
        """Expected remaining tranche notional as a fraction of the tranche size."""
        width = detachment - attachment
        if width <= 0:
            return 0.0
        written_down = (self.tranche_expected_loss(attachment, detachment, t)
                        + self.tranche_expected_amortization(attachment, detachment, t))
        return max(0.0, 1.0 - written_down / width)

    def __repr__(self) -> str:
        return (f"BasketPricer(names={len(self.names)}, strategy={self.strategy.name}, "
                f"copula={self.copula.copula_type.value}, maturity={self.maturity})")

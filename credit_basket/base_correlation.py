"""Base correlation: tranche-implied correlation by detachment strike.

A tranche [a, d] is priced as the difference of the equity tranches [0, d]
and [0, a], each valued with a single-factor basket at the base correlation
of its own strike.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence
import numpy as np
from scipy.interpolate import interp1d

from .basket import BasketPricer
from .copula import Copula
from .correlation import SingleFactorCorrelation
from .curves import next_version
from .errors import BasketConfigurationError
from .names import NameCollection
from .semi_analytic import HeterogeneousStrategy

logger = logging.getLogger(__name__)

STRIKE_METHODS = ("unscaled", "expected_loss")


class BaseCorrelation:
    """Base correlation curve indexed by detachment strike.

    Strikes are mapped from detachments by ``strike_method``:
        - 'unscaled': strike = detachment
        - 'expected_loss': strike = detachment / expected basket loss at maturity
    """

    def __init__(self, strikes: Sequence[float], correlations: Sequence[float],
                 strike_method: str = "unscaled", interp: str = "linear",
                 extrap: str = "const", rescale_strikes: bool = False):
        """Initialize the curve.

        Args:
            strikes: Strictly increasing strikes
            correlations: Base correlation per strike (between 0 and 1)
            strike_method: 'unscaled' or 'expected_loss'
            interp: Interpolation between strikes ('linear' or 'nearest')
            extrap: Extrapolation beyond the strikes ('const' or 'linear')
            rescale_strikes: Remap strikes whenever the basket changes
        """
        strikes = np.asarray(strikes, dtype=float)
        correlations = np.asarray(correlations, dtype=float)
        if strikes.size == 0 or strikes.shape != correlations.shape:
            raise BasketConfigurationError(
                f"strikes and correlations must be non-empty and of the same length, "
                f"got {strikes.size} and {correlations.size}"
            )
        if np.any(np.diff(strikes) <= 0):
            raise BasketConfigurationError("Strikes must be strictly increasing")
        if strike_method not in STRIKE_METHODS:
            raise BasketConfigurationError(
                f"Unknown strike method: {strike_method}. Choose from: {', '.join(STRIKE_METHODS)}"
            )
        if interp not in ("linear", "nearest"):
            raise BasketConfigurationError(f"Unknown interpolation: {interp}")
        if extrap not in ("const", "linear"):
            raise BasketConfigurationError(f"Unknown extrapolation: {extrap}")
        self._strikes = strikes
        self.strike_method = strike_method
        self.interp = interp
        self.extrap = extrap
        self.rescale_strikes = rescale_strikes
        self.set_correlations(correlations)

    @property
    def version(self) -> int:
        return self._version

    @property
    def strikes(self) -> np.ndarray:
        return self._strikes.copy()

    @property
    def correlations(self) -> np.ndarray:
        return self._correlations.copy()

    def set_correlations(self, correlations: Sequence[float]) -> None:
        correlations = np.asarray(correlations, dtype=float)
        if correlations.shape != self._strikes.shape:
            raise BasketConfigurationError(
                f"Expected {self._strikes.size} correlations, got {correlations.size}"
            )
        if np.any(correlations < 0) or np.any(correlations > 1):
            raise BasketConfigurationError("Base correlations must be between 0 and 1")
        self._correlations = correlations.copy()
        if self._strikes.size == 1:
            self._interpolator = None
        else:
            fill = "extrapolate" if self.extrap == "linear" else (
                self._correlations[0], self._correlations[-1])
            self._interpolator = interp1d(self._strikes, self._correlations,
                                          kind=self.interp, bounds_error=False,
                                          fill_value=fill)
        self._version = next_version()

    def bump(self, amount: float, relative: bool = False) -> None:
        """Shift every base correlation, clipped to [0, 1]."""
        bumped = self._correlations * (1.0 + amount) if relative else self._correlations + amount
        self.set_correlations(np.clip(bumped, 0.0, 1.0))

    def correlation(self, strike: float) -> float:
        """Interpolated base correlation at a strike, clipped to [0, 1]."""
        if self._interpolator is None:
            return float(self._correlations[0])
        return float(np.clip(self._interpolator(strike), 0.0, 1.0))

    def map_strike(self, detachment: float, names: NameCollection, maturity: float) -> float:
        """Strike of an equity tranche with the given detachment."""
        if self.strike_method == "unscaled":
            return detachment
        expected_loss = names.expected_loss(maturity)
        if expected_loss <= 0:
            raise BasketConfigurationError(
                "Expected loss strikes need a positive expected basket loss"
            )
        return detachment / expected_loss

    def validate(self, errors: List[str]) -> List[str]:
        if np.any(~np.isfinite(self._correlations)):
            errors.append("base correlations must be finite")
        return errors

    def __repr__(self) -> str:
        return (f"BaseCorrelation(strikes={self._strikes.tolist()}, "
                f"correlations={self._correlations.tolist()}, method={self.strike_method!r})")


class BaseCorrelationBasketPricer:
    """Prices tranches off a base correlation curve.

    One heterogeneous basket is kept per detachment, sharing the name
    collection, so curve changes propagate through the usual refit logic.
    """

    def __init__(self, names: NameCollection, base_correlation: BaseCorrelation,
                 copula: Optional[Copula] = None, start: float = 0.0,
                 maturity: float = 5.0, step_size: int = 3, step_unit: str = "M",
                 grid_size: float = 0.0,
                 add_grid_dates: Optional[Iterable[float]] = None,
                 auto_refit: bool = True):
        self.names = names
        self.base_correlation = base_correlation
        self.copula = copula if copula is not None else Copula()
        self.start = start
        self.maturity = maturity
        self.step_size = step_size
        self.step_unit = step_unit
        self.grid_size = grid_size
        self.add_grid_dates = list(add_grid_dates) if add_grid_dates is not None else []
        self.auto_refit = auto_refit
        self._baskets: Dict[float, BasketPricer] = {}
        self._mapped: Dict[float, tuple] = {}

    def _inputs_stamp(self) -> tuple:
        return (self.names.composition_hash(), tuple(self.names.curve_versions()))

    def strike(self, detachment: float) -> float:
        """Mapped strike of the equity tranche [0, detachment]."""
        stamp = self._inputs_stamp()
        cached = self._mapped.get(detachment)
        if cached is not None:
            mapped_at, strike = cached
            if mapped_at == stamp or not self.base_correlation.rescale_strikes:
                return strike
        strike = self.base_correlation.map_strike(detachment, self.names, self.maturity)
        self._mapped[detachment] = (stamp, strike)
        return strike

    def basket(self, detachment: float) -> BasketPricer:
        """Basket of the equity tranche [0, detachment] at its base correlation."""
        rho = self.base_correlation.correlation(self.strike(detachment))
        factor = float(np.sqrt(rho))
        basket = self._baskets.get(detachment)
        if basket is None:
            correlation = SingleFactorCorrelation(self.names, factor)
            basket = BasketPricer(
                self.names, correlation, self.copula,
                HeterogeneousStrategy(grid_size=self.grid_size),
                start=self.start, maturity=self.maturity, step_size=self.step_size,
                step_unit=self.step_unit, add_grid_dates=self.add_grid_dates,
                auto_refit=self.auto_refit)
            self._baskets[detachment] = basket
            logger.debug("Base correlation basket for detachment %.4f at correlation %.4f",
                         detachment, rho)
        elif basket.correlation.factor != factor:
            basket.correlation.set_factor(factor)
            basket.refit(0)
        return basket

    def equity_loss(self, detachment: float, t: float) -> float:
        """Expected loss of the equity tranche [0, detachment] by date t."""
        if detachment <= 0:
            return 0.0
        return self.basket(detachment).tranche_expected_loss(0.0, detachment, t)

    def tranche_expected_loss(self, attachment: float, detachment: float, t: float) -> float:
        if not 0 <= attachment <= detachment <= 1:
            raise BasketConfigurationError(
                f"Need 0 <= attachment <= detachment <= 1, got [{attachment}, {detachment}]"
            )
        return self.equity_loss(detachment, t) - self.equity_loss(attachment, t)

    def tranche_expected_amortization(self, attachment: float, detachment: float,
                                      t: float) -> float:
        """Amortization of [a, d], taken from the basket at the detachment."""
        if detachment <= attachment:
            return 0.0
        return self.basket(detachment).tranche_expected_amortization(attachment, detachment, t)

    def expected_loss(self, t: float) -> float:
        return self.names.expected_loss(t)

    def refit(self, min_index: int = 0) -> None:
        for basket in self._baskets.values():
            basket.refit(min_index)

    def reset(self) -> None:
        self._mapped.clear()
        for basket in self._baskets.values():
            basket.reset()

    def validate(self, errors: List[str]) -> List[str]:
        self.names.validate(errors)
        self.base_correlation.validate(errors)
        return errors

"""Survival and discount curves consumed by the basket engine.

Curves are deliberately small: piecewise-constant hazard survival curves and
linearly interpolated zero-rate discount curves, with times in year fractions.
Calibration lives elsewhere. Every in-place mutation of a survival curve takes
a fresh version stamp so that baskets can tell when their cached results were
computed against older inputs.
"""

import itertools
import math
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence, Union
import numpy as np

from .errors import BasketConfigurationError

ArrayLike = Union[float, Sequence[float], np.ndarray]

_versions = itertools.count(1)


def next_version() -> int:
    """Return a process-wide unique, increasing version stamp."""
    return next(_versions)


class SurvivalCurve:
    """Survival curve with piecewise-constant hazard rates.

    The hazard ``hazard_rates[i]`` applies on ``(tenors[i-1], tenors[i]]``
    (with ``tenors[-1]`` read as 0 for the first segment) and the last hazard
    is extended flat beyond the last tenor.

    A curve may carry a known default time (``defaulted_at``): the name
    defaults at that time and the survival probability is zero from there on.
    """

    def __init__(self, tenors: Sequence[float], hazard_rates: Sequence[float],
                 name: Optional[str] = None,
                 default_time: Optional[float] = None):
        """Initialize the curve.

        Args:
            tenors: Strictly increasing positive tenor times (years)
            hazard_rates: Hazard rate per tenor segment
            name: Optional curve name (usually the reference entity)
            default_time: Optional known default time
        """
        tenors = np.asarray(tenors, dtype=float)
        hazard_rates = np.asarray(hazard_rates, dtype=float)
        if tenors.ndim != 1 or tenors.size == 0:
            raise BasketConfigurationError("Survival curve needs at least one tenor")
        if tenors.shape != hazard_rates.shape:
            raise BasketConfigurationError(
                f"tenors and hazard_rates must have the same length, "
                f"got {tenors.size} and {hazard_rates.size}"
            )
        if tenors[0] <= 0 or np.any(np.diff(tenors) <= 0):
            raise BasketConfigurationError("Tenors must be positive and strictly increasing")

        self.name = name
        self.defaulted_at = default_time
        self._tenors = tenors
        self._hazard_rates = hazard_rates.copy()
        self._cumulative = np.zeros_like(tenors)
        self.refit(0)

    @classmethod
    def flat(cls, hazard_rate: float, name: Optional[str] = None) -> "SurvivalCurve":
        """Curve with a single constant hazard rate."""
        return cls([1.0], [hazard_rate], name=name)

    @classmethod
    def from_survival_probability(cls, probability: float, horizon: float,
                                  name: Optional[str] = None) -> "SurvivalCurve":
        """Flat-hazard curve matching a survival probability at a horizon.

        A probability of zero gives a curve that is defaulted from time 0.
        """
        if not 0 <= probability <= 1:
            raise BasketConfigurationError(
                f"Survival probability must be between 0 and 1, got {probability}"
            )
        if horizon <= 0:
            raise BasketConfigurationError(f"Horizon must be positive, got {horizon}")
        if probability == 0:
            return cls.defaulted(0.0, name=name)
        return cls.flat(-math.log(probability) / horizon, name=name)

    @classmethod
    def defaulted(cls, default_time: float, name: Optional[str] = None) -> "SurvivalCurve":
        """Curve of a name known to default at ``default_time``."""
        return cls([1.0], [0.0], name=name, default_time=default_time)

    @property
    def tenors(self) -> np.ndarray:
        return self._tenors.copy()

    @property
    def hazard_rates(self) -> np.ndarray:
        return self._hazard_rates.copy()

    @property
    def version(self) -> int:
        """Version stamp, renewed by every mutation."""
        return self._version

    def cumulative_hazard(self, t: ArrayLike) -> ArrayLike:
        """Integrated hazard from 0 to t."""
        t_arr = np.maximum(np.asarray(t, dtype=float), 0.0)
        knots_t = np.concatenate([[0.0], self._tenors])
        knots_h = np.concatenate([[0.0], self._cumulative])
        inside = np.interp(t_arr, knots_t, knots_h)
        beyond = self._cumulative[-1] + self._hazard_rates[-1] * (t_arr - self._tenors[-1])
        result = np.where(t_arr > self._tenors[-1], beyond, inside)
        return float(result) if result.ndim == 0 else result

    def survival_probability(self, t: ArrayLike) -> ArrayLike:
        """Probability of surviving past time t."""
        t_arr = np.asarray(t, dtype=float)
        surv = np.exp(-np.asarray(self.cumulative_hazard(t_arr)))
        if self.defaulted_at is not None:
            surv = np.where(t_arr >= self.defaulted_at, 0.0, surv)
        return float(surv) if surv.ndim == 0 else surv

    def default_probability(self, t: ArrayLike) -> ArrayLike:
        """Probability of defaulting on or before time t."""
        surv = self.survival_probability(t)
        return 1.0 - surv

    def default_time(self, u: ArrayLike) -> ArrayLike:
        """Invert the curve: time at which the default probability reaches u.

        Args:
            u: Uniform variate(s) in [0, 1)

        Returns:
            Default time(s); ``np.inf`` when the name never defaults
        """
        u_arr = np.clip(np.asarray(u, dtype=float), 0.0, 1.0)
        with np.errstate(divide="ignore", invalid="ignore"):
            target = -np.log1p(-u_arr)
            knots_t = np.concatenate([[0.0], self._tenors])
            knots_h = np.concatenate([[0.0], self._cumulative])
            idx = np.searchsorted(knots_h, target, side="left")
            seg = np.clip(idx - 1, 0, self._tenors.size - 1)
            inside = knots_t[seg] + (target - knots_h[seg]) / self._hazard_rates[seg]
            beyond = self._tenors[-1] + (target - self._cumulative[-1]) / self._hazard_rates[-1]
            tau = np.where(idx > self._tenors.size, beyond, inside)
            tau = np.where(idx == 0, 0.0, tau)
            tau = np.where(np.isnan(tau), np.inf, tau)
        if self.defaulted_at is not None:
            tau = np.where(u_arr > 0, np.minimum(tau, self.defaulted_at), tau)
        return float(tau) if tau.ndim == 0 else tau

    def bump_quote(self, amount: float, tenor_indexes: Optional[Sequence[int]] = None,
                   relative: bool = False) -> None:
        """Bump hazard rates in place and refit from the first bumped tenor.

        If no tenors are specified, all tenor points are bumped.

        Args:
            amount: Absolute hazard bump, or relative bump if ``relative``
            tenor_indexes: Tenor points to bump (None = all)
            relative: Bump proportionally instead of additively
        """
        if tenor_indexes is None:
            tenor_indexes = range(self._tenors.size)
        indexes = sorted(set(tenor_indexes))
        if not indexes:
            return
        bumped = self._hazard_rates.copy()
        for i in indexes:
            if relative:
                bumped[i] *= 1.0 + amount
            else:
                bumped[i] += amount
        if np.any(bumped < 0):
            raise BasketConfigurationError(
                f"Bump of {amount} makes hazard rates negative on curve '{self.name}'"
            )
        self._hazard_rates = bumped
        self.refit(indexes[0])

    def set_hazard_rates(self, hazard_rates: Sequence[float]) -> None:
        """Replace all hazard rates in place."""
        hazard_rates = np.asarray(hazard_rates, dtype=float)
        if hazard_rates.shape != self._tenors.shape:
            raise BasketConfigurationError(
                f"Expected {self._tenors.size} hazard rates, got {hazard_rates.size}"
            )
        self._hazard_rates = hazard_rates.copy()
        self.refit(0)

    def refit(self, from_tenor_index: int = 0) -> None:
        """Rebuild the integrated hazard from a tenor onward and renew the version."""
        start = max(0, from_tenor_index)
        prev_t = self._tenors[start - 1] if start > 0 else 0.0
        prev_h = self._cumulative[start - 1] if start > 0 else 0.0
        for i in range(start, self._tenors.size):
            prev_h += self._hazard_rates[i] * (self._tenors[i] - prev_t)
            self._cumulative[i] = prev_h
            prev_t = self._tenors[i]
        self._version = next_version()

    @contextmanager
    def bumped(self, amount: float, tenor_indexes: Optional[Sequence[int]] = None,
               relative: bool = False) -> Iterator["SurvivalCurve"]:
        """Temporarily bump the curve; the original hazards are restored on exit."""
        saved = self._hazard_rates.copy()
        self.bump_quote(amount, tenor_indexes, relative)
        try:
            yield self
        finally:
            self._hazard_rates = saved
            self.refit(0)

    def validate(self, errors: List[str]) -> List[str]:
        """Append domain violations to ``errors`` and return it."""
        label = self.name or "survival curve"
        if np.any(~np.isfinite(self._hazard_rates)):
            errors.append(f"{label}: hazard rates must be finite")
        if np.any(self._hazard_rates < 0):
            errors.append(f"{label}: hazard rates must be non-negative")
        if self.defaulted_at is not None and self.defaulted_at < 0:
            errors.append(f"{label}: default time must be non-negative")
        return errors

    def copy(self) -> "SurvivalCurve":
        return SurvivalCurve(self._tenors, self._hazard_rates, name=self.name,
                             default_time=self.defaulted_at)

    def __repr__(self) -> str:
        return (f"SurvivalCurve(name={self.name!r}, tenors={self._tenors.tolist()}, "
                f"hazard_rates={self._hazard_rates.tolist()})")


class DiscountCurve:
    """Continuously compounded zero curve with linear interpolation in rates.

    Rates are extrapolated flat beyond the end pillars.
    """

    def __init__(self, tenors: Sequence[float], zero_rates: Sequence[float],
                 name: Optional[str] = None):
        tenors = np.asarray(tenors, dtype=float)
        zero_rates = np.asarray(zero_rates, dtype=float)
        if tenors.size == 0 or tenors.shape != zero_rates.shape:
            raise BasketConfigurationError(
                "tenors and zero_rates must be non-empty and of the same length"
            )
        if np.any(np.diff(tenors) <= 0):
            raise BasketConfigurationError("Tenors must be strictly increasing")
        self.name = name
        self._tenors = tenors
        self._zero_rates = zero_rates

    @classmethod
    def flat(cls, rate: float, name: Optional[str] = None) -> "DiscountCurve":
        return cls([1.0], [rate], name=name)

    def zero_rate(self, t: ArrayLike) -> ArrayLike:
        rate = np.interp(np.asarray(t, dtype=float), self._tenors, self._zero_rates)
        return float(rate) if np.ndim(rate) == 0 else rate

    def discount_factor(self, start: ArrayLike, end: Optional[ArrayLike] = None) -> ArrayLike:
        """Discount factor to ``start``, or from ``start`` to ``end`` if given."""
        if end is not None:
            ratio = np.asarray(self.discount_factor(end)) / np.asarray(self.discount_factor(start))
            return float(ratio) if ratio.ndim == 0 else ratio
        t = np.maximum(np.asarray(start, dtype=float), 0.0)
        df = np.exp(-np.asarray(self.zero_rate(t)) * t)
        return float(df) if df.ndim == 0 else df

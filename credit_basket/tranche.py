"""Tranche pricing on top of a shared loss distribution provider."""

from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple
import numpy as np

from .curves import DiscountCurve
from .errors import BasketConfigurationError


class LossDistributionProvider(Protocol):
    """Anything that returns expected tranche losses as a fraction of the
    basket principal (``BasketPricer``, ``BaseCorrelationBasketPricer``,
    ``NthToDefaultLossProvider``)."""

    def tranche_expected_loss(self, attachment: float, detachment: float,
                              t: float) -> float:
        ...

    def tranche_expected_amortization(self, attachment: float, detachment: float,
                                      t: float) -> float:
        ...


@dataclass(frozen=True)
class Tranche:
    """A slice [attachment, detachment] of the basket capital structure.

    Attributes:
        attachment: Lower bound as a fraction of basket principal
        detachment: Upper bound as a fraction of basket principal
        premium: Running premium (annual, decimal)
        upfront_fee: Upfront fee as a fraction of tranche notional
        notional: Tranche notional amount
    """
    attachment: float
    detachment: float
    premium: float = 0.0
    upfront_fee: float = 0.0
    notional: float = 1.0

    def __post_init__(self):
        if not 0 <= self.attachment < self.detachment <= 1:
            raise BasketConfigurationError(
                f"Need 0 <= attachment < detachment <= 1, "
                f"got [{self.attachment}, {self.detachment}]"
            )
        if self.notional < 0:
            raise BasketConfigurationError(f"Notional must be non-negative, got {self.notional}")

    @property
    def width(self) -> float:
        return self.detachment - self.attachment


@dataclass(frozen=True, eq=False)
class PaymentSchedule:
    """Premium payment periods.

    Attributes:
        accrual_starts: Start of each accrual period
        payment_dates: End (and payment date) of each period
    """
    accrual_starts: np.ndarray
    payment_dates: np.ndarray

    def __post_init__(self):
        starts = np.asarray(self.accrual_starts, dtype=float)
        ends = np.asarray(self.payment_dates, dtype=float)
        if starts.shape != ends.shape or starts.ndim != 1:
            raise BasketConfigurationError("Accrual starts and payment dates must match")
        if np.any(ends <= starts) or np.any(np.diff(ends) <= 0):
            raise BasketConfigurationError("Payment periods must be ordered and non-empty")
        object.__setattr__(self, "accrual_starts", starts)
        object.__setattr__(self, "payment_dates", ends)

    @classmethod
    def regular(cls, maturity: float, frequency: int = 4,
                effective: float = 0.0) -> "PaymentSchedule":
        """Regular schedule rolled back from maturity, short stub first."""
        if frequency <= 0:
            raise BasketConfigurationError(f"Frequency must be positive, got {frequency}")
        if maturity <= effective:
            raise BasketConfigurationError("Maturity must be after the effective date")
        step = 1.0 / frequency
        ends = []
        t = maturity
        while t > effective + 1e-10:
            ends.append(t)
            t = maturity - len(ends) * step
        ends = np.array(ends[::-1])
        starts = np.concatenate([[effective], ends[:-1]])
        return cls(starts, ends)

    @property
    def accrual_fractions(self) -> np.ndarray:
        return self.payment_dates - self.accrual_starts

    @property
    def maturity(self) -> float:
        return float(self.payment_dates[-1])

    def periods(self) -> List[Tuple[float, float]]:
        return list(zip(self.accrual_starts.tolist(), self.payment_dates.tolist()))

    def __len__(self) -> int:
        return self.payment_dates.size


class TranchePricer:
    """Values a tranche against a loss distribution provider.

    The provider is shared, not owned: several pricers may reference the
    same basket. Values are from the protection buyer's side, so
    ``pv = protection_pv - fee_pv``.
    """

    def __init__(self, provider: LossDistributionProvider, tranche: Tranche,
                 discount_curve: DiscountCurve, schedule: PaymentSchedule,
                 as_of: float = 0.0):
        self.provider = provider
        self.tranche = tranche
        self.discount_curve = discount_curve
        self.schedule = schedule
        self.as_of = as_of

    def _loss_fraction(self, t: float) -> float:
        t = max(t, self.as_of)
        tr = self.tranche
        return self.provider.tranche_expected_loss(tr.attachment, tr.detachment, t) / tr.width

    def _outstanding(self, t: float) -> float:
        """Expected remaining tranche notional fraction at t."""
        t = max(t, self.as_of)
        tr = self.tranche
        amortized = self.provider.tranche_expected_amortization(tr.attachment, tr.detachment, t)
        return max(0.0, 1.0 - self._loss_fraction(t) - amortized / tr.width)

    def _live_periods(self) -> List[Tuple[float, float]]:
        return [(s, e) for s, e in self.schedule.periods() if e > self.as_of]

    def protection_pv(self) -> float:
        """Expected discounted tranche losses, discounted at period midpoints."""
        pv = 0.0
        for start, end in self._live_periods():
            start = max(start, self.as_of)
            increment = self._loss_fraction(end) - self._loss_fraction(start)
            df = self.discount_curve.discount_factor(self.as_of, 0.5 * (start + end))
            pv += df * increment
        return pv * self.tranche.notional

    def risky_duration(self) -> float:
        """PV of one unit of running premium on the expected outstanding notional."""
        duration = 0.0
        for start, end in self._live_periods():
            outstanding = 0.5 * (self._outstanding(max(start, self.as_of))
                                 + self._outstanding(end))
            df = self.discount_curve.discount_factor(self.as_of, end)
            duration += df * (end - max(start, self.as_of)) * outstanding
        return duration

    def accrued(self) -> float:
        """Premium accrued in the current period up to the as-of date."""
        for start, end in self.schedule.periods():
            if start < self.as_of < end:
                return (self.tranche.premium * (self.as_of - start)
                        * self._outstanding(self.as_of) * self.tranche.notional)
        return 0.0

    def fee_pv(self) -> float:
        """Running premium plus upfront fee."""
        tr = self.tranche
        return (tr.premium * self.risky_duration() + tr.upfront_fee) * tr.notional

    def pv(self) -> float:
        return self.protection_pv() - self.fee_pv()

    def break_even_premium(self) -> float:
        """Running premium that makes the tranche PV zero."""
        duration = self.risky_duration() * self.tranche.notional
        if duration <= 0:
            return 0.0
        return (self.protection_pv() - self.tranche.upfront_fee * self.tranche.notional) / duration

    def expected_loss(self, t: Optional[float] = None) -> float:
        """Expected tranche loss amount by date t (maturity by default)."""
        t = self.schedule.maturity if t is None else t
        return self._loss_fraction(t) * self.tranche.notional


class NthToDefaultLossProvider:
    """Losses of an nth-to-default basket derived from default counts.

    The product covers defaults nth .. nth + num_covered - 1. Its expected
    loss fraction is the average over covered positions of P(N >= k) times
    the principal-weighted loss given default. Tranche bounds only scale the
    result, so a [0, 1] tranche gives the fraction of the covered notional.
    """

    def __init__(self, basket, nth: int, num_covered: int = 1):
        if nth < 1 or num_covered < 1:
            raise BasketConfigurationError("nth and num_covered must be at least 1")
        if nth + num_covered - 1 > len(basket.names):
            raise BasketConfigurationError(
                f"Cannot cover defaults {nth}..{nth + num_covered - 1} "
                f"of {len(basket.names)} names"
            )
        self.basket = basket
        self.nth = nth
        self.num_covered = num_covered

    def _covered_probability(self, t: float) -> float:
        return float(np.mean([self.basket.nth_default_probability(k, t)
                              for k in range(self.nth, self.nth + self.num_covered)]))

    def _average_recovery(self, t: float) -> float:
        rates = self.basket.names.recovery_rates([t])[:, 0]
        return float(np.dot(self.basket.names.weights, rates))

    def tranche_expected_loss(self, attachment: float, detachment: float, t: float) -> float:
        return ((detachment - attachment) * self._covered_probability(t)
                * (1.0 - self._average_recovery(t)))

    def tranche_expected_amortization(self, attachment: float, detachment: float,
                                      t: float) -> float:
        return ((detachment - attachment) * self._covered_probability(t)
                * self._average_recovery(t))

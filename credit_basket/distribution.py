"""Portfolio loss distributions over a date grid."""

from dataclasses import dataclass
from typing import List, Optional, Tuple
import numpy as np
import pandas as pd

from .errors import BasketConfigurationError
from .timegrid import DATE_TOLERANCE


def check_tranche(attachment: float, detachment: float) -> None:
    """Raise if the tranche bounds are not 0 <= attachment <= detachment <= 1."""
    if not 0 <= attachment <= detachment <= 1:
        raise BasketConfigurationError(
            f"Need 0 <= attachment <= detachment <= 1, got [{attachment}, {detachment}]"
        )


def tranche_payoff(values: np.ndarray, attachment: float, detachment: float) -> np.ndarray:
    """Loss absorbed by the tranche: min(max(L - a, 0), d - a)."""
    return np.clip(values - attachment, 0.0, detachment - attachment)


@dataclass
class LossDistribution:
    """Distribution of cumulative portfolio loss at each grid date.

    Losses and amortizations are fractions of the total basket principal.

    Attributes:
        dates: Grid dates of shape (n_dates,)
        loss_levels: Loss grid of shape (n_levels,)
        loss_probabilities: Probability of each loss level, (n_dates, n_levels)
        amortization_probabilities: Probability of each amortized (recovered)
            notional level, (n_dates, n_levels)
        default_count_probabilities: Probability of k defaults,
            (n_dates, n_names + 1)
        grid_size: Spacing of the loss grid
    """
    dates: np.ndarray
    loss_levels: np.ndarray
    loss_probabilities: np.ndarray
    amortization_probabilities: np.ndarray
    default_count_probabilities: np.ndarray
    grid_size: float

    @property
    def num_dates(self) -> int:
        return self.dates.size

    @property
    def num_names(self) -> int:
        return self.default_count_probabilities.shape[1] - 1

    def _interpolation(self, t: float) -> List[Tuple[int, float]]:
        """Grid rows and weights representing date t.

        Dates before the first grid date map to no rows (nothing has
        happened yet); dates after the last grid date are rejected.
        """
        if t < self.dates[0] - DATE_TOLERANCE:
            return []
        if t > self.dates[-1] + DATE_TOLERANCE:
            raise ValueError(
                f"Date {t} is after the last computed date {self.dates[-1]}"
            )
        idx = int(np.searchsorted(self.dates, t - DATE_TOLERANCE))
        idx = min(idx, self.num_dates - 1)
        if abs(self.dates[idx] - t) <= DATE_TOLERANCE or idx == 0:
            return [(idx, 1.0)]
        t0, t1 = self.dates[idx - 1], self.dates[idx]
        w = (t - t0) / (t1 - t0)
        return [(idx - 1, 1.0 - w), (idx, w)]

    def _row(self, matrix: np.ndarray, t: float) -> np.ndarray:
        rows = self._interpolation(t)
        if not rows:
            point = np.zeros(matrix.shape[1])
            point[0] = 1.0
            return point
        return sum(w * matrix[i] for i, w in rows)

    def probabilities(self, t: float) -> np.ndarray:
        """Loss level probabilities at date t."""
        return self._row(self.loss_probabilities, t)

    def amortizations(self, t: float) -> np.ndarray:
        """Amortization level probabilities at date t."""
        return self._row(self.amortization_probabilities, t)

    def default_counts(self, t: float) -> np.ndarray:
        """Probability of 0..n defaults by date t."""
        return self._row(self.default_count_probabilities, t)

    def expected_loss(self, t: float) -> float:
        return float(np.dot(self.loss_levels, self.probabilities(t)))

    def expected_amortization(self, t: float) -> float:
        return float(np.dot(self.loss_levels, self.amortizations(t)))

    def tranche_loss(self, attachment: float, detachment: float, t: float) -> float:
        """Expected loss of the tranche [attachment, detachment] by date t.

        Returned as a fraction of the basket principal, so the tranche
        [0, 1] gives the expected portfolio loss.
        """
        check_tranche(attachment, detachment)
        payoff = tranche_payoff(self.loss_levels, attachment, detachment)
        return float(np.dot(payoff, self.probabilities(t)))

    def tranche_amortization(self, attachment: float, detachment: float, t: float) -> float:
        """Expected amortization of the tranche by date t.

        Recovered notional writes the capital structure down from the top,
        so the tranche amortizes once it exceeds 1 - detachment.
        """
        check_tranche(attachment, detachment)
        payoff = tranche_payoff(self.loss_levels, 1.0 - detachment, 1.0 - attachment)
        return float(np.dot(payoff, self.amortizations(t)))

    def cumulative(self, t: float) -> np.ndarray:
        """P(L <= level) for every loss level."""
        return np.cumsum(self.probabilities(t))

    def quantile(self, q: float, t: float) -> float:
        """Smallest loss level whose cumulative probability reaches q."""
        if not 0 <= q <= 1:
            raise BasketConfigurationError(f"Quantile level must be in [0, 1], got {q}")
        cdf = self.cumulative(t)
        idx = int(np.searchsorted(cdf, q - 1e-12))
        return float(self.loss_levels[min(idx, self.loss_levels.size - 1)])

    def nth_default_probability(self, n: int, t: float) -> float:
        """Probability of at least n defaults by date t."""
        if n <= 0:
            return 1.0
        counts = self.default_counts(t)
        if n >= counts.size:
            return 0.0
        return float(counts[n:].sum())

    def total_mass(self) -> np.ndarray:
        """Probability mass per date (1 up to rounding)."""
        return self.loss_probabilities.sum(axis=1)

    def to_frame(self, cumulative: bool = False) -> pd.DataFrame:
        """Loss distribution as a DataFrame with one column per date."""
        values = self.loss_probabilities
        if cumulative:
            values = np.cumsum(values, axis=1)
        frame = pd.DataFrame(values.T, index=pd.Index(self.loss_levels, name="loss"),
                             columns=pd.Index(self.dates, name="date"))
        return frame

    def summary(self, quantiles: Optional[List[float]] = None) -> pd.DataFrame:
        """Expected loss, expected amortization and loss quantiles per date."""
        quantiles = quantiles or [0.95, 0.99]
        rows = []
        for t in self.dates:
            row = {
                "date": t,
                "expected_loss": self.expected_loss(t),
                "expected_amortization": self.expected_amortization(t),
            }
            for q in quantiles:
                row[f"loss_q{q:.3f}"] = self.quantile(q, t)
            rows.append(row)
        return pd.DataFrame(rows).set_index("date")

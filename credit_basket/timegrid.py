"""Evaluation date grids.

Time is measured in years from the basket as-of date. Calendar conventions
stay outside this package; step units are converted with fixed constants.
"""

from typing import Iterable, Optional
import numpy as np

from .errors import BasketConfigurationError

STEP_UNITS = {
    "D": 1.0 / 365.0,
    "W": 7.0 / 365.0,
    "M": 1.0 / 12.0,
    "Q": 0.25,
    "Y": 1.0,
}

# Grid points closer than this are treated as the same date
DATE_TOLERANCE = 1e-10


def step_length(step_size: int, step_unit: str) -> float:
    """Length of one grid step in years.

    Args:
        step_size: Number of units per step (must be positive)
        step_unit: One of 'D', 'W', 'M', 'Q', 'Y'

    Returns:
        Step length as a year fraction
    """
    unit = step_unit.upper()
    if unit not in STEP_UNITS:
        raise BasketConfigurationError(
            f"Unknown step unit '{step_unit}'. Choose from: {', '.join(STEP_UNITS)}"
        )
    if step_size <= 0:
        raise BasketConfigurationError(f"Step size must be positive, got {step_size}")
    return step_size * STEP_UNITS[unit]


def build_date_grid(start: float, maturity: float, step_size: int = 3,
                    step_unit: str = "M",
                    extra_dates: Optional[Iterable[float]] = None) -> np.ndarray:
    """Build the sorted evaluation grid from start to maturity.

    The grid always contains both end points. Extra dates inside
    [start, maturity] are merged in; dates outside are ignored.

    Args:
        start: First grid date (portfolio start)
        maturity: Last grid date
        step_size: Number of step units between regular grid dates
        step_unit: Step unit ('D', 'W', 'M', 'Q', 'Y')
        extra_dates: Additional dates to include (e.g. payment dates)

    Returns:
        Array of strictly increasing dates
    """
    if maturity < start:
        raise BasketConfigurationError(
            f"Maturity {maturity} must not be before start {start}"
        )
    dt = step_length(step_size, step_unit)
    n_steps = int(np.floor((maturity - start) / dt + DATE_TOLERANCE))
    dates = [start + k * dt for k in range(n_steps + 1)]
    dates.append(maturity)
    if extra_dates is not None:
        dates.extend(d for d in extra_dates if start <= d <= maturity)
    return unique_dates(dates)


def unique_dates(dates: Iterable[float]) -> np.ndarray:
    """Sort dates and drop near-duplicates."""
    ordered = np.sort(np.asarray(list(dates), dtype=float))
    if ordered.size == 0:
        return ordered
    keep = np.concatenate([[True], np.diff(ordered) > DATE_TOLERANCE])
    return ordered[keep]

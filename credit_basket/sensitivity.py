"""Bump-and-reprice sensitivities of tranche pricers.

Curve bumps follow bump -> refit -> query -> restore -> refit, one name at a
time and single threaded, so every basket is refitted from the bumped name
onwards only.
"""

import logging
from contextlib import ExitStack
from typing import Callable, List, Optional, Sequence
import numpy as np
import pandas as pd

from .base_correlation import BaseCorrelation
from .correlation import (CorrelationModel, FactorCorrelation, GeneralCorrelation,
                          SingleFactorCorrelation)
from .errors import BasketConfigurationError
from .names import NameCollection
from .tranche import NthToDefaultLossProvider, TranchePricer

logger = logging.getLogger(__name__)

BASIS_POINT = 1e-4


def _basket_of(pricer: TranchePricer):
    provider = pricer.provider
    if isinstance(provider, NthToDefaultLossProvider):
        return provider.basket
    return provider


def _names_of(pricers: Sequence[TranchePricer]) -> NameCollection:
    if not pricers:
        raise BasketConfigurationError("At least one pricer is needed")
    return _basket_of(pricers[0]).names


def _refit_all(pricers: Sequence[TranchePricer], min_index: int) -> None:
    seen = set()
    for pricer in pricers:
        basket = _basket_of(pricer)
        if id(basket) not in seen and hasattr(basket, "refit"):
            seen.add(id(basket))
            basket.refit(min_index)


def bumped_pvs(pricers: Sequence[TranchePricer], bump: float = BASIS_POINT,
               relative: bool = False,
               names: Optional[NameCollection] = None) -> np.ndarray:
    """PVs with each name's survival curve bumped in turn.

    Args:
        pricers: Tranche pricers sharing the basket names
        bump: Hazard rate bump (absolute, or relative if ``relative``)
        relative: Bump proportionally
        names: Names to bump (those of the first pricer's basket if None)

    Returns:
        Array of shape (num_names + 1, num_pricers); row 0 holds the base
        PVs and row i + 1 the PVs with name i bumped
    """
    names = names if names is not None else _names_of(pricers)
    table = np.zeros((len(names) + 1, len(pricers)))
    table[0] = [p.pv() for p in pricers]

    for i, name in enumerate(names):
        with name.survival_curve.bumped(bump, relative=relative):
            _refit_all(pricers, i)
            table[i + 1] = [p.pv() for p in pricers]
        _refit_all(pricers, i)
        logger.debug("Bumped %s: %s", name.name, table[i + 1] - table[0])
    return table


def spread01(pricer: TranchePricer, bump_bp: float = 1.0) -> float:
    """PV change for a parallel hazard bump of every name, in basis points."""
    names = _names_of([pricer])
    base = pricer.pv()
    with ExitStack() as stack:
        for name in names:
            stack.enter_context(name.survival_curve.bumped(bump_bp * BASIS_POINT))
        _refit_all([pricer], 0)
        bumped = pricer.pv()
    _refit_all([pricer], 0)
    return bumped - base


def _restorer(model) -> Callable[[], None]:
    if isinstance(model, SingleFactorCorrelation):
        factor = model.factor
        return lambda: model.set_factor(factor)
    if isinstance(model, FactorCorrelation):
        factors = model.factor_loadings(model.names)
        return lambda: model.set_factors(factors)
    if isinstance(model, GeneralCorrelation):
        matrix = model.matrix
        return lambda: model.set_matrix(matrix)
    if isinstance(model, BaseCorrelation):
        correlations = model.correlations
        return lambda: model.set_correlations(correlations)
    raise BasketConfigurationError(f"Cannot bump correlation model {model!r}")


def correlation01(pricer: TranchePricer, bump: float = 0.01) -> float:
    """PV change for a correlation bump.

    Factor models are bumped in their loadings; base correlation curves in
    their correlations.
    """
    provider = _basket_of(pricer)
    model = getattr(provider, "base_correlation", None) or provider.correlation
    if not isinstance(model, (CorrelationModel, BaseCorrelation)):
        raise BasketConfigurationError(f"Cannot bump correlation model {model!r}")
    base = pricer.pv()
    restore = _restorer(model)
    try:
        model.bump(bump)
        _refit_all([pricer], 0)
        bumped = pricer.pv()
    finally:
        restore()
    _refit_all([pricer], 0)
    return bumped - base


def create_sensitivity_report(pricers: Sequence[TranchePricer],
                              labels: Optional[List[str]] = None,
                              bump: float = BASIS_POINT,
                              relative: bool = False) -> pd.DataFrame:
    """Create a DataFrame report of per-name PV sensitivities.

    Args:
        pricers: Tranche pricers sharing the basket names
        labels: Column label per pricer (tranche bounds if None)
        bump: Hazard rate bump
        relative: Bump proportionally

    Returns:
        DataFrame with one row per name, sorted by total absolute delta
    """
    names = _names_of(pricers)
    if labels is None:
        labels = [f"{p.tranche.attachment:.0%}-{p.tranche.detachment:.0%}" for p in pricers]
    if len(labels) != len(pricers):
        raise BasketConfigurationError("Need one label per pricer")

    table = bumped_pvs(pricers, bump, relative, names)
    deltas = table[1:] - table[0]
    horizon = max(p.schedule.maturity for p in pricers)

    data = []
    for i, name in enumerate(names):
        row = {
            'Name': name.name,
            'Sector': name.sector,
            'Principal': name.principal,
            'Survival': name.survival_curve.survival_probability(horizon),
            'Recovery': name.recovery_curve.recovery_rate(horizon),
        }
        for label, delta in zip(labels, deltas[i]):
            row[f'Delta_{label}'] = delta
        row['Total_Abs_Delta'] = float(np.abs(deltas[i]).sum())
        data.append(row)

    df = pd.DataFrame(data)
    if not df.empty:
        df = df.sort_values('Total_Abs_Delta', ascending=False)
    return df

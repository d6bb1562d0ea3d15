"""Basket engine settings.

Settings come from code, from a YAML file (``load_settings``) or from
environment variables prefixed with ``CREDIT_BASKET_``
(``BasketSettings.from_env``). Example file::

    strategy: heterogeneous
    copula_type: gauss
    integration_points_first: 25
    grid_size: 0.0025
    step_size: 3
    step_unit: M
"""

import dataclasses
import logging
import os
import pathlib
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Union
import yaml

from .basket import BasketPricer
from .copula import Copula
from .correlation import CorrelationModel
from .errors import BasketConfigurationError
from .names import NameCollection
from .semi_analytic import HeterogeneousStrategy, HomogeneousStrategy, LossDistributionStrategy
from .simulation import MonteCarloStrategy

logger = logging.getLogger(__name__)

ENV_PREFIX = "CREDIT_BASKET_"
STRATEGIES = ("homogeneous", "heterogeneous", "monte_carlo")


@dataclass
class BasketSettings:
    """Numerical settings of a basket computation.

    Attributes:
        strategy: 'homogeneous', 'heterogeneous' or 'monte_carlo'
        copula_type: 'gauss', 'student_t' or 'double_t'
        df_common: Degrees of freedom of the common factor / mixing variable
        df_idiosyncratic: Degrees of freedom of the idiosyncratic factor
        integration_points_first: Quadrature nodes over the common factor
        integration_points_second: Quadrature nodes over the mixing variable
        grid_size: Loss grid spacing (0 = a quarter of the smallest name loss)
        recovery_points: Discretization points of random recoveries
        checkpoint_interval: Names between recursion checkpoints
        step_size: Date grid step size
        step_unit: Date grid step unit ('D', 'W', 'M', 'Q', 'Y')
        sample_size: Monte Carlo paths
        seed: Monte Carlo master seed
        batch_size: Monte Carlo paths per batch (None = one batch)
        num_workers: Threads running Monte Carlo batches
        auto_refit: Refit stale baskets on query instead of raising
    """
    strategy: str = "heterogeneous"
    copula_type: str = "gauss"
    df_common: float = 0.0
    df_idiosyncratic: float = 0.0
    integration_points_first: int = 25
    integration_points_second: int = 5
    grid_size: float = 0.0
    recovery_points: int = 5
    checkpoint_interval: int = 20
    step_size: int = 3
    step_unit: str = "M"
    sample_size: int = 10000
    seed: Optional[int] = 0
    batch_size: Optional[int] = None
    num_workers: Optional[int] = None
    auto_refit: bool = True

    def __post_init__(self):
        if self.strategy not in STRATEGIES:
            raise BasketConfigurationError(
                f"Unknown strategy: {self.strategy}. Choose from: {', '.join(STRATEGIES)}"
            )

    @classmethod
    def from_dict(cls, values: Dict[str, Any]) -> "BasketSettings":
        """Build settings from a mapping, rejecting unknown keys."""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise BasketConfigurationError(f"Unknown settings: {', '.join(unknown)}")
        return cls(**values)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "BasketSettings":
        """Build settings from ``CREDIT_BASKET_*`` environment variables.

        Unset variables keep their defaults; the strings 'none' and '' map
        optional settings to None.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        defaults = cls()
        for f in dataclasses.fields(cls):
            raw = environ.get(f"{ENV_PREFIX}{f.name.upper()}")
            if raw is None:
                continue
            values[f.name] = _convert(f.name, raw, getattr(defaults, f.name))
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    def create_copula(self) -> Copula:
        return Copula(self.copula_type, self.df_common, self.df_idiosyncratic,
                      self.integration_points_first, self.integration_points_second)

    def create_strategy(self) -> LossDistributionStrategy:
        if self.strategy == "homogeneous":
            return HomogeneousStrategy(self.grid_size, self.checkpoint_interval)
        if self.strategy == "heterogeneous":
            return HeterogeneousStrategy(self.grid_size, self.recovery_points,
                                         self.checkpoint_interval)
        return MonteCarloStrategy(self.sample_size, self.seed, self.grid_size,
                                  self.batch_size, self.num_workers)

    def create_basket(self, names: NameCollection, correlation: CorrelationModel,
                      start: float = 0.0, maturity: float = 5.0,
                      add_grid_dates: Optional[Iterable[float]] = None) -> BasketPricer:
        """Basket pricer using these settings."""
        return BasketPricer(names, correlation, self.create_copula(), self.create_strategy(),
                            start=start, maturity=maturity, step_size=self.step_size,
                            step_unit=self.step_unit, add_grid_dates=add_grid_dates,
                            auto_refit=self.auto_refit)


_OPTIONAL_INTS = {"seed", "batch_size", "num_workers"}


def _convert(name: str, raw: str, default: Any) -> Any:
    try:
        if name in _OPTIONAL_INTS:
            return None if raw.strip().lower() in ("", "none") else int(raw)
        if isinstance(default, bool):
            return raw.strip().lower() in ("true", "1", "yes", "on")
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except ValueError:
        raise BasketConfigurationError(
            f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}"
        )
    return raw


def load_settings(path: Union[str, pathlib.Path]) -> BasketSettings:
    """Load settings from a YAML file.

    The file holds the settings at top level or under a ``basket`` key.
    Raises FileNotFoundError if the file is missing.
    """
    p = pathlib.Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config file not found: {p}")
    with p.open("r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    if not isinstance(cfg, dict):
        raise BasketConfigurationError(f"Settings file {p} must hold a mapping")
    if "basket" in cfg:
        cfg = cfg["basket"] or {}
    logger.debug("Loaded basket settings from %s", p)
    return BasketSettings.from_dict(cfg)

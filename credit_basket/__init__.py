"""Credit basket loss distributions under factor copulas.

This package computes the distribution of portfolio loss over time for a
basket of correlated defaultable names, and prices tranches of it.

Main components:
- names: Name and NameCollection data structures
- correlation: Single-factor, factor and general correlation models
- copula: Gaussian, Student-t and double-t factor copulas
- semi_analytic: Homogeneous and heterogeneous recursion strategies
- simulation: Monte Carlo strategy
- basket: Cached basket pricer with refit support
- base_correlation: Base correlation curve and basket pricer
- tranche: Tranche, payment schedule and tranche pricer
- sensitivity: Bumped PVs, spread and correlation sensitivities
- config: Settings from code, YAML or environment variables
"""

from .names import Name, NameCollection
from .curves import SurvivalCurve, DiscountCurve
from .recovery import RecoveryCurve, BetaRecovery, EmpiricalRecovery, create_recovery
from .correlation import (
    CorrelationModel,
    SingleFactorCorrelation,
    FactorCorrelation,
    GeneralCorrelation,
)
from .copula import Copula, CopulaType
from .distribution import LossDistribution
from .semi_analytic import LossDistributionStrategy, HeterogeneousStrategy, HomogeneousStrategy
from .simulation import MonteCarloStrategy, MonteCarloLossDistribution
from .basket import BasketPricer
from .base_correlation import BaseCorrelation, BaseCorrelationBasketPricer
from .tranche import (
    Tranche,
    PaymentSchedule,
    LossDistributionProvider,
    TranchePricer,
    NthToDefaultLossProvider,
)
from .sensitivity import bumped_pvs, spread01, correlation01, create_sensitivity_report
from .config import BasketSettings, load_settings
from .timegrid import build_date_grid
from .errors import (
    CreditBasketError,
    BasketConfigurationError,
    CopulaConfigurationError,
    BasketValidationError,
    StaleBasketError,
)

__version__ = "1.0.0"

__all__ = [
    # Names and curves
    "Name",
    "NameCollection",
    "SurvivalCurve",
    "DiscountCurve",
    "RecoveryCurve",
    "BetaRecovery",
    "EmpiricalRecovery",
    "create_recovery",
    # Dependency
    "CorrelationModel",
    "SingleFactorCorrelation",
    "FactorCorrelation",
    "GeneralCorrelation",
    "Copula",
    "CopulaType",
    # Loss distributions
    "LossDistribution",
    "LossDistributionStrategy",
    "HeterogeneousStrategy",
    "HomogeneousStrategy",
    "MonteCarloStrategy",
    "MonteCarloLossDistribution",
    "BasketPricer",
    "BaseCorrelation",
    "BaseCorrelationBasketPricer",
    # Tranches
    "Tranche",
    "PaymentSchedule",
    "LossDistributionProvider",
    "TranchePricer",
    "NthToDefaultLossProvider",
    # Sensitivities
    "bumped_pvs",
    "spread01",
    "correlation01",
    "create_sensitivity_report",
    # Settings and errors
    "BasketSettings",
    "load_settings",
    "build_date_grid",
    "CreditBasketError",
    "BasketConfigurationError",
    "CopulaConfigurationError",
    "BasketValidationError",
    "StaleBasketError",
]

#!/usr/bin/env python3
"""Example usage of the credit basket loss engine.

This script demonstrates:
1. Creating a basket of names with survival and recovery curves
2. Setting up a factor correlation and copula
3. Computing the semi-analytic loss distribution
4. Pricing CDO tranches and a first-to-default basket
5. Comparing Gauss, Student-t and Monte Carlo results
6. Pricing off a base correlation curve
7. Per-name spread sensitivities with refits
"""

import logging

from credit_basket import (
    BaseCorrelation,
    BaseCorrelationBasketPricer,
    BasketPricer,
    BasketSettings,
    Copula,
    DiscountCurve,
    FactorCorrelation,
    HeterogeneousStrategy,
    Name,
    NameCollection,
    NthToDefaultLossProvider,
    PaymentSchedule,
    SurvivalCurve,
    Tranche,
    TranchePricer,
    correlation01,
    create_recovery,
    create_sensitivity_report,
)

TRANCHES = [(0.0, 0.03), (0.03, 0.07), (0.07, 0.10), (0.10, 0.15), (0.15, 0.30)]


def create_sample_basket() -> NameCollection:
    """Create a sample basket of twelve names."""
    names = NameCollection(label="Sample Basket")

    names_data = [
        {"name": "AutoCorp", "spread": 0.0180, "recovery": 0.40, "principal": 10, "sector": "autos"},
        {"name": "CarParts", "spread": 0.0250, "recovery": 0.35, "principal": 8, "sector": "autos"},
        {"name": "BigBank", "spread": 0.0080, "recovery": 0.40, "principal": 12, "sector": "financials"},
        {"name": "Insurer", "spread": 0.0065, "recovery": 0.45, "principal": 9, "sector": "financials"},
        {"name": "OilMajor", "spread": 0.0120, "recovery": 0.40, "principal": 10, "sector": "energy"},
        {"name": "Driller", "spread": 0.0420, "recovery": 0.25, "principal": 6, "sector": "energy"},
        {"name": "Grocer", "spread": 0.0110, "recovery": 0.40, "principal": 7, "sector": "retail"},
        {"name": "MallCo", "spread": 0.0380, "recovery": 0.30, "principal": 6, "sector": "retail"},
        {"name": "ChipMaker", "spread": 0.0090, "recovery": 0.40, "principal": 9, "sector": "technology"},
        {"name": "Software", "spread": 0.0070, "recovery": 0.40, "principal": 8, "sector": "technology"},
        {"name": "PowerGen", "spread": 0.0060, "recovery": 0.50, "principal": 8, "sector": "utilities"},
        {"name": "WaterCo", "spread": 0.0050, "recovery": 0.50, "principal": 7, "sector": "utilities"},
    ]

    for data in names_data:
        # Credit triangle: hazard = spread / (1 - recovery)
        hazard = data["spread"] / (1 - data["recovery"])
        curve = SurvivalCurve([1.0, 3.0, 5.0], [hazard * 0.8, hazard, hazard * 1.15],
                              name=data["name"])
        names.add(Name(
            name=data["name"],
            survival_curve=curve,
            recovery_curve=create_recovery("constant", rate=data["recovery"]),
            principal=data["principal"],
            sector=data["sector"],
        ))

    return names


def create_sample_correlation(names: NameCollection) -> FactorCorrelation:
    """Sector dependent factor loadings."""
    sector_loadings = {
        "autos": 0.55, "financials": 0.60, "energy": 0.50,
        "retail": 0.45, "technology": 0.50, "utilities": 0.35,
    }
    return FactorCorrelation(names.name_ids, [sector_loadings[n.sector] for n in names])


def print_tranches(provider, discount_curve, schedule):
    print(f"   {'Tranche':<12}{'EL(5y)':>10}{'Duration':>10}{'Spread (bp)':>14}")
    for a, d in TRANCHES:
        pricer = TranchePricer(provider, Tranche(a, d), discount_curve, schedule)
        print(f"   {f'{a:.0%}-{d:.0%}':<12}{pricer.expected_loss():>10.2%}"
              f"{pricer.risky_duration():>10.3f}{pricer.break_even_premium() * 1e4:>14.1f}")


def main():
    logging.basicConfig(level=logging.INFO,
                        format="%(asctime)s %(name)s %(levelname)s %(message)s")

    print("=" * 70)
    print("CREDIT BASKET LOSS ENGINE - EXAMPLE")
    print("=" * 70)

    print("\n1. Creating sample basket...")
    names = create_sample_basket()
    print(f"   Basket: {names.label}")
    print(f"   Number of names: {len(names)}")
    print(f"   Total principal: {names.total_principal:,.0f}")
    print(f"   Expected loss (5y): {names.expected_loss(5.0):.2%}")
    print(names.to_frame(5.0).to_string(index=False))

    print("\n2. Setting up correlation and copula...")
    correlation = create_sample_correlation(names)
    schedule = PaymentSchedule.regular(5.0, frequency=4)
    discount_curve = DiscountCurve([1.0, 3.0, 5.0], [0.03, 0.032, 0.035])
    basket = BasketPricer(names, correlation, Copula.gauss(), HeterogeneousStrategy(),
                          maturity=5.0, add_grid_dates=schedule.payment_dates)
    print(f"   {basket!r}")

    print("\n3. Computing loss distribution...")
    distribution = basket.compute()
    print(f"   Dates on grid: {len(distribution.dates)}")
    print(f"   Loss levels: {len(distribution.loss_levels)}")
    print(distribution.summary().iloc[::4].to_string())

    print("\n4. Pricing CDO tranches (Gauss copula)...")
    print_tranches(basket, discount_curve, schedule)

    ftd = TranchePricer(NthToDefaultLossProvider(basket, 1), Tranche(0.0, 1.0),
                        discount_curve, schedule)
    print(f"\n   First-to-default spread: {ftd.break_even_premium() * 1e4:.1f} bp")
    print(f"   P(at least one default by 5y): {basket.nth_default_probability(1, 5.0):.2%}")

    print("\n5. Comparing copulas and strategies...")
    student_t = BasketPricer(names, correlation, Copula.student_t(df=5),
                             maturity=5.0, add_grid_dates=schedule.payment_dates)
    print("\n   Student-t copula (5 degrees of freedom):")
    print_tranches(student_t, discount_curve, schedule)

    settings = BasketSettings(strategy="monte_carlo", sample_size=50000, seed=42,
                              batch_size=10000, num_workers=4)
    simulated = settings.create_basket(names, correlation, maturity=5.0,
                                       add_grid_dates=schedule.payment_dates)
    print("\n   Monte Carlo (Gauss copula, 50,000 paths):")
    print_tranches(simulated, discount_curve, schedule)
    mc = simulated.distribution
    print(f"   Expected loss: {mc.expected_loss(5.0):.4%} "
          f"(semi-analytic {basket.expected_loss(5.0):.4%})")
    print(f"   Standard error: {mc.standard_error(0.0, 1.0, 5.0):.4%}")
    print(f"   VaR (99%): {mc.get_var(0.99):.2%}")
    print(f"   Expected Shortfall (99%): {mc.get_expected_shortfall(0.99):.2%}")

    print("\n6. Pricing off a base correlation curve...")
    base_correlation = BaseCorrelation([0.03, 0.07, 0.10, 0.15, 0.30],
                                       [0.18, 0.26, 0.32, 0.40, 0.55])
    base_pricer = BaseCorrelationBasketPricer(names, base_correlation, maturity=5.0,
                                              add_grid_dates=schedule.payment_dates)
    print_tranches(base_pricer, discount_curve, schedule)

    mezz = TranchePricer(base_pricer, Tranche(0.03, 0.07, premium=0.02),
                         discount_curve, schedule)
    print(f"\n   Mezzanine correlation01 (+1%): {correlation01(mezz):.6f}")

    print("\n7. Per-name spread sensitivities (1bp hazard bump)...")
    pricers = [TranchePricer(basket, Tranche(a, d, premium=0.01), discount_curve, schedule)
               for a, d in TRANCHES[:3]]
    report = create_sensitivity_report(pricers, labels=["Equity", "Junior", "Mezz"])
    print(report.to_string(index=False))

    print("\n" + "=" * 70)
    print("EXAMPLE COMPLETE")
    print("=" * 70)


if __name__ == "__main__":
    main()

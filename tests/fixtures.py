import numpy as np


def two_technology_params(**overrides):
    """One facility, two technologies, two periods; allocation equals baseline x output."""
    params = {
        'fixed_cost': np.array([1000.0]),
        'invest_cap': np.array([1000000.0]),
        'baseline_intensity': np.array([2.0]),
        'strategic_orientation': ['cost-minimizer'],
        'variable_cost': np.array([[50.0, 80.0]]),
        'emissions_intensity': np.array([[2.0, 0.5]]),
        'capacity_per_unit': np.array([[1000.0, 1000.0]]),
        'gestation': np.array([[1.0, 1.0]]),
        'investment_cost': np.array([[10000.0, 15000.0]]),
        'earliest_build': np.array([[1.0, 1.0]]),
        'scrap_use': np.array([[0.0, 1.0]]),
        'ccus_use': np.array([[0.0, 0.0]]),
        'demand': np.array([[100.0, 100.0]]),
        'buy_cap': np.array([[10000.0, 10000.0]]),
        'sell_cap': np.array([[10000.0, 10000.0]]),
        'operating_budget': np.array([[50000.0, 50000.0]]),
        'carbon_price': np.array([[30.0, 30.0]]),
        'benchmark': np.array([2.0, 2.0]),
        'holding_cost': np.array([1.0, 1.0]),
        'target_intensity': np.array([2.0, 2.0]),
        'scrap_capacity': np.array([2000.0, 2000.0]),
        'ccus_capacity': np.array([1500.0, 1500.0]),
        'penalty_rate': 1000.0,
        'big_m': 1000000.0,
    }
    params.update(overrides)
    return params


def single_technology_params(intensity: float, periods: int = 2, **overrides):
    """
    One facility running a single technology with no free allocation.

    Capacity of 1000 comes online in period 1, so from then on output is
    100 and the compliance limit is benchmark x output = 200.
    """
    params = {
        'fixed_cost': np.array([0.0]),
        'invest_cap': np.array([1000000.0]),
        'baseline_intensity': np.array([0.0]),
        'strategic_orientation': ['cost-minimizer'],
        'variable_cost': np.array([[10.0]]),
        'emissions_intensity': np.array([[intensity]]),
        'capacity_per_unit': np.array([[1000.0]]),
        'gestation': np.array([[1.0]]),
        'investment_cost': np.array([[0.0]]),
        'earliest_build': np.array([[1.0]]),
        'scrap_use': np.array([[0.0]]),
        'ccus_use': np.array([[0.0]]),
        'demand': np.full((1, periods), 100.0),
        'buy_cap': np.full((1, periods), 1000.0),
        'sell_cap': np.full((1, periods), 1000.0),
        'operating_budget': np.full((1, periods), 50000.0),
        'carbon_price': np.full((1, periods), 30.0),
        'benchmark': np.full(periods, 2.0),
        'holding_cost': np.full(periods, 1.0),
        'target_intensity': np.full(periods, 2.0),
        'scrap_capacity': np.full(periods, 2000.0),
        'ccus_capacity': np.full(periods, 1500.0),
        'penalty_rate': 1000.0,
        'big_m': 1000000.0,
    }
    params.update(overrides)
    return params

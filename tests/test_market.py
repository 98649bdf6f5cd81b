import math

import numpy as np
import pytest

from cctsmodel import (
    market_simulation, market_summary, facility_results, production_table, solve
)
from parameters import create_default_parameters, facility_view


@pytest.fixture
def market_params():
    return create_default_parameters(2, 3, 4)


def test_market_objective_is_sum_of_independent_facilities(market_params):
    result = solve(2, 3, 4, market_params, mode='multi')
    singles = [solve(1, 3, 4, facility_view(market_params, i)) for i in range(2)]

    assert result['status'] == 'optimal'
    assert result['objective'] == singles[0]['objective'] + singles[1]['objective']
    assert [firm['objective'] for firm in result['firm_results']] == [
        single['objective'] for single in singles
    ]


def test_market_merges_trajectories_by_facility(market_params):
    result = solve(2, 3, 4, market_params, mode='multi')
    single = solve(1, 3, 4, facility_view(market_params, 1))

    assert result['variables']['production'].shape == (2, 3, 4)
    assert result['variables']['banked'].shape == (2, 4)
    np.testing.assert_array_equal(result['variables']['production'][1], single['variables']['production'][0])
    np.testing.assert_array_equal(result['variables']['banked'][1], single['variables']['banked'][0])


def test_market_balance_and_price_volatility():
    params = create_default_parameters(2, 3, 2)
    params['carbon_price'] = np.array([[30.0, 32.0], [35.0, 38.0]])
    result = solve(2, 3, 2, params, mode='multi')
    metrics = result['metrics']

    assert metrics['market_balance'] == pytest.approx(
        result['variables']['allocations'].sum() - result['variables']['emissions'].sum()
    )
    # population standard deviation of every facility x period price
    assert metrics['price_volatility'] == pytest.approx(math.sqrt(9.1875))


def test_market_reports_degraded_facility(market_params):
    market_params['strategic_orientation'] = ['cost-minimizer', 'speculator']
    result = solve(2, 3, 4, market_params, mode='multi')

    assert result['status'] == 'error'
    assert [firm['status'] for firm in result['firm_results']] == ['optimal', 'error']
    assert result['objective'] == result['firm_results'][0]['objective']
    assert not result['variables']['production'][1].any()


def test_parallel_market_matches_sequential():
    params = create_default_parameters(4, 3, 4, seed=7)
    sequential = solve(4, 3, 4, params, mode='multi')
    parallel = solve(4, 3, 4, params, mode='multi', workers=2)

    assert parallel['status'] == 'optimal'
    assert parallel['objective'] == sequential['objective']
    for name, values in sequential['variables'].items():
        np.testing.assert_array_equal(parallel['variables'][name], values)


def test_production_table_flattens_schedule(market_params):
    result = solve(2, 3, 4, market_params, mode='multi')
    table = production_table(result)

    assert len(table) == 2 * 3 * 4
    assert list(table.columns) == ['Facility', 'Technology', 'Period', 'Production']
    row = table[(table['Facility'] == 2) & (table['Technology'] == 1) & (table['Period'] == 3)]
    assert row['Production'].iloc[0] == result['variables']['production'][1, 0, 2]


def test_summary_tables(market_params):
    result = solve(2, 3, 4, market_params, mode='multi')

    facilities = facility_results(result, market_params)
    assert len(facilities) == 2 * 4
    assert (facilities['Output'] + facilities['Unmet']).tolist() == pytest.approx(
        market_params['demand'].ravel().tolist()
    )

    summary = market_summary(result, market_params)
    assert summary['Period'].tolist() == [1, 2, 3, 4]
    assert summary['Total_Cost'].tolist() == pytest.approx(result['metrics']['total_costs'].tolist())
    assert summary['Market_Balance'].sum() == pytest.approx(result['metrics']['market_balance'])


def test_market_simulation_indicators(market_params):
    result = solve(2, 3, 4, market_params, mode='multi')
    indicators = market_simulation(result, market_params)

    assert sum(indicators['technology_mix'].values()) == pytest.approx(1.0)
    assert set(indicators['technology_mix']) == set(market_params['technology_names'])
    assert indicators['firm_objectives'] == [firm['objective'] for firm in result['firm_results']]
    assert 0.0 <= indicators['demand_fulfilment'] <= 1.0
    assert indicators['market_position'] in ('short', 'long')


def test_technology_mix_covers_every_technology():
    params = create_default_parameters(2, 4, 4)
    indicators = market_simulation(solve(2, 4, 4, params, mode='multi'), params)

    assert len(indicators['technology_mix']) == 4
    assert sum(indicators['technology_mix'].values()) == pytest.approx(1.0)


def test_technology_mix_keeps_repeated_names_apart(market_params):
    market_params['technology_names'] = ['Blast Furnace', 'Blast Furnace', 'Hydrogen DRI']
    result = solve(2, 3, 4, market_params, mode='multi')
    mix = market_simulation(result, market_params)['technology_mix']

    assert list(mix) == ['Blast Furnace (1)', 'Blast Furnace (2)', 'Hydrogen DRI']
    assert sum(mix.values()) == pytest.approx(1.0)


def test_strategic_mix_counts_orientations(market_params):
    result = solve(2, 3, 4, market_params, mode='multi')
    assert market_simulation(result, market_params)['strategic_mix'] == {
        'cost-minimizer': 1, 'green-leader': 1, 'balanced': 0,
    }

    params = create_default_parameters(3, 3, 4)
    result = solve(3, 3, 4, params, mode='multi')
    assert market_simulation(result, params)['strategic_mix'] == {
        'cost-minimizer': 1, 'green-leader': 1, 'balanced': 1,
    }

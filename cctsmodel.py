import logging
import math
import numpy as np
import pandas as pd
from concurrent.futures import ProcessPoolExecutor
from typing import Dict, List, Optional, Sequence

from parameters import facility_view
from validation import ORIENTATIONS

LOGGER = logging.getLogger(__name__)

MODES = ('single', 'multi')
STRING_FIELDS = ('strategic_orientation', 'technology_names')
TECHNOLOGY_VARIABLES = ('production', 'build', 'capacity')
PERIOD_VARIABLES = (
    'operating', 'buy', 'sell', 'banked', 'unmet', 'emissions', 'output', 'allocations'
)


class ComputationError(RuntimeError):
    """Raised inside the engine when a run cannot be completed."""


# 1. Allocation Policy and Technology Priority
def compute_allocation(baseline_intensity: float, target_intensity: float,
                       benchmark_intensity: float, output: float) -> float:
    """Free allowance for a period: baseline x output scaled by target/benchmark."""
    if benchmark_intensity == 0:
        raise ComputationError("Benchmark intensity must be non-zero to compute free allocation")
    return baseline_intensity * output * (target_intensity / benchmark_intensity)


def technology_priority(orientation: str, variable_cost: Sequence[float],
                        emissions_intensity: Sequence[float], carbon_price: float) -> List[int]:
    """
    Order technology indices for production dispatch.

    green-leader dispatches the cleanest technology first, cost-minimizer the
    cheapest, and balanced ranks by variable cost plus the carbon cost of the
    technology's emissions at the period price. Ties keep index order.
    """
    if orientation == 'green-leader':
        keys = [float(e) for e in emissions_intensity]
    elif orientation == 'cost-minimizer':
        keys = [float(c) for c in variable_cost]
    elif orientation == 'balanced':
        keys = [float(c) + float(e) * carbon_price
                for c, e in zip(variable_cost, emissions_intensity)]
    else:
        raise ComputationError(f"Unknown strategic orientation: {orientation}")

    return sorted(range(len(keys)), key=lambda k: keys[k])


def empty_variables(E: int, K: int, T: int) -> Dict[str, np.ndarray]:
    variables = {name: np.zeros((E, K, T)) for name in TECHNOLOGY_VARIABLES}
    variables.update({name: np.zeros((E, T)) for name in PERIOD_VARIABLES})
    return variables


# 2. Cost Accounting
def _cost_terms(variables: Dict, params: Dict) -> Dict[str, np.ndarray]:
    """Facility x period cost components, investment excluded."""
    return {
        'fixed': np.asarray(params['fixed_cost'], dtype=float)[:, None] * variables['operating'],
        'variable': (
            np.asarray(params['variable_cost'], dtype=float)[:, :, None] * variables['production']
        ).sum(axis=1),
        'trading': np.asarray(params['carbon_price'], dtype=float) * (variables['buy'] - variables['sell']),
        'holding': np.asarray(params['holding_cost'], dtype=float)[None, :] * variables['banked'],
        'penalty': float(params['penalty_rate']) * variables['unmet'],
    }


def calculate_investment_cost(variables: Dict, params: Dict) -> float:
    """Total spend on committed builds across facilities, technologies and periods."""
    return float((
        np.asarray(params['investment_cost'], dtype=float)[:, :, None] * variables['build']
    ).sum())


def calculate_objective(variables: Dict, params: Dict) -> float:
    """
    Total plan cost.

    Fixed operating, variable production, net allowance trading, banking
    and unmet-demand penalty costs over every facility and period, plus
    investment in committed builds.
    """
    objective = 0.0
    for term in _cost_terms(variables, params).values():
        objective += float(term.sum())
    objective += calculate_investment_cost(variables, params)
    return objective


def calculate_period_costs(variables: Dict, params: Dict) -> np.ndarray:
    """Per-period cost totals summed over facilities. Investment is not included."""
    terms = _cost_terms(variables, params)
    return sum(terms.values()).sum(axis=0)


def calculate_metrics(variables: Dict, params: Dict) -> Dict:
    total_emissions = float(variables['emissions'].sum())
    total_allocations = float(variables['allocations'].sum())
    return {
        'total_emissions': total_emissions,
        'total_unmet': float(variables['unmet'].sum()),
        'total_costs': calculate_period_costs(variables, params),
        'total_allocations': total_allocations,
        'market_balance': total_allocations - total_emissions,
        'price_volatility': float(np.std(np.asarray(params['carbon_price'], dtype=float))),
        'total_investment': calculate_investment_cost(variables, params),
    }


def error_result(E: int, K: int, T: int, mode: str) -> Dict:
    """Degraded result returned when a run fails: zero objective, trajectory and metrics."""
    return {
        'objective': 0.0,
        'status': 'error',
        'mode': mode,
        'variables': empty_variables(E, K, T),
        'metrics': {
            'total_emissions': 0.0,
            'total_unmet': 0.0,
            'total_costs': np.zeros(T),
            'total_allocations': 0.0,
            'market_balance': 0.0,
            'price_volatility': 0.0,
            'total_investment': 0.0,
        },
    }


class cctsmodel:
    # 3. Initialization and Setup
    def __init__(self, facility_count: int, technology_count: int, period_count: int,
                 parameters: Dict, build_fraction: float = 1.0):
        """Set up a planning run; parameters are copied so the run never sees later edits."""
        if not isinstance(parameters, dict):
            raise TypeError(f"Expected parameters to be dict, got {type(parameters)}")

        self.E = int(facility_count)
        self.K = int(technology_count)
        self.T = int(period_count)
        self.build_fraction = float(build_fraction)

        self.params = {}
        for key, value in parameters.items():
            if key in STRING_FIELDS:
                self.params[key] = list(value)
            elif np.isscalar(value) and not isinstance(value, str):
                self.params[key] = float(value)
            else:
                try:
                    self.params[key] = np.array(value, dtype=float)
                except (TypeError, ValueError):
                    self.params[key] = value

        LOGGER.info("Planning run: %d facilities, %d technologies, %d periods (build fraction %.2f)",
                    self.E, self.K, self.T, self.build_fraction)

    def _facility_arrays(self, i: int) -> Dict:
        """Pull facility i's slice of every parameter, checking shapes as it goes."""
        expected = {
            'fixed_cost': (self.E,), 'invest_cap': (self.E,), 'baseline_intensity': (self.E,),
            'variable_cost': (self.E, self.K), 'emissions_intensity': (self.E, self.K),
            'capacity_per_unit': (self.E, self.K), 'gestation': (self.E, self.K),
            'investment_cost': (self.E, self.K), 'earliest_build': (self.E, self.K),
            'demand': (self.E, self.T), 'buy_cap': (self.E, self.T), 'sell_cap': (self.E, self.T),
            'carbon_price': (self.E, self.T),
            'benchmark': (self.T,), 'target_intensity': (self.T,),
        }
        missing = [key for key in expected if key not in self.params]
        if missing:
            raise ComputationError(f"Missing required parameters: {missing}")
        for key, shape in expected.items():
            if np.shape(self.params[key]) != shape:
                raise ComputationError(
                    f"Parameter {key} has shape {np.shape(self.params[key])}, expected {shape}"
                )

        orientations = self.params.get('strategic_orientation', [])
        if len(orientations) <= i:
            raise ComputationError(f"No strategic orientation for facility {i}")

        arrays = {key: self.params[key][i] for key in expected
                  if key not in ('benchmark', 'target_intensity')}
        arrays['benchmark'] = self.params['benchmark']
        arrays['target_intensity'] = self.params['target_intensity']
        arrays['orientation'] = orientations[i]
        return arrays

    # 4. Single-Facility Scheduling
    def schedule_facility(self, i: int) -> Dict[str, np.ndarray]:
        """
        Walk periods 0..T-1 for one facility and return its decision trajectory.

        Capacity stock, banked allowances and cumulative investment spend are
        carried from one period to the next, so period t always sees the
        finalized state of period t-1.

        Args:
            i: Facility index

        Returns:
            Dict of per-technology (K x T) and per-period (T) arrays
        """
        f = self._facility_arrays(i)
        K, T = self.K, self.T

        trajectory = {name: np.zeros((K, T)) for name in TECHNOLOGY_VARIABLES}
        trajectory.update({name: np.zeros(T) for name in PERIOD_VARIABLES})
        invested = 0.0

        for t in range(T):
            # 1. Demand and operating status
            demand_remaining = float(f['demand'][t])
            trajectory['operating'][t] = 1 if demand_remaining > 0 else 0

            # 2. Commit new builds within the investment cap
            invested = self._decide_builds(i, t, f, trajectory['build'], demand_remaining, invested)

            # 3. Roll capacity forward
            self._roll_capacity(t, f, trajectory['build'], trajectory['capacity'])

            # 4. Dispatch production by strategic priority
            order = technology_priority(
                f['orientation'], f['variable_cost'], f['emissions_intensity'],
                float(f['carbon_price'][t])
            )
            for k in order:
                if demand_remaining <= 0:
                    break
                produced = min(demand_remaining, trajectory['capacity'][k, t])
                trajectory['production'][k, t] = produced
                demand_remaining -= produced

            # 5. Unmet demand
            trajectory['unmet'][t] = max(0.0, demand_remaining)

            # 6. Emissions and output
            trajectory['emissions'][t] = float(np.dot(f['emissions_intensity'], trajectory['production'][:, t]))
            trajectory['output'][t] = float(trajectory['production'][:, t].sum())

            # 7. Free allocation
            trajectory['allocations'][t] = compute_allocation(
                float(f['baseline_intensity']), float(f['target_intensity'][t]),
                float(f['benchmark'][t]), trajectory['output'][t]
            )

            # 8. Trade or bank the allowance position
            self._trade_allowances(t, f, trajectory)

        LOGGER.debug("Facility %d: output %.2f, emissions %.2f, unmet %.2f, invested %.2f",
                     i, trajectory['output'].sum(), trajectory['emissions'].sum(),
                     trajectory['unmet'].sum(), invested)
        return trajectory

    def _decide_builds(self, i: int, t: int, f: Dict, build: np.ndarray,
                       demand_remaining: float, invested: float) -> float:
        """Size and commit builds in technology index order; returns updated spend."""
        for k in range(self.K):
            # Earliest build periods are numbered from 1
            if t < f['earliest_build'][k] - 1:
                continue

            units = math.ceil(self.build_fraction * demand_remaining / f['capacity_per_unit'][k])
            if units <= 0:
                continue

            cost = units * f['investment_cost'][k]
            if invested + cost > f['invest_cap']:
                LOGGER.debug("Facility %d period %d: build of %d units of tech %d rejected "
                             "(spend %.2f + %.2f exceeds cap %.2f)",
                             i, t, units, k, invested, cost, f['invest_cap'])
                continue

            start = max(0, t - int(f['gestation'][k]) + 1)
            build[k, start] += units
            invested += cost
        return invested

    def _roll_capacity(self, t: int, f: Dict, build: np.ndarray, capacity: np.ndarray) -> None:
        for k in range(self.K):
            lag = int(f['gestation'][k])
            previous = capacity[k, t - 1] if t > 0 else 0.0
            added = f['capacity_per_unit'][k] * build[k, t - lag] if t >= lag else 0.0
            capacity[k, t] = previous + added

    def _trade_allowances(self, t: int, f: Dict, trajectory: Dict) -> None:
        """Buy to cover a shortfall, otherwise sell surplus up to the cap and bank the rest."""
        allowed = f['benchmark'][t] * trajectory['output'][t] + trajectory['allocations'][t]
        previous_bank = trajectory['banked'][t - 1] if t > 0 else 0.0
        net = trajectory['emissions'][t] - allowed - previous_bank

        if net > 0:
            # Shortfall beyond the buy cap is not carried forward
            trajectory['buy'][t] = min(net, f['buy_cap'][t])
            trajectory['banked'][t] = 0.0
        else:
            trajectory['sell'][t] = min(-net, f['sell_cap'][t])
            trajectory['banked'][t] = -net - trajectory['sell'][t]

    def run_model(self) -> Dict:
        """Schedule every facility in turn and account for the combined trajectory."""
        variables = empty_variables(self.E, self.K, self.T)

        for i in range(self.E):
            trajectory = self.schedule_facility(i)
            for name in TECHNOLOGY_VARIABLES + PERIOD_VARIABLES:
                variables[name][i] = trajectory[name]

        objective = calculate_objective(variables, self.params)
        metrics = calculate_metrics(variables, self.params)

        LOGGER.info("Objective: %.2f | Emissions: %.2f | Allocations: %.2f | Unmet: %.2f",
                    objective, metrics['total_emissions'], metrics['total_allocations'],
                    metrics['total_unmet'])

        return {
            'objective': objective,
            'status': 'optimal',
            'mode': 'single',
            'variables': variables,
            'metrics': metrics,
        }

    # 5. Multi-Facility Aggregation
    def run_market(self, workers: Optional[int] = None) -> Dict:
        """
        Solve each facility independently and merge into a market-level result.

        Facilities trade against their own exogenous carbon prices; nothing is
        cleared or matched between them. With workers > 1 facilities are
        solved in a process pool, and results are merged in facility order
        either way.
        """
        jobs = [(self.K, self.T, self.params, i, self.build_fraction) for i in range(self.E)]

        if workers is not None and workers > 1 and self.E > 1:
            LOGGER.info("Solving %d facilities with %d workers", self.E, workers)
            with ProcessPoolExecutor(max_workers=workers) as executor:
                firm_results = list(executor.map(_solve_facility_worker, jobs))
        else:
            firm_results = [_solve_facility_worker(job) for job in jobs]

        variables = {
            name: np.concatenate([firm['variables'][name] for firm in firm_results], axis=0)
            for name in TECHNOLOGY_VARIABLES + PERIOD_VARIABLES
        }
        objective = sum(firm['objective'] for firm in firm_results)

        degraded = [i for i, firm in enumerate(firm_results) if firm['status'] != 'optimal']
        if degraded:
            LOGGER.warning("Facilities %s did not resolve; market result is degraded", degraded)

        metrics = calculate_metrics(variables, self.params)
        LOGGER.info("Market balance: %.2f (%s) | Price volatility: %.4f",
                    metrics['market_balance'],
                    'short' if metrics['market_balance'] < 0 else 'long',
                    metrics['price_volatility'])

        return {
            'objective': objective,
            'status': 'error' if degraded else 'optimal',
            'mode': 'multi',
            'variables': variables,
            'metrics': metrics,
            'firm_results': firm_results,
        }


def _solve_facility_worker(job) -> Dict:
    K, T, params, i, build_fraction = job
    try:
        view = facility_view(params, i)
    except Exception:
        LOGGER.exception("Could not build parameter view for facility %d", i)
        return error_result(1, K, T, 'single')
    return solve(1, K, T, view, mode='single', build_fraction=build_fraction)


def solve(facility_count: int, technology_count: int, period_count: int,
          parameters: Dict, mode: str = 'single', build_fraction: float = 1.0,
          workers: Optional[int] = None) -> Dict:
    """
    Engine entry point.

    Parameters are expected to have passed validation.validate_parameters.
    Any failure inside the run is logged and returned as an error result;
    no exception escapes.

    Args:
        facility_count: Number of facilities (E); 1 in single mode
        technology_count: Number of technologies (K)
        period_count: Number of periods (T)
        parameters: Parameter set keyed by field name
        mode: 'single' or 'multi'
        build_fraction: Share of remaining demand each build is sized to cover
        workers: Process pool size for multi mode; None or 1 runs sequentially

    Returns:
        Result dict with objective, status, variables, metrics and, in multi
        mode, firm_results
    """
    try:
        dimensions = (int(facility_count), int(technology_count), int(period_count))
    except (TypeError, ValueError):
        dimensions = (0, 0, 0)

    try:
        if mode not in MODES:
            raise ComputationError(f"Unknown mode '{mode}', expected one of {MODES}")

        model = cctsmodel(facility_count, technology_count, period_count, parameters,
                          build_fraction=build_fraction)
        if mode == 'multi':
            return model.run_market(workers=workers)
        return model.run_model()

    except Exception:
        LOGGER.exception("Optimization failed in %s mode", mode)
        return error_result(*dimensions, mode)


# 6. Data Analysis & Summary Creation
def production_table(result: Dict) -> pd.DataFrame:
    """Flatten production[facility][technology][period] into a long table for export."""
    production = result['variables']['production']
    E, K, T = production.shape
    facility, technology, period = np.meshgrid(
        np.arange(1, E + 1), np.arange(1, K + 1), np.arange(1, T + 1), indexing='ij'
    )
    return pd.DataFrame({
        'Facility': facility.ravel(),
        'Technology': technology.ravel(),
        'Period': period.ravel(),
        'Production': production.ravel(),
    })


def facility_results(result: Dict, params: Dict) -> pd.DataFrame:
    variables = result['variables']
    E, K, T = variables['production'].shape
    terms = _cost_terms(variables, params)
    period_cost = sum(terms.values())
    investment = (np.asarray(params['investment_cost'], dtype=float)[:, :, None]
                  * variables['build']).sum(axis=1)
    orientations = list(params.get('strategic_orientation', [''] * E))

    results_data = []
    for i in range(E):
        for t in range(T):
            output = float(variables['output'][i, t])
            emissions = float(variables['emissions'][i, t])
            results_data.append({
                'Facility': i + 1,
                'Period': t + 1,
                'Strategic Orientation': orientations[i] if i < len(orientations) else '',
                'Demand': output + float(variables['unmet'][i, t]),
                'Output': output,
                'Unmet': float(variables['unmet'][i, t]),
                'Capacity': float(variables['capacity'][i, :, t].sum()),
                'Emissions': emissions,
                'Emissions Intensity': emissions / output if output > 0 else 0.0,
                'Allocations': float(variables['allocations'][i, t]),
                'Buy': float(variables['buy'][i, t]),
                'Sell': float(variables['sell'][i, t]),
                'Banked': float(variables['banked'][i, t]),
                'Operating Cost': float(period_cost[i, t]),
                'Investment Cost': float(investment[i, t]),
            })

    return pd.DataFrame(results_data)


def market_summary(result: Dict, params: Dict) -> pd.DataFrame:
    """
    Create system-wide summary with one row per period.

    Scrap and CCUS use are reported against the system ceilings; the
    scheduler does not enforce these limits.
    """
    variables = result['variables']
    production = variables['production']
    T = production.shape[2]
    period_costs = calculate_period_costs(variables, params)
    scrap_use = np.einsum('ik,ikt->t', np.asarray(params['scrap_use'], dtype=float), production)
    ccus_use = np.einsum('ik,ikt->t', np.asarray(params['ccus_use'], dtype=float), production)
    carbon_price = np.asarray(params['carbon_price'], dtype=float)

    summary = []
    for t in range(T):
        record = {
            'Period': t + 1,
            'Carbon_Price': float(carbon_price[:, t].mean()),
            'Total_Output': float(variables['output'][:, t].sum()),
            'Total_Emissions': float(variables['emissions'][:, t].sum()),
            'Total_Allocations': float(variables['allocations'][:, t].sum()),
            'Total_Buy': float(variables['buy'][:, t].sum()),
            'Total_Sell': float(variables['sell'][:, t].sum()),
            'Total_Banked': float(variables['banked'][:, t].sum()),
            'Total_Unmet': float(variables['unmet'][:, t].sum()),
            'Total_Cost': float(period_costs[t]),
            'Scrap_Use': float(scrap_use[t]),
            'Scrap_Capacity': float(params['scrap_capacity'][t]),
            'CCUS_Use': float(ccus_use[t]),
            'CCUS_Capacity': float(params['ccus_capacity'][t]),
        }
        record['Market_Balance'] = record['Total_Allocations'] - record['Total_Emissions']
        record['Market_Balance_Ratio'] = (record['Market_Balance'] / record['Total_Allocations']
                                          if record['Total_Allocations'] > 0 else 0.0)
        record['Scrap_Exceeded'] = record['Scrap_Use'] > record['Scrap_Capacity']
        record['CCUS_Exceeded'] = record['CCUS_Use'] > record['CCUS_Capacity']
        summary.append(record)

    return pd.DataFrame(summary)


def market_simulation(result: Dict, params: Dict) -> Dict:
    """Aggregate market indicators: intensity, investment, technology and orientation mix, firm spread."""
    variables = result['variables']
    metrics = result['metrics']
    production = variables['production']
    K = production.shape[1]

    total_output = float(variables['output'].sum())
    total_demand = total_output + float(variables['unmet'].sum())
    names = list(params.get('technology_names') or [])[:K]
    names += [f"Tech {k + 1}" for k in range(len(names), K)]
    # repeated names get their 1-based index so no share is overwritten
    labels = [name if names.count(name) == 1 else f"{name} ({k + 1})"
              for k, name in enumerate(names)]

    by_technology = production.sum(axis=(0, 2))
    technology_mix = {
        labels[k]: float(by_technology[k] / total_output) if total_output > 0 else 0.0
        for k in range(K)
    }

    orientations = list(params.get('strategic_orientation') or [])
    strategic_mix = {orientation: orientations.count(orientation) for orientation in ORIENTATIONS}

    firm_results = result.get('firm_results')
    firm_objectives = ([firm['objective'] for firm in firm_results]
                       if firm_results is not None else [result['objective']])

    return {
        'total_emissions': metrics['total_emissions'],
        'total_allocations': metrics['total_allocations'],
        'market_balance': metrics['market_balance'],
        'market_position': 'short' if metrics['market_balance'] < 0 else 'long',
        'price_volatility': metrics['price_volatility'],
        'avg_emissions_intensity': metrics['total_emissions'] / total_output if total_output > 0 else 0.0,
        'total_investment': metrics['total_investment'],
        'technology_mix': technology_mix,
        'strategic_mix': strategic_mix,
        'demand_fulfilment': total_output / total_demand if total_demand > 0 else 1.0,
        'firm_objectives': firm_objectives,
        'average_firm_objective': float(np.mean(firm_objectives)) if firm_objectives else 0.0,
    }

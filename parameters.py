import logging
import numpy as np
import pandas as pd
from pathlib import Path
from typing import Dict, List, Optional, Tuple

LOGGER = logging.getLogger(__name__)

TECHNOLOGY_NAMES = [
    'Coal-based Blast Furnace',
    'Electric Arc Furnace with Scrap',
    'Green Hydrogen with CCUS'
]

ORIENTATION_CYCLE = ['cost-minimizer', 'green-leader', 'balanced']

# CSV column -> parameter field, per bundle file
FACILITY_COLUMNS = {
    'Fixed Cost': 'fixed_cost',
    'Invest Cap': 'invest_cap',
    'Baseline Intensity': 'baseline_intensity',
}
TECHNOLOGY_COLUMNS = {
    'Variable Cost': 'variable_cost',
    'Emissions Intensity': 'emissions_intensity',
    'Capacity Per Unit': 'capacity_per_unit',
    'Gestation': 'gestation',
    'Investment Cost': 'investment_cost',
    'Earliest Build': 'earliest_build',
    'Scrap Use': 'scrap_use',
    'CCUS Use': 'ccus_use',
}
FACILITY_PERIOD_COLUMNS = {
    'Demand': 'demand',
    'Buy Cap': 'buy_cap',
    'Sell Cap': 'sell_cap',
    'Operating Budget': 'operating_budget',
    'Carbon Price': 'carbon_price',
}
PERIOD_COLUMNS = {
    'Benchmark': 'benchmark',
    'Holding Cost': 'holding_cost',
    'Target Intensity': 'target_intensity',
    'Scrap Capacity': 'scrap_capacity',
    'CCUS Capacity': 'ccus_capacity',
}
SETTINGS_COLUMNS = {
    'Penalty Rate': 'penalty_rate',
    'Big M': 'big_m',
}

BUNDLE_FILES = {
    'facilities': 'facilities.csv',
    'technologies': 'technologies.csv',
    'facility_periods': 'facility_periods.csv',
    'periods': 'periods.csv',
    'settings': 'settings.csv',
}

# Fields sliced down to one row when building a single-facility view
FACILITY_FIELDS = (
    list(FACILITY_COLUMNS.values()) + ['strategic_orientation'] +
    list(TECHNOLOGY_COLUMNS.values()) + list(FACILITY_PERIOD_COLUMNS.values())
)


def _tile(base, n: int) -> List:
    return [base[i % len(base)] for i in range(n)]


def create_default_parameters(E: int, K: int, T: int, seed: Optional[int] = None) -> Dict:
    """
    Build a parameter set for E facilities, K technologies and T periods.

    Base values are tiled across the requested dimensions. When a seed is
    given, demand and carbon prices receive a reproducible +/-10% jitter;
    without one the result is fully deterministic.
    """
    base_fixed = [10000, 12000]
    base_variable = [[50, 60, 80], [55, 65, 85]]
    base_intensity = [[2.2, 1.0, 0.5], [2.2, 1.0, 0.5]]
    base_gestation = [1, 2, 3]
    base_investment = [[10000, 15000, 20000], [11000, 16000, 21000]]
    base_earliest = [1, 2, 3]
    base_demand = [500, 600, 700, 800]
    base_benchmark = [2.0, 1.9, 1.8, 1.7]
    base_price = [30, 32, 35, 38]
    base_holding = [1, 1.1, 1.2, 1.3]
    base_budget = [50000, 55000, 60000, 65000]
    base_scrap_use = [[0, 1, 0.5], [0, 1, 0.5]]
    base_ccus_use = [[0, 0, 1], [0, 0, 1]]
    base_scrap_capacity = [2000, 2200, 2400, 2600]
    base_ccus_capacity = [1500, 1600, 1700, 1800]
    base_baseline = [2.0, 2.1]
    base_target = [1.9, 1.8, 1.7, 1.6]
    base_invest_cap = [1000000, 800000]

    def per_tech(base):
        return np.array([_tile(base[i % len(base)], K) for i in range(E)], dtype=float)

    demand = np.array([_tile(base_demand, T) for _ in range(E)], dtype=float)
    carbon_price = np.array([_tile(base_price, T) for _ in range(E)], dtype=float)

    if seed is not None:
        rng = np.random.default_rng(seed)
        demand = np.round(demand * rng.uniform(0.9, 1.1, size=(E, T)), 2)
        carbon_price = np.round(carbon_price * rng.uniform(0.9, 1.1, size=(E, T)), 2)

    return {
        'fixed_cost': np.array(_tile(base_fixed, E), dtype=float),
        'invest_cap': np.array(_tile(base_invest_cap, E), dtype=float),
        'baseline_intensity': np.array(_tile(base_baseline, E), dtype=float),
        'strategic_orientation': _tile(ORIENTATION_CYCLE, E),
        'variable_cost': per_tech(base_variable),
        'emissions_intensity': per_tech(base_intensity),
        'capacity_per_unit': np.full((E, K), 1000.0),
        'gestation': np.minimum(np.array([_tile(base_gestation, K)] * E, dtype=float), T),
        'investment_cost': per_tech(base_investment),
        'earliest_build': np.array([_tile(base_earliest, K)] * E, dtype=float),
        'scrap_use': per_tech(base_scrap_use),
        'ccus_use': per_tech(base_ccus_use),
        'demand': demand,
        'buy_cap': np.full((E, T), 10000.0),
        'sell_cap': np.full((E, T), 10000.0),
        'operating_budget': np.array([_tile(base_budget, T) for _ in range(E)], dtype=float),
        'carbon_price': carbon_price,
        'benchmark': np.array(_tile(base_benchmark, T), dtype=float),
        'holding_cost': np.array(_tile(base_holding, T), dtype=float),
        'target_intensity': np.array(_tile(base_target, T), dtype=float),
        'scrap_capacity': np.array(_tile(base_scrap_capacity, T), dtype=float),
        'ccus_capacity': np.array(_tile(base_ccus_capacity, T), dtype=float),
        'penalty_rate': 1000.0,
        'big_m': 1000000.0,
        'technology_names': [
            TECHNOLOGY_NAMES[k] if k < len(TECHNOLOGY_NAMES) else f"Technology {k + 1}" for k in range(K)
        ],
    }


def facility_view(params: Dict, facility: int) -> Dict:
    """Return a copy of params restricted to one facility (leading dimension 1)."""
    view = {}
    for key, value in params.items():
        if key in FACILITY_FIELDS:
            if key == 'strategic_orientation':
                view[key] = [value[facility]] if facility < len(value) else []
            else:
                view[key] = np.asarray(value, dtype=float)[facility:facility + 1].copy()
        elif isinstance(value, np.ndarray):
            view[key] = value.copy()
        elif isinstance(value, list):
            view[key] = list(value)
        else:
            view[key] = value
    return view


# Parameter bundle I/O
def _read_table(path: Path, required: List[str]) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Could not find parameter file: {path}")

    table = pd.read_csv(path)
    table.columns = table.columns.str.strip()

    missing_cols = [col for col in required if col not in table.columns]
    if missing_cols:
        raise ValueError(f"Missing required columns in {path.name}: {missing_cols}")
    return table


def _pivot(table: pd.DataFrame, column: str, rows: str, cols: str,
           n_rows: int, n_cols: int) -> np.ndarray:
    grid = table.pivot(index=rows, columns=cols, values=column)
    grid = grid.reindex(index=range(1, n_rows + 1), columns=range(1, n_cols + 1))
    return grid.to_numpy(dtype=float)


def load_parameters(input_dir) -> Tuple[int, int, int, Dict]:
    """
    Load a parameter bundle from CSV files.

    Facilities, technologies and periods are numbered from 1 in the files.
    Dimensions are inferred from the highest index present; gaps are left as
    NaN so that validation reports them against the offending field.

    Returns:
        Tuple of (E, K, T, params)
    """
    input_dir = Path(input_dir)
    print(f"Loading parameters from: {input_dir}")

    facilities = _read_table(
        input_dir / BUNDLE_FILES['facilities'],
        ['Facility', 'Strategic Orientation'] + list(FACILITY_COLUMNS)
    )
    technologies = _read_table(
        input_dir / BUNDLE_FILES['technologies'],
        ['Facility', 'Technology'] + list(TECHNOLOGY_COLUMNS)
    )
    facility_periods = _read_table(
        input_dir / BUNDLE_FILES['facility_periods'],
        ['Facility', 'Period'] + list(FACILITY_PERIOD_COLUMNS)
    )
    periods = _read_table(input_dir / BUNDLE_FILES['periods'], ['Period'] + list(PERIOD_COLUMNS))
    settings = _read_table(input_dir / BUNDLE_FILES['settings'], list(SETTINGS_COLUMNS))

    if facilities.empty or technologies.empty or periods.empty or settings.empty:
        raise ValueError(f"Parameter bundle in {input_dir} contains an empty table")

    E = int(facilities['Facility'].max())
    K = int(technologies['Technology'].max())
    T = int(periods['Period'].max())

    facilities = facilities.set_index('Facility').reindex(range(1, E + 1))
    periods = periods.set_index('Period').reindex(range(1, T + 1))

    params = {}
    for column, field in FACILITY_COLUMNS.items():
        params[field] = facilities[column].to_numpy(dtype=float)
    params['strategic_orientation'] = [
        str(value).strip() for value in facilities['Strategic Orientation'].tolist()
    ]
    for column, field in TECHNOLOGY_COLUMNS.items():
        params[field] = _pivot(technologies, column, 'Facility', 'Technology', E, K)
    for column, field in FACILITY_PERIOD_COLUMNS.items():
        params[field] = _pivot(facility_periods, column, 'Facility', 'Period', E, T)
    for column, field in PERIOD_COLUMNS.items():
        params[field] = periods[column].to_numpy(dtype=float)
    for column, field in SETTINGS_COLUMNS.items():
        params[field] = float(settings[column].iloc[0])

    if 'Technology Name' in technologies.columns:
        names = technologies.groupby('Technology')['Technology Name'].first()
        params['technology_names'] = [
            str(names.get(k, f"Tech {k}")) for k in range(1, K + 1)
        ]

    print(f"Loaded {E} facilities, {K} technologies, {T} periods")
    return E, K, T, params


def save_parameters(params: Dict, output_dir) -> Path:
    """Write a parameter set as a CSV bundle readable by load_parameters."""
    output_dir = Path(output_dir)
    output_dir.mkdir(exist_ok=True, parents=True)

    E, K = np.asarray(params['variable_cost']).shape
    T = len(params['benchmark'])
    names = params.get('technology_names') or [f"Tech {k + 1}" for k in range(K)]

    facilities = pd.DataFrame({'Facility': range(1, E + 1)})
    for column, field in FACILITY_COLUMNS.items():
        facilities[column] = np.asarray(params[field], dtype=float)
    facilities['Strategic Orientation'] = list(params['strategic_orientation'])

    tech_rows = []
    for i in range(E):
        for k in range(K):
            record = {'Facility': i + 1, 'Technology': k + 1, 'Technology Name': names[k]}
            for column, field in TECHNOLOGY_COLUMNS.items():
                record[column] = float(params[field][i][k])
            tech_rows.append(record)

    facility_period_rows = []
    for i in range(E):
        for t in range(T):
            record = {'Facility': i + 1, 'Period': t + 1}
            for column, field in FACILITY_PERIOD_COLUMNS.items():
                record[column] = float(params[field][i][t])
            facility_period_rows.append(record)

    periods = pd.DataFrame({'Period': range(1, T + 1)})
    for column, field in PERIOD_COLUMNS.items():
        periods[column] = np.asarray(params[field], dtype=float)

    settings = pd.DataFrame([{column: float(params[field]) for column, field in SETTINGS_COLUMNS.items()}])

    facilities.to_csv(output_dir / BUNDLE_FILES['facilities'], index=False)
    pd.DataFrame(tech_rows).to_csv(output_dir / BUNDLE_FILES['technologies'], index=False)
    pd.DataFrame(facility_period_rows).to_csv(output_dir / BUNDLE_FILES['facility_periods'], index=False)
    periods.to_csv(output_dir / BUNDLE_FILES['periods'], index=False)
    settings.to_csv(output_dir / BUNDLE_FILES['settings'], index=False)

    LOGGER.info("Saved parameter bundle (%d facilities, %d technologies, %d periods) to %s",
                E, K, T, output_dir)
    return output_dir

import numpy as np
from typing import Dict, List, Tuple

ORIENTATIONS = ('cost-minimizer', 'green-leader', 'balanced')


class ValidationError(ValueError):
    """A single rejected parameter: the offending field and why."""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message

    def as_tuple(self) -> Tuple[str, str]:
        return self.field, self.message


# Field -> (shape key, lower bound, upper bound, strict lower bound)
# Shape keys: 'E', 'T', 'EK', 'ET'. 'T' upper bound on gestation is resolved at call time.
PARAM_BOUNDS = {
    'fixed_cost': ('E', 0, None, False),
    'invest_cap': ('E', 0, None, False),
    'baseline_intensity': ('E', 0, None, False),
    'variable_cost': ('EK', 0, None, False),
    'emissions_intensity': ('EK', 0, None, False),
    'capacity_per_unit': ('EK', 0, None, True),
    'gestation': ('EK', 1, 'T', False),
    'investment_cost': ('EK', 0, None, False),
    'earliest_build': ('EK', 0, None, False),
    'scrap_use': ('EK', 0, None, False),
    'ccus_use': ('EK', 0, None, False),
    'demand': ('ET', 0, None, False),
    'buy_cap': ('ET', 0, None, False),
    'sell_cap': ('ET', 0, None, False),
    'operating_budget': ('ET', 0, None, False),
    'carbon_price': ('ET', 0, None, False),
    'benchmark': ('T', 0, None, True),
    'holding_cost': ('T', 0, None, False),
    'target_intensity': ('T', 0, None, False),
    'scrap_capacity': ('T', 0, None, False),
    'ccus_capacity': ('T', 0, None, False),
}

SCALAR_BOUNDS = {
    'penalty_rate': (0, False),
    'big_m': (0, True),
}

MESSAGES = {
    'fixed_cost': 'Fixed operating costs must be non-negative',
    'invest_cap': 'Investment capital cap must be non-negative',
    'baseline_intensity': 'Baseline intensity must be non-negative',
    'variable_cost': 'Variable costs must be non-negative',
    'emissions_intensity': 'Emissions intensity must be non-negative',
    'capacity_per_unit': 'Capacity per unit must be positive',
    'investment_cost': 'Investment costs must be non-negative',
    'earliest_build': 'Earliest build period must be non-negative',
    'scrap_use': 'Scrap usage rate must be non-negative',
    'ccus_use': 'CCUS usage rate must be non-negative',
    'demand': 'Demand must be non-negative',
    'buy_cap': 'Buy cap must be non-negative',
    'sell_cap': 'Sell cap must be non-negative',
    'operating_budget': 'Operating budget must be non-negative',
    'carbon_price': 'Carbon price must be non-negative',
    'benchmark': 'Benchmark intensity must be positive',
    'holding_cost': 'Holding cost must be non-negative',
    'target_intensity': 'Target intensity must be non-negative',
    'scrap_capacity': 'System scrap availability must be non-negative',
    'ccus_capacity': 'System CCUS capacity must be non-negative',
    'penalty_rate': 'Penalty parameter must be non-negative',
    'big_m': 'Big-M parameter must be positive',
}


def _expected_shape(shape_key: str, E: int, K: int, T: int) -> Tuple[int, ...]:
    return {'E': (E,), 'T': (T,), 'EK': (E, K), 'ET': (E, T)}[shape_key]


def _describe(shape_key: str, E: int, K: int, T: int) -> str:
    return {
        'E': f"{E} values (one per facility)",
        'T': f"{T} values (one per period)",
        'EK': f"{E} x {K} values (facility x technology)",
        'ET': f"{E} x {T} values (facility x period)",
    }[shape_key]


def _index_label(field: str, index: Tuple[int, ...]) -> str:
    return field + ''.join(f"[{i}]" for i in index)


def validate_parameters(params: Dict, E: int, K: int, T: int) -> List[ValidationError]:
    """
    Check a parameter set against the problem dimensions before solving.

    Every array is checked for presence, shape and numeric content, then for
    its bounds. Problems are collected rather than raised so that the caller
    can report all of them at once; the engine must not be run while the
    returned list is non-empty.

    Args:
        params: Parameter set keyed by field name
        E: Number of facilities
        K: Number of technologies
        T: Number of periods

    Returns:
        List of ValidationError, empty when the parameters are usable
    """
    errors = []

    for name, value in (('E', E), ('K', K), ('T', T)):
        if not isinstance(value, (int, np.integer)) or value < 1:
            errors.append(ValidationError(name, 'Dimension must be a positive integer'))
    if errors:
        return errors

    for field, (shape_key, min_val, max_val, strict) in PARAM_BOUNDS.items():
        if field not in params:
            errors.append(ValidationError(field, 'Missing required parameter'))
            continue

        expected = _expected_shape(shape_key, E, K, T)
        try:
            values = np.asarray(params[field], dtype=float)
        except (TypeError, ValueError):
            errors.append(ValidationError(field, 'Values must be numeric'))
            continue

        if values.shape != expected:
            errors.append(ValidationError(
                field, f"Must have {_describe(shape_key, E, K, T)}, got shape {values.shape}"
            ))
            continue

        if not np.isfinite(values).all():
            for index in zip(*np.nonzero(~np.isfinite(values))):
                errors.append(ValidationError(_index_label(field, index), 'Value must be a finite number'))
            continue

        upper = T if max_val == 'T' else max_val
        too_low = values <= min_val if strict else values < min_val
        too_high = values > upper if upper is not None else np.zeros(values.shape, dtype=bool)

        for index in zip(*np.nonzero(too_low | too_high)):
            if field == 'gestation':
                message = f"Gestation period must be between 1 and {T}"
            else:
                message = MESSAGES[field]
            errors.append(ValidationError(_index_label(field, index), message))

        if field == 'gestation':
            for index in zip(*np.nonzero(values != np.round(values))):
                errors.append(ValidationError(_index_label(field, index), 'Gestation period must be a whole number'))

    for field, (min_val, strict) in SCALAR_BOUNDS.items():
        if field not in params:
            errors.append(ValidationError(field, 'Missing required parameter'))
            continue
        try:
            value = float(params[field])
        except (TypeError, ValueError):
            errors.append(ValidationError(field, 'Value must be numeric'))
            continue
        if not np.isfinite(value) or (value <= min_val if strict else value < min_val):
            errors.append(ValidationError(field, MESSAGES[field]))

    orientations = params.get('strategic_orientation')
    if orientations is None:
        errors.append(ValidationError('strategic_orientation', 'Missing required parameter'))
    elif len(orientations) != E:
        errors.append(ValidationError(
            'strategic_orientation', f"Must have {_describe('E', E, K, T)}"
        ))
    else:
        for i, orientation in enumerate(orientations):
            if orientation not in ORIENTATIONS:
                errors.append(ValidationError(
                    f"strategic_orientation[{i}]",
                    f"Unknown orientation '{orientation}', expected one of {', '.join(ORIENTATIONS)}"
                ))

    return errors


def format_errors(errors: List[ValidationError]) -> str:
    """Render validation errors one per line for console output."""
    return '\n'.join('  %s: %s' % error.as_tuple() for error in errors)

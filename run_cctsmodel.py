import argparse
import json
import logging
import os
import sys
from pathlib import Path

from cctsmodel import facility_results, market_simulation, market_summary, production_table, solve
from parameters import load_parameters
from validation import format_errors, validate_parameters


def run_planning(input_dir, output_dir, mode: str = 'multi', build_fraction: float = 1.0,
                 workers=None):
    """Load, validate, solve and save results; returns the results directory or None."""
    print("Starting CCTS planning run...")
    input_dir = Path(input_dir)
    output_dir = Path(output_dir)

    try:
        E, K, T, params = load_parameters(input_dir)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading parameters: {e}")
        return None

    errors = validate_parameters(params, E, K, T)
    if errors:
        print(f"\nParameter validation failed with {len(errors)} error(s):")
        print(format_errors(errors))
        return None

    if mode == 'single' and E != 1:
        print(f"Single mode expects 1 facility, bundle has {E}; use --mode multi")
        return None

    result = solve(E, K, T, params, mode=mode, build_fraction=build_fraction, workers=workers)
    print(f"\nStatus: {result['status']}")
    print(f"Objective: {result['objective']:,.2f}")
    if result['status'] != 'optimal':
        print("Run did not complete; results are zeroed and were not saved")
        return None

    try:
        output_dir.mkdir(exist_ok=True, parents=True)
    except OSError as e:
        print(f"Error creating results directory: {e}")
        return None

    production_file = output_dir / "production_schedule.csv"
    facility_file = output_dir / "facility_results.csv"
    market_file = output_dir / "market_summary.csv"
    simulation_file = output_dir / "market_simulation.json"

    production_table(result).to_csv(production_file, index=False)
    facility_results(result, params).to_csv(facility_file, index=False)
    market_summary(result, params).to_csv(market_file, index=False)
    with open(simulation_file, 'w') as handle:
        json.dump(market_simulation(result, params), handle, indent=2)

    metrics = result['metrics']
    print("\nMarket Summary:")
    print(f"Total Emissions: {metrics['total_emissions']:.2f}")
    print(f"Total Allocations: {metrics['total_allocations']:.2f}")
    print(f"Market Balance: {metrics['market_balance']:.2f}")
    print(f"Price Volatility: {metrics['price_volatility']:.4f}")
    print(f"Total Unmet Demand: {metrics['total_unmet']:.2f}")

    print("\nResults saved:")
    print(f"  Production schedule: {production_file}")
    print(f"  Facility results: {facility_file}")
    print(f"  Market summary: {market_file}")
    print(f"  Market simulation: {simulation_file}")
    return output_dir


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the CCTS production-investment-trading planner")
    parser.add_argument('--input-dir', default=os.path.join('data', 'input'))
    parser.add_argument('--output-dir', default=os.path.join('data', 'output'))
    parser.add_argument('--mode', choices=['single', 'multi'], default='multi')
    parser.add_argument('--build-fraction', type=float, default=1.0)
    parser.add_argument('--workers', type=int, default=None)
    parser.add_argument('--verbose', action='store_true')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    output = run_planning(args.input_dir, args.output_dir, mode=args.mode,
                          build_fraction=args.build_fraction, workers=args.workers)
    if output:
        print(f"\nAnalysis complete. Results saved in: {output}")
    else:
        print("\nAnalysis failed to complete")
        sys.exit(1)

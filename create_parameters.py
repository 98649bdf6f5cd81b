import argparse
import os

from parameters import create_default_parameters, save_parameters


def create_parameter_bundle(output_dir: str, facilities: int, technologies: int,
                            periods: int, seed=None) -> str:
    """Create default parameter CSVs for a run."""
    params = create_default_parameters(facilities, technologies, periods, seed=seed)
    path = save_parameters(params, output_dir)

    print(f"\nCreated parameter bundle for {facilities} facilities, "
          f"{technologies} technologies, {periods} periods")
    print(f"Strategic orientations: {', '.join(params['strategic_orientation'])}")
    print(f"Files saved to: {path}")
    return str(path)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Write a default CCTS parameter bundle")
    parser.add_argument('--output-dir', default=os.path.join('data', 'input'))
    parser.add_argument('--facilities', type=int, default=2)
    parser.add_argument('--technologies', type=int, default=3)
    parser.add_argument('--periods', type=int, default=4)
    parser.add_argument('--seed', type=int, default=None)
    args = parser.parse_args()

    create_parameter_bundle(args.output_dir, args.facilities, args.technologies,
                            args.periods, seed=args.seed)

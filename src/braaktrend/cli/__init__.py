"""
braaktrend CLI - Braak-stage expression trend analysis.

Commands:
    braaktrend run   - Full pipeline: normalization, outlier screen,
                       two-group and trend tests, overlap, enrichment hand-off
"""

import argparse
import sys
from typing import Optional, List


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI dispatcher for braaktrend."""
    parser = argparse.ArgumentParser(
        prog="braaktrend",
        description="Differential and Braak-stage trend analysis of brain expression arrays",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  run           Run the full analysis and write result tables

Examples:
  braaktrend run --expression matrix.tsv --metadata samples.csv --annotation GPL.tsv --output results/
  braaktrend run --config pipeline.yaml --n-jobs 4
        """
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version="%(prog)s 0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    from braaktrend.cli import run
    run.register_parser(subparsers)

    argv = list(sys.argv[1:] if args is None else args)
    parsed_args = parser.parse_args(argv)

    if parsed_args.command is None:
        parser.print_help()
        return 0

    # Raw arguments after the subcommand name, for config override detection
    parsed_args.argv = argv[1:]
    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
